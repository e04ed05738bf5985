"""Shell command execution tool."""

import os
from typing import Any

from killer.process import run_supervised
from killer.tools import Tool, ToolContext

SHELL_DESCRIPTION = (
    "Execute shell commands and return their output. Use this to run system commands, "
    "scripts, or perform file operations. For commands requiring sudo, the tool will "
    "automatically request authentication if needed. IMPORTANT: Destructive commands "
    "(rm, rmdir, unlink, shred, etc.) will require user confirmation before execution. "
    "WARNING: Avoid commands that produce massive output or run for extended periods as "
    "they can overflow the context window. Instead: pipe to 'head -n N' or 'tail -n N'; "
    "use 'wc -l' to count instead of displaying; filter with 'grep'; read specific "
    "sections of large files with 'sed -n START,ENDp'. Always prefer targeted, "
    "incremental queries over bulk operations."
)


class ShellExecutorTool(Tool):
    """
    Runs a command with bash in its own process group.

    Confirmation and sudo checks happen in the invoker before execute() is
    reached; this tool only runs what it is given.
    """

    name = "shell_executor"
    isolated = True
    command_argument = "command"

    def get_definition(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": SHELL_DESCRIPTION,
                "parameters": {
                    "type": "object",
                    "properties": {
                        "command": {
                            "type": "string",
                            "description": "The shell command to execute",
                        },
                        "working_directory": {
                            "type": "string",
                            "description": "Working directory for command execution (optional)",
                            "default": ".",
                        },
                        "request_sudo": {
                            "type": "boolean",
                            "description": (
                                "Set to true if the command requires sudo privileges. The tool "
                                "will request authentication interactively before execution"
                            ),
                            "default": False,
                        },
                        "user_confirmed": {
                            "type": "boolean",
                            "description": (
                                "SECURITY PARAMETER - DO NOT set this to true unless a system "
                                "message explicitly instructs you to do so after user approval. "
                                "It bypasses destructive command confirmation and should ONLY be "
                                "used when retrying a previously blocked command after the user "
                                "has confirmed the operation"
                            ),
                            "default": False,
                        },
                    },
                    "required": ["command"],
                },
            },
        }

    def execute(self, arguments: dict[str, Any], context: ToolContext) -> tuple[int, dict[str, Any]]:
        command = arguments.get("command")
        working_dir = arguments.get("working_directory") or "."

        if not command or not isinstance(command, str):
            return 1, {"success": False, "error": "command is required"}
        if not os.path.isdir(working_dir):
            return 1, {"success": False, "error": f"Invalid working directory: {working_dir}"}

        outcome = run_supervised(
            ["bash", "-c", command],
            timeout=context.timeout,
            cwd=working_dir,
            kill_grace=context.kill_grace,
        )

        payload: dict[str, Any] = {
            "success": outcome.exit_code == 0,
            "command": command,
            "output": outcome.output,
            "exit_code": outcome.exit_code,
            "working_directory": working_dir,
        }
        if outcome.timed_out:
            payload["error"] = f"Command timed out after {context.timeout} seconds"
            payload["timeout"] = True
        return outcome.exit_code, payload
