"""
Tool Invoker - Executes one named tool with a bounded wait.

The invoker is where the execution policy lives:
- unknown tools fail fast with exit status 1
- commands in the destructive pattern set are refused unless the caller
  passes ``user_confirmed``
- privileged (sudo) commands require an authentication step first
- every call is bounded by a timeout, reported as exit status 124; the
  unit of work is a child process that is killed when the time is up

Tool failures never raise out of invoke(); they come back as an
InvocationResult with ``success=False`` so the model can adapt.
"""

import json
import logging
import subprocess
import time
from collections.abc import Callable
from typing import Any

from killer.config import ToolConfig
from killer.process import TIMEOUT_EXIT_CODE, ChildError, run_in_child
from killer.safety import CommandPolicy, default_policy
from killer.tools import ToolContext, ToolRegistry
from killer.types import InvocationResult

logger = logging.getLogger(__name__)

DESTRUCTIVE_NOT_CONFIRMED = "destructive_command_not_confirmed"


def authenticate_sudo(timeout: float = 60.0) -> bool:
    """
    Make sure sudo credentials are cached, prompting on the terminal if needed.

    Returns False if sudo is unavailable, authentication fails, or the
    prompt is not answered within ``timeout`` seconds.
    """
    try:
        if subprocess.run(
            ["sudo", "-n", "true"],
            capture_output=True,
            timeout=10,
        ).returncode == 0:
            return True
        logger.info("Command requires sudo privileges. Requesting authentication...")
        ok = subprocess.run(["sudo", "-v"], timeout=timeout).returncode == 0
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"Sudo authentication unavailable: {e}")
        return False
    if ok:
        logger.info("Sudo authentication successful")
    return ok


def is_confirmed(arguments: dict[str, Any]) -> bool:
    """True only for an explicit ``user_confirmed`` of true."""
    value = arguments.get("user_confirmed", False)
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


class ToolInvoker:
    """Runs registry tools under the execution policy."""

    def __init__(
        self,
        registry: ToolRegistry,
        config: ToolConfig | None = None,
        policy: CommandPolicy | None = None,
        authenticate: Callable[[], bool] | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or ToolConfig()
        self.policy = policy or default_policy
        self.authenticate = authenticate or authenticate_sudo

    def invoke(
        self,
        name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> InvocationResult:
        """
        Execute tool ``name`` with ``arguments``.

        Args:
            name: Registered tool name
            arguments: Decoded tool-call arguments
            timeout: Seconds before the call is abandoned; defaults to the
                configured tool timeout

        Returns:
            InvocationResult with the structured payload and exit status
        """
        effective_timeout = timeout if timeout is not None else self.config.timeout

        descriptor = self.registry.get(name)
        if descriptor is None:
            logger.warning(f"Tool not found: {name}")
            return InvocationResult(
                success=False,
                exit_status=1,
                result={"success": False, "error": "Tool not found", "tool": name},
            )
        tool = descriptor.tool

        if tool.command_argument:
            command = str(arguments.get(tool.command_argument, ""))
            verdict = self.policy.classify(command, bool(arguments.get("request_sudo")))

            if verdict.is_destructive and not is_confirmed(arguments):
                logger.info(
                    f"Destructive command requires user confirmation; cancelled: {command}"
                )
                return InvocationResult(
                    success=False,
                    exit_status=1,
                    result={
                        "success": False,
                        "error": (
                            "Destructive command detected. User confirmation required "
                            "before execution. DO NOT retry with 'user_confirmed: true' "
                            "until you receive explicit instruction from a system message."
                        ),
                        "command": command,
                        "cancelled": True,
                        "reason": DESTRUCTIVE_NOT_CONFIRMED,
                        "matched_patterns": verdict.matched_patterns,
                    },
                )
            if verdict.is_destructive:
                logger.info("Destructive command confirmed by user, proceeding...")

            if verdict.privileged and not self.authenticate():
                return InvocationResult(
                    success=False,
                    exit_status=1,
                    result={
                        "success": False,
                        "error": (
                            "Sudo authentication failed or cancelled. Please run 'sudo -v' "
                            "manually first, or configure NOPASSWD in sudoers for this command."
                        ),
                        "command": command,
                        "sudo_required": True,
                    },
                )

        context = ToolContext(
            timeout=effective_timeout,
            kill_grace=self.config.kill_grace,
            task_file=self.config.task_file,
        )

        start = time.monotonic()
        try:
            if tool.isolated:
                exit_status, payload = tool.execute(arguments, context)
            else:
                exit_status, payload = run_in_child(
                    tool.execute,
                    arguments,
                    context,
                    timeout=effective_timeout,
                    kill_grace=self.config.kill_grace,
                )
        except TimeoutError:
            logger.warning(f"Tool {name} timed out after {effective_timeout} seconds")
            return InvocationResult(
                success=False,
                exit_status=TIMEOUT_EXIT_CODE,
                result={
                    "success": False,
                    "error": f"Tool {name} timed out after {effective_timeout} seconds",
                    "timeout": True,
                },
            )
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}")
            # ChildError already names the original exception type
            error = str(e) if isinstance(e, ChildError) else f"{type(e).__name__}: {e}"
            return InvocationResult(
                success=False,
                exit_status=1,
                result={"success": False, "error": error},
            )

        duration = time.monotonic() - start
        if exit_status != 0:
            logger.warning(f"Tool {name} returned non-zero status: {exit_status}")
        logger.debug(f"Tool {name} completed in {duration:.2f}s")

        return InvocationResult(
            success=exit_status == 0 and payload.get("success", True) is not False,
            exit_status=exit_status,
            result=payload,
        )


def format_tool_content(result: InvocationResult, max_chars: int) -> str:
    """
    Serialize a result for a Tool message, capping its size.

    An oversized payload is cut inside its longest string fields (command
    output, file content), so the message stays valid JSON and small fields
    such as ``exit_code`` survive.
    """
    content = result.to_content()
    if len(content) <= max_chars:
        return content

    notice = (
        f"\n\n[Truncated: tool response was {len(content):,} chars, "
        f"exceeding the {max_chars:,} char limit]"
    )
    fitted = _fit_payload(result.result, max_chars, notice)
    if fitted is None:
        # Nothing long enough to cut; fall back to a preview of the whole payload.
        preview = {"success": result.success, "exit_status": result.exit_status, "preview": content}
        fitted = _fit_payload(preview, max_chars, notice)
    if fitted is None:
        fitted = {"success": result.success, "exit_status": result.exit_status, "truncated": True}
    return json.dumps(fitted, ensure_ascii=False)


def _serialized_length(payload: dict[str, Any]) -> int:
    return len(json.dumps(payload, ensure_ascii=False))


def _fit_payload(payload: dict[str, Any], max_chars: int, notice: str) -> dict[str, Any] | None:
    """Shorten string fields, longest first, until the payload fits."""
    fitted = dict(payload, truncated=True)
    keys = sorted(
        (k for k, v in fitted.items() if isinstance(v, str)),
        key=lambda k: len(fitted[k]),
        reverse=True,
    )
    for key in keys:
        if _serialized_length(fitted) <= max_chars:
            return fitted
        text = fitted[key]
        # Longest prefix that fits; escapes make serialized length non-linear.
        low, high = 0, len(text)
        while low < high:
            mid = (low + high + 1) // 2
            fitted[key] = text[:mid] + notice
            if _serialized_length(fitted) <= max_chars:
                low = mid
            else:
                high = mid - 1
        fitted[key] = text[:low] + notice
    if _serialized_length(fitted) <= max_chars:
        return fitted
    return None
