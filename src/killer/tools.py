"""
Tool System - The only way the agent affects the world.

A tool is anything implementing the fixed two-operation interface:
``get_definition()`` returns an OpenAI function schema and ``execute()``
runs it. The ToolRegistry maps each unique name to a ToolDescriptor and is
filled at startup by discovery sources: plain callables returning tools.
Two sources ship with the package, the built-in tools and
ScriptToolDiscovery, which scans a directory of external tool scripts.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from killer.process import TIMEOUT_EXIT_CODE, run_supervised

logger = logging.getLogger(__name__)

DEFINITION_TIMEOUT = 10.0


class DuplicateToolError(Exception):
    """Two tools were registered under the same name."""
    pass


class InvalidToolError(Exception):
    """A tool's definition could not be retrieved or is malformed."""
    pass


@dataclass
class ToolContext:
    """Execution parameters handed to a tool by the invoker."""
    timeout: float = 180.0
    kill_grace: float = 0.2
    task_file: Path | None = None


class Tool(ABC):
    """
    Interface every tool implements.

    ``isolated`` tools run as supervised processes and enforce the timeout
    themselves. Other tools are called by the invoker in a forked child that
    is killed on timeout, so their results must be picklable and their side
    effects must land outside the agent process (files, not attributes).

    A tool that sets ``command_argument`` takes a shell command in that
    argument, which makes the invoker apply the destructive-command and sudo
    checks first.
    """

    name: str = ""
    isolated: bool = False
    command_argument: str | None = None

    @abstractmethod
    def get_definition(self) -> dict[str, Any]:
        """Return the OpenAI ``{"type": "function", ...}`` schema."""

    @abstractmethod
    def execute(self, arguments: dict[str, Any], context: ToolContext) -> tuple[int, dict[str, Any]]:
        """Run the tool. Returns ``(exit_status, result_payload)``."""


@dataclass(frozen=True)
class ToolDescriptor:
    """A registered tool: its name, schema parts and implementation."""
    name: str
    description: str
    parameters: dict[str, Any] = field(compare=False, hash=False)
    tool: Tool = field(compare=False, hash=False, repr=False)

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def describe(tool: Tool) -> ToolDescriptor:
    """
    Retrieve and validate a tool's schema.

    Raises:
        InvalidToolError: If the definition call fails or is malformed
    """
    try:
        definition = tool.get_definition()
    except Exception as e:
        raise InvalidToolError(f"get_definition failed: {e}") from e

    if not isinstance(definition, dict):
        raise InvalidToolError("definition is not an object")
    function = definition.get("function", definition)
    if not isinstance(function, dict):
        raise InvalidToolError("definition has no function object")
    name = function.get("name")
    if not name or not isinstance(name, str):
        raise InvalidToolError("definition has no function name")
    parameters = function.get("parameters") or {"type": "object", "properties": {}}
    if not isinstance(parameters, dict):
        raise InvalidToolError(f"parameters of {name} is not an object")

    return ToolDescriptor(
        name=name,
        description=function.get("description", ""),
        parameters=parameters,
        tool=tool,
    )


ToolSource = Callable[[], Iterable[Tool]]


class ToolRegistry:
    """
    Registry of available tools, keyed by unique name.

    Invalid tools are skipped during discovery; a duplicate name is a
    configuration error and raises DuplicateToolError.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(self, tool: Tool) -> ToolDescriptor:
        """Register a tool. Raises InvalidToolError or DuplicateToolError."""
        descriptor = describe(tool)
        if descriptor.name in self._tools:
            raise DuplicateToolError(f"Tool already registered: {descriptor.name}")
        self._tools[descriptor.name] = descriptor
        logger.debug(f"Registered tool: {descriptor.name}")
        return descriptor

    def discover(self, *sources: ToolSource) -> set[ToolDescriptor]:
        """
        Register every valid tool yielded by ``sources``.

        A source that raises, or a tool whose schema cannot be retrieved, is
        logged and omitted. Returns the descriptors registered by this call.
        """
        found: set[ToolDescriptor] = set()
        for source in sources:
            try:
                tools = list(source())
            except Exception as e:
                logger.warning(f"Tool source {source!r} failed: {e}")
                continue
            for tool in tools:
                try:
                    found.add(self.register(tool))
                except InvalidToolError as e:
                    logger.warning(f"Skipping tool {tool.name or tool!r}: {e}")
        return found

    def get(self, name: str) -> ToolDescriptor | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def schemas(self) -> list[dict[str, Any]]:
        """OpenAI-format schemas for all tools, in registration order."""
        return [descriptor.to_openai_schema() for descriptor in self._tools.values()]

    @property
    def tool_names(self) -> list[str]:
        """List of registered tool names."""
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools


class ScriptTool(Tool):
    """
    An external tool implemented as an executable script.

    The script is called as ``<script> get_definition`` to print its JSON
    schema and as ``<script> execute '<json arguments>'`` to run. Its stdout
    is the JSON result and its exit code is the exit status.
    """

    isolated = True

    def __init__(self, script: Path, definition_timeout: float = DEFINITION_TIMEOUT) -> None:
        self.script = script
        self.name = script.parent.name
        self.definition_timeout = definition_timeout
        self._definition: dict[str, Any] | None = None

    def _argv(self, *args: str) -> list[str]:
        if os.access(self.script, os.X_OK):
            return [str(self.script), *args]
        return ["bash", str(self.script), *args]

    def get_definition(self) -> dict[str, Any]:
        if self._definition is not None:
            return self._definition

        outcome = run_supervised(
            self._argv("get_definition"),
            timeout=self.definition_timeout,
            cwd=self.script.parent,
        )
        if outcome.timed_out or outcome.exit_code != 0:
            raise InvalidToolError(
                f"{self.script} get_definition exited with {outcome.exit_code}"
            )
        try:
            definition = json.loads(outcome.output)
        except json.JSONDecodeError as e:
            raise InvalidToolError(f"{self.script} printed invalid JSON: {e}") from e

        function = definition.get("function", definition) if isinstance(definition, dict) else {}
        self.name = function.get("name") or self.name
        properties = (function.get("parameters") or {}).get("properties") or {}
        if "command" in properties:
            self.command_argument = "command"
        self._definition = definition
        return definition

    def execute(self, arguments: dict[str, Any], context: ToolContext) -> tuple[int, dict[str, Any]]:
        env = dict(os.environ)
        if context.task_file is not None:
            env["KILLER_TASK_FILE"] = str(context.task_file)

        outcome = run_supervised(
            self._argv("execute", json.dumps(arguments, ensure_ascii=False)),
            timeout=context.timeout,
            kill_grace=context.kill_grace,
            env=env,
        )
        if outcome.timed_out:
            return TIMEOUT_EXIT_CODE, {
                "success": False,
                "error": f"Tool {self.name} timed out after {context.timeout} seconds",
                "timeout": True,
                "output": outcome.output,
            }

        try:
            payload = json.loads(outcome.output)
        except json.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            payload = {"success": outcome.exit_code == 0, "output": outcome.output}
        return outcome.exit_code, payload


class ScriptToolDiscovery:
    """
    Discovery source scanning ``tools_dir`` for script tools.

    Each immediate subdirectory holding a ``setup.sh`` is one tool.
    """

    script_name = "setup.sh"

    def __init__(self, tools_dir: str | Path, definition_timeout: float = DEFINITION_TIMEOUT) -> None:
        self.tools_dir = Path(tools_dir)
        self.definition_timeout = definition_timeout

    def __call__(self) -> list[Tool]:
        if not self.tools_dir.is_dir():
            logger.debug(f"Tools directory {self.tools_dir} does not exist")
            return []

        tools: list[Tool] = []
        for tool_dir in sorted(p for p in self.tools_dir.iterdir() if p.is_dir()):
            script = tool_dir / self.script_name
            if script.is_file():
                logger.info(f"Initializing tool: {tool_dir.name}")
                tools.append(ScriptTool(script, self.definition_timeout))
        return tools
