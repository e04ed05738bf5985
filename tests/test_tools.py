"""
Tests for the Tool interface, ToolRegistry and script tool discovery.
"""

import json
import textwrap
from pathlib import Path
from typing import Any

import pytest

from killer.tools import (
    DuplicateToolError,
    InvalidToolError,
    ScriptTool,
    ScriptToolDiscovery,
    Tool,
    ToolContext,
    ToolRegistry,
)


class EchoTool(Tool):
    """Minimal in-process tool."""

    def __init__(self, name: str = "echo") -> None:
        self.name = name

    def get_definition(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": "Echo the text back",
                "parameters": {
                    "type": "object",
                    "properties": {"text": {"type": "string"}},
                    "required": ["text"],
                },
            },
        }

    def execute(self, arguments: dict[str, Any], context: ToolContext) -> tuple[int, dict[str, Any]]:
        return 0, {"success": True, "text": arguments.get("text")}


class BrokenTool(Tool):
    name = "broken"

    def get_definition(self) -> dict[str, Any]:
        raise RuntimeError("schema unavailable")

    def execute(self, arguments: dict[str, Any], context: ToolContext) -> tuple[int, dict[str, Any]]:
        return 1, {}


ECHO_ARGS = 'echo "{\\"success\\": true, \\"args\\": $2}"'


def write_script_tool(tools_dir: Path, name: str, definition: str, body: str = "") -> Path:
    tool_dir = tools_dir / name
    tool_dir.mkdir(parents=True)
    script = tool_dir / "setup.sh"
    body = body or ECHO_ARGS
    script.write_text(textwrap.dedent(f"""\
        #!/usr/bin/env bash
        case "$1" in
          get_definition)
            cat <<'EOF'
        {definition}
        EOF
            ;;
          execute)
            {body}
            ;;
        esac
        """))
    return script


def _definition(name: str, properties: dict | None = None) -> str:
    return json.dumps({
        "type": "function",
        "function": {
            "name": name,
            "description": f"{name} tool",
            "parameters": {"type": "object", "properties": properties or {}},
        },
    })


class TestToolRegistry:
    """Test registration and schema assembly."""

    def test_register_and_get(self) -> None:
        registry = ToolRegistry()
        registry.register(EchoTool())

        descriptor = registry.get("echo")
        assert descriptor is not None
        assert descriptor.description == "Echo the text back"
        assert "echo" in registry
        assert registry.get("missing") is None

    def test_duplicate_name_raises(self) -> None:
        registry = ToolRegistry()
        registry.register(EchoTool())

        with pytest.raises(DuplicateToolError):
            registry.register(EchoTool())

    def test_invalid_tool_raises_on_register(self) -> None:
        with pytest.raises(InvalidToolError, match="schema unavailable"):
            ToolRegistry().register(BrokenTool())

    def test_discover_skips_invalid_tools(self) -> None:
        registry = ToolRegistry()

        found = registry.discover(lambda: [EchoTool(), BrokenTool()])

        assert {d.name for d in found} == {"echo"}
        assert len(registry) == 1

    def test_discover_skips_failing_source(self) -> None:
        def failing_source() -> list[Tool]:
            raise OSError("directory unreadable")

        registry = ToolRegistry()
        registry.discover(failing_source, lambda: [EchoTool()])

        assert registry.tool_names == ["echo"]

    def test_schemas_in_registration_order(self) -> None:
        registry = ToolRegistry()
        for name in ["zeta", "alpha", "mid"]:
            registry.register(EchoTool(name))

        schemas = registry.schemas()

        assert [s["function"]["name"] for s in schemas] == ["zeta", "alpha", "mid"]
        assert schemas[0]["type"] == "function"
        assert schemas[0]["function"]["parameters"]["required"] == ["text"]


class TestScriptTools:
    """Test external script tools (POSIX, needs bash)."""

    def test_discovery_scans_subdirectories(self, tmp_path) -> None:
        write_script_tool(tmp_path, "b_tool", _definition("b_tool"))
        write_script_tool(tmp_path, "a_tool", _definition("a_tool"))
        (tmp_path / "not_a_tool").mkdir()

        tools = ScriptToolDiscovery(tmp_path)()

        assert [t.name for t in tools] == ["a_tool", "b_tool"]

    def test_missing_directory_is_empty(self, tmp_path) -> None:
        assert ScriptToolDiscovery(tmp_path / "nope")() == []

    def test_definition_and_execute(self, tmp_path) -> None:
        script = write_script_tool(tmp_path, "echoer", _definition("echoer"))
        registry = ToolRegistry()
        registry.discover(ScriptToolDiscovery(tmp_path))

        tool = registry.get("echoer").tool
        exit_status, payload = tool.execute({"x": 1}, ToolContext(timeout=10))

        assert isinstance(tool, ScriptTool)
        assert tool.script == script
        assert exit_status == 0
        assert payload == {"success": True, "args": {"x": 1}}

    def test_invalid_definition_is_skipped(self, tmp_path) -> None:
        write_script_tool(tmp_path, "bad", "this is not json")
        write_script_tool(tmp_path, "good", _definition("good"))

        registry = ToolRegistry()
        registry.discover(ScriptToolDiscovery(tmp_path))

        assert registry.tool_names == ["good"]

    def test_command_argument_detected(self, tmp_path) -> None:
        write_script_tool(tmp_path, "runner", _definition("runner", {"command": {"type": "string"}}))
        registry = ToolRegistry()
        registry.discover(ScriptToolDiscovery(tmp_path))

        assert registry.get("runner").tool.command_argument == "command"

    def test_non_json_output_wrapped(self, tmp_path) -> None:
        write_script_tool(tmp_path, "plain", _definition("plain"), body="echo plain text; exit 3")
        tool = ScriptTool(tmp_path / "plain" / "setup.sh")
        tool.get_definition()

        exit_status, payload = tool.execute({}, ToolContext(timeout=10))

        assert exit_status == 3
        assert payload == {"success": False, "output": "plain text\n"}

    def test_execute_timeout(self, tmp_path) -> None:
        write_script_tool(tmp_path, "slow", _definition("slow"), body="sleep 30")
        tool = ScriptTool(tmp_path / "slow" / "setup.sh")

        exit_status, payload = tool.execute({}, ToolContext(timeout=0.5, kill_grace=0.1))

        assert exit_status == 124
        assert payload["timeout"] is True
        assert payload["success"] is False
