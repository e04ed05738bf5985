"""File read/write/append/list tool."""

from pathlib import Path
from typing import Any

from killer.tools import Tool, ToolContext

OPERATIONS = ("read", "write", "append", "list")


class FileOperationsTool(Tool):
    name = "file_operations"

    def get_definition(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": (
                    "Perform file operations like reading and writing files. Supports "
                    "reading file contents, writing or appending data, and listing directories."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "operation": {
                            "type": "string",
                            "enum": list(OPERATIONS),
                            "description": "The operation to perform: read, write, append, or list",
                        },
                        "path": {
                            "type": "string",
                            "description": "File or directory path",
                        },
                        "content": {
                            "type": "string",
                            "description": "Content to write (for write/append operations)",
                        },
                    },
                    "required": ["operation", "path"],
                },
            },
        }

    def execute(self, arguments: dict[str, Any], context: ToolContext) -> tuple[int, dict[str, Any]]:
        operation = arguments.get("operation")
        raw_path = arguments.get("path")
        if not raw_path:
            return 1, {"success": False, "error": "path is required"}
        path = Path(raw_path).expanduser()
        content = arguments.get("content") or ""

        if operation == "read":
            if not path.is_file():
                return 1, {"success": False, "error": f"File not found: {raw_path}"}
            data = path.read_text(encoding="utf-8", errors="backslashreplace")
            return 0, {
                "success": True,
                "operation": "read",
                "path": raw_path,
                "content": data,
                "size": path.stat().st_size,
            }

        if operation in ("write", "append"):
            mode = "w" if operation == "write" else "a"
            try:
                with open(path, mode, encoding="utf-8") as f:
                    f.write(content)
            except OSError as e:
                return 1, {"success": False, "error": f"Failed to {operation} to file: {raw_path} ({e})"}
            key = "bytes_written" if operation == "write" else "bytes_appended"
            return 0, {
                "success": True,
                "operation": operation,
                "path": raw_path,
                key: len(content.encode("utf-8")),
            }

        if operation == "list":
            if not path.is_dir():
                return 1, {"success": False, "error": f"Directory not found: {raw_path}"}
            entries = sorted(path.iterdir(), key=lambda p: p.name)
            return 0, {
                "success": True,
                "operation": "list",
                "path": raw_path,
                "files": [p.name + ("/" if p.is_dir() else "") for p in entries],
            }

        return 1, {"success": False, "error": f"Unknown operation: {operation}"}
