"""
Built-in tools shipped with the agent.

- shell_executor: run shell commands (destructive ones need confirmation)
- file_operations: read, write, append and list files
- calculator: evaluate arithmetic expressions
- task_planner: keep a persisted task list for multi-step work
"""

from killer.builtin.calculator import CalculatorTool
from killer.builtin.files import FileOperationsTool
from killer.builtin.planner import TaskPlannerTool
from killer.builtin.shell import ShellExecutorTool
from killer.tools import Tool


def builtin_tools() -> list[Tool]:
    """Discovery source yielding one instance of each built-in tool."""
    return [
        ShellExecutorTool(),
        FileOperationsTool(),
        CalculatorTool(),
        TaskPlannerTool(),
    ]


__all__ = [
    "CalculatorTool",
    "FileOperationsTool",
    "ShellExecutorTool",
    "TaskPlannerTool",
    "builtin_tools",
]
