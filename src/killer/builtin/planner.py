"""Task list planning tool backed by TaskStore."""

import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from killer.tasks import DEFAULT_PRIORITY, STATUSES, Task, TaskStore
from killer.tools import Tool, ToolContext

ACTIONS = ("list", "batch_add", "batch_update", "batch_delete")


def _now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class TaskPlannerTool(Tool):
    """
    Batch-oriented task list management.

    Items in a batch are processed independently: an invalid item is
    reported under ``skipped`` and does not abort the rest of the batch.
    """

    name = "task_planner"

    def __init__(self, task_file: str | Path | None = None) -> None:
        self.task_file = Path(task_file) if task_file else None

    def get_definition(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": (
                    "Manage task lists for planning and tracking complex operations. "
                    "IMPORTANT: For complex tasks (3+ steps), create a COMPLETE task plan at "
                    "the start before execution. Then execute tasks one by one, updating their "
                    "status. Only add new tasks if you discover essential steps missing from "
                    "the original plan. Supports batch operations only."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "action": {
                            "type": "string",
                            "enum": list(ACTIONS),
                            "description": (
                                "Action: list (show all tasks), batch_add, batch_update, batch_delete"
                            ),
                        },
                        "tasks": {
                            "type": "array",
                            "description": (
                                "Tasks for batch operations. batch_add: {title (required), status, "
                                "notes, priority}. batch_update: {task_id (required), title, status, "
                                "notes, priority}. batch_delete: {task_id (required)}"
                            ),
                            "items": {
                                "type": "object",
                                "properties": {
                                    "task_id": {"type": "string"},
                                    "title": {"type": "string"},
                                    "status": {"type": "string", "enum": list(STATUSES)},
                                    "notes": {"type": "string"},
                                    "priority": {
                                        "type": "integer",
                                        "description": "Task priority 1-5",
                                    },
                                },
                            },
                        },
                    },
                    "required": ["action"],
                },
            },
        }

    def _store(self, context: ToolContext) -> TaskStore:
        path = self.task_file or context.task_file
        if path is None:
            raise ValueError("No task file configured")
        return TaskStore(path)

    def execute(self, arguments: dict[str, Any], context: ToolContext) -> tuple[int, dict[str, Any]]:
        action = arguments.get("action")
        store = self._store(context)
        tasks = store.load()

        if action == "list":
            return 0, {
                "success": True,
                "action": "list",
                "task_count": len(tasks),
                "tasks": [t.to_dict() for t in tasks],
            }

        if action not in ACTIONS:
            return 1, {"success": False, "error": f"Unknown action: {action}"}

        items = arguments.get("tasks")
        if not isinstance(items, list):
            return 1, {"success": False, "error": f"Tasks array is required for {action}"}

        if action == "batch_add":
            changed, skipped = self._add(tasks, items)
            key = "added_count"
        elif action == "batch_update":
            changed, skipped = self._update(tasks, items)
            key = "updated_count"
        else:
            changed, skipped = self._delete(tasks, items)
            key = "deleted_count"

        if changed:
            store.save(tasks)

        payload: dict[str, Any] = {
            "success": True,
            "action": action,
            key: len(changed),
            "tasks": [t.to_dict() for t in changed],
        }
        if skipped:
            payload["skipped"] = skipped
        return 0, payload

    @staticmethod
    def _add(tasks: list[Task], items: list[Any]) -> tuple[list[Task], list[str]]:
        added: list[Task] = []
        skipped: list[str] = []
        now = _now()
        for i, item in enumerate(items):
            if not isinstance(item, dict) or not item.get("title"):
                skipped.append(f"item {i}: title is required")
                continue
            status = item.get("status", "pending")
            if status not in STATUSES:
                skipped.append(f"item {i}: invalid status {status!r}")
                continue
            task = Task(
                id=f"task_{uuid.uuid4().hex[:12]}",
                title=str(item["title"]),
                status=status,
                notes=str(item.get("notes") or ""),
                priority=int(item.get("priority", DEFAULT_PRIORITY)),
                created_at=now,
                updated_at=now,
            )
            tasks.append(task)
            added.append(task)
        return added, skipped

    @staticmethod
    def _update(tasks: list[Task], items: list[Any]) -> tuple[list[Task], list[str]]:
        by_id = {t.id: t for t in tasks}
        updated: list[Task] = []
        skipped: list[str] = []
        now = _now()
        for i, item in enumerate(items):
            task = by_id.get(item.get("task_id")) if isinstance(item, dict) else None
            if task is None:
                skipped.append(f"item {i}: unknown task_id")
                continue
            status = item.get("status")
            if status is not None and status not in STATUSES:
                skipped.append(f"item {i}: invalid status {status!r}")
                continue
            if item.get("title") is not None:
                task.title = str(item["title"])
            if status is not None:
                task.status = status
            if item.get("notes") is not None:
                task.notes = str(item["notes"])
            if item.get("priority") is not None:
                task.priority = int(item["priority"])
            task.updated_at = now
            updated.append(task)
        return updated, skipped

    @staticmethod
    def _delete(tasks: list[Task], items: list[Any]) -> tuple[list[Task], list[str]]:
        deleted: list[Task] = []
        skipped: list[str] = []
        for i, item in enumerate(items):
            task_id = item.get("task_id") if isinstance(item, dict) else None
            match = next((t for t in tasks if t.id == task_id), None)
            if match is None:
                skipped.append(f"item {i}: unknown task_id")
                continue
            tasks.remove(match)
            deleted.append(match)
        return deleted, skipped
