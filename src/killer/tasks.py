"""
Task list persistence and the status summary fed to the model.

The task list is a JSON document ``{"tasks": [...]}`` kept on disk by the
task_planner tool. The agent core only ever reads it, through
TaskStatusReader, to remind the model where it is in its plan before each
model call.
"""

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

STATUSES = ("pending", "in_progress", "completed", "blocked")
DEFAULT_PRIORITY = 3


@dataclass
class Task:
    id: str
    title: str
    status: str = "pending"
    notes: str = ""
    priority: int = DEFAULT_PRIORITY
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        try:
            priority = int(data.get("priority", DEFAULT_PRIORITY))
        except (TypeError, ValueError):
            priority = DEFAULT_PRIORITY
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            status=str(data.get("status", "pending")),
            notes=str(data.get("notes") or ""),
            priority=priority,
            created_at=str(data.get("created_at", "")),
            updated_at=str(data.get("updated_at", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TaskStore:
    """Reads and atomically rewrites the task document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> list[Task]:
        """
        Load all tasks. A missing file is an empty list.

        Raises:
            ValueError: If the file exists but is not a task document
        """
        if not self.path.exists():
            return []
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return []
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Task file {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("tasks", []), list):
            raise ValueError(f"Task file {self.path} has no tasks array")
        return [Task.from_dict(t) for t in data.get("tasks", []) if isinstance(t, dict)]

    def save(self, tasks: list[Task]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {"tasks": [t.to_dict() for t in tasks]}
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".tasks-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


class TaskStatusReader:
    """Builds a short plain-text summary of the task list."""

    def __init__(self, path: str | Path, max_listed: int = 10) -> None:
        self.store = TaskStore(path)
        self.max_listed = max_listed

    def summary(self) -> str | None:
        """Return the summary, or None when there is nothing to report."""
        try:
            tasks = self.store.load()
        except (OSError, ValueError) as e:
            logger.debug(f"Task status unavailable: {e}")
            return None
        if not tasks:
            return None

        counts = {status: 0 for status in STATUSES}
        for task in tasks:
            counts[task.status] = counts.get(task.status, 0) + 1

        open_tasks = sorted(
            (t for t in tasks if t.status != "completed"),
            key=lambda t: (t.priority, t.created_at),
        )

        lines = [
            "[TASK STATUS] "
            + ", ".join(f"{status}: {count}" for status, count in counts.items())
            + f" (total {len(tasks)})"
        ]
        for task in open_tasks[: self.max_listed]:
            line = f"- [{task.status}] {task.title} (id={task.id}, priority={task.priority})"
            if task.notes:
                line += f" - {task.notes}"
            lines.append(line)
        if len(open_tasks) > self.max_listed:
            lines.append(f"... and {len(open_tasks) - self.max_listed} more open tasks")
        if not open_tasks:
            lines.append("All tasks are completed.")
        return "\n".join(lines)
