"""Prompt templates: markdown files in a prompts directory, one per name."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class PromptNotFoundError(Exception):
    """No template file exists for the requested name."""
    pass


class PromptLibrary:
    """Loads ``<prompts_dir>/<name>.md`` as a leading System message."""

    def __init__(self, prompts_dir: str | Path) -> None:
        self.prompts_dir = Path(prompts_dir)

    def names(self) -> list[str]:
        """Sorted names of the available templates."""
        if not self.prompts_dir.is_dir():
            return []
        return sorted(p.stem for p in self.prompts_dir.glob("*.md") if p.is_file())

    def load(self, name: str) -> str:
        """
        Return the template text for ``name``.

        Raises:
            PromptNotFoundError: If there is no such template
        """
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise PromptNotFoundError(f"Invalid prompt name: {name!r}")
        path = self.prompts_dir / f"{name}.md"
        if not path.is_file():
            raise PromptNotFoundError(f"Prompt file not found: {path}")
        logger.debug(f"Loaded prompt template {path}")
        return path.read_text(encoding="utf-8")
