"""
Command classification for the shell tool.

Two questions are asked of every shell command before it runs:
- is it destructive (irreversible data loss: removal, shredding, raw
  device writes, filesystem formatting)?
- is it privileged (needs sudo authentication first)?

Both answers come from fixed regular-expression sets. This is a heuristic:
it will miss destructive commands spelled in other ways and will flag some
harmless ones (``grep rm notes.txt``). Callers must treat a negative answer
as "not in the pattern set", never as "safe".
"""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DESTRUCTIVE_PATTERNS: tuple[str, ...] = (
    r"\brm\b",
    r"\brmdir\b",
    r"\bunlink\b",
    r"\bshred\b",
    r"\bdd\b.*of=",
    r"\bmkfs\b",
    r"\bfdisk\b",
    r"\bparted\b",
    r">\s*/dev/",
    r"\btruncate\b.*-s\s*0",
)

PRIVILEGED_PATTERN = re.compile(r"^\s*sudo\b")


@dataclass
class CommandVerdict:
    """Result of classifying a command."""

    command: str
    matched_patterns: list[str] = field(default_factory=list)
    privileged: bool = False

    @property
    def is_destructive(self) -> bool:
        return bool(self.matched_patterns)


class CommandPolicy:
    """Classifies shell commands against the destructive pattern set."""

    def __init__(self, destructive_patterns: tuple[str, ...] | list[str] = DESTRUCTIVE_PATTERNS):
        self.destructive_patterns = [
            (pattern, re.compile(pattern)) for pattern in destructive_patterns
        ]

    def classify(self, command: str, request_sudo: bool = False) -> CommandVerdict:
        """Classify ``command``; ``request_sudo`` forces privileged handling."""
        matched = [
            pattern for pattern, regex in self.destructive_patterns
            if regex.search(command)
        ]
        verdict = CommandVerdict(
            command=command,
            matched_patterns=matched,
            privileged=request_sudo or self.is_privileged(command),
        )
        if matched:
            logger.debug(f"Destructive command detected ({', '.join(matched)}): {command}")
        return verdict

    def is_destructive(self, command: str) -> bool:
        return self.classify(command).is_destructive

    @staticmethod
    def is_privileged(command: str) -> bool:
        return bool(PRIVILEGED_PATTERN.match(command))


default_policy = CommandPolicy()
