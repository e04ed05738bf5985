"""
Confirmation Gate - Human approval for destructive commands.

The gate is a two-flag state machine (see ConfirmationState):

- ``needs_user_input`` is raised only when the invoker cancels a command
  with ``destructive_command_not_confirmed``.
- ``user_just_confirmed`` is raised when a human reply is affirmative while
  a blocked command is pending. At that moment a System message authorizing
  exactly one retry is added to the conversation. Any reply, yes or no,
  clears ``needs_user_input``: the input it asked for has been given.

When the next tool-calls cycle begins both flags are cleared. If
``user_just_confirmed`` was set, the cycle receives a single-use grant: the
first destructive call carrying ``user_confirmed`` consumes it. Any other
``user_confirmed`` flag the model sends is stripped before invocation, so
the model cannot approve its own commands.

Both natural-language heuristics (does the model's answer ask for
confirmation, is the human's reply a yes) are pluggable classifiers.
"""

import logging
import re
from typing import Any, Protocol

from killer.invoker import DESTRUCTIVE_NOT_CONFIRMED, is_confirmed
from killer.session import ConfirmationState
from killer.types import InvocationResult, Message, Role

logger = logging.getLogger(__name__)

CONFIRMATION_PHRASES: tuple[str, ...] = (
    "confirm",
    "proceed",
    "continue",
    "are you sure",
    "do you want",
    "would you like",
    "shall i",
    "should i",
    "go ahead",
    "approve",
    "permission",
    "确认",
    "是否",
    "继续",
)

AFFIRMATIVE_WORDS: frozenset[str] = frozenset({
    "yes",
    "y",
    "ok",
    "okay",
    "confirm",
    "confirmed",
    "proceed",
    "sure",
    "yep",
    "yeah",
    "是",
    "是的",
    "好",
    "好的",
    "确认",
    "继续",
    "同意",
    "可以",
})

_LEADING_WORD = re.compile(r"^[\s\"'`(\[]*([^\s,.!?;:，。！？；：]+)")


class OutputClassifier(Protocol):
    """Decides whether a final model answer is asking the human to confirm."""

    def solicits_confirmation(self, content: str) -> bool: ...


class ReplyClassifier(Protocol):
    """Decides whether a human reply is an approval."""

    def is_affirmative(self, reply: str) -> bool: ...


class KeywordOutputClassifier:
    """A question mark plus one of a fixed set of confirmation phrases."""

    def __init__(self, phrases: tuple[str, ...] = CONFIRMATION_PHRASES) -> None:
        self.phrases = tuple(p.lower() for p in phrases)

    def solicits_confirmation(self, content: str) -> bool:
        if not content or ("?" not in content and "？" not in content):
            return False
        lowered = content.lower()
        return any(phrase in lowered for phrase in self.phrases)


class KeywordReplyClassifier:
    """
    Case-insensitive keyword match on the reply's leading word.

    Only the first word counts, so "no, don't proceed" is not an approval.
    """

    def __init__(self, words: frozenset[str] = AFFIRMATIVE_WORDS) -> None:
        self.words = frozenset(w.lower() for w in words)

    def is_affirmative(self, reply: str) -> bool:
        match = _LEADING_WORD.match(reply.strip().lower())
        if not match:
            return False
        word = match.group(1)
        return word in self.words or reply.strip().lower() in self.words


def authorization_message(command: str | None) -> Message:
    """The single System instruction that permits a confirmed retry."""
    target = f"`{command}`" if command else "the previously blocked operation"
    return Message(
        role=Role.SYSTEM,
        content=(
            f"The user has explicitly confirmed {target}. You may retry exactly that "
            "operation ONE time with the parameter user_confirmed set to true. "
            "Do not set user_confirmed for any other command; every further "
            "destructive command needs a new confirmation."
        ),
    )


class ConfirmationGate:
    """Owns the confirmation flags for one session."""

    def __init__(
        self,
        state: ConfirmationState | None = None,
        output_classifier: OutputClassifier | None = None,
        reply_classifier: ReplyClassifier | None = None,
    ) -> None:
        self.state = state if state is not None else ConfirmationState()
        self.output_classifier = output_classifier or KeywordOutputClassifier()
        self.reply_classifier = reply_classifier or KeywordReplyClassifier()
        self.blocked_command: str | None = None
        self._grant = False

    def begin_tool_cycle(self) -> None:
        """Reset both flags; carry a fresh confirmation into this cycle only."""
        self._grant = self.state.user_just_confirmed
        if not self._grant:
            self.blocked_command = None
        self.state.reset()

    def authorize(self, arguments: dict[str, Any], destructive: bool) -> dict[str, Any]:
        """
        Return the arguments the invoker should actually receive.

        A ``user_confirmed`` flag survives only when it targets a destructive
        command and the current cycle holds an unused grant.
        """
        if not is_confirmed(arguments):
            return arguments
        if destructive and self._grant:
            self._grant = False
            self.blocked_command = None
            return arguments
        if destructive:
            logger.warning("Ignoring user_confirmed flag that was not authorized by the user")
        cleaned = dict(arguments)
        cleaned["user_confirmed"] = False
        return cleaned

    def observe(self, result: InvocationResult, command: str | None = None) -> None:
        """Inspect an invocation result for a confirmation refusal."""
        if result.cancelled and result.result.get("reason") == DESTRUCTIVE_NOT_CONFIRMED:
            self.state.needs_user_input = True
            self.blocked_command = command or result.result.get("command")
            logger.info(f"Awaiting user confirmation for: {self.blocked_command}")

    def should_pause(self, content: str, interactive: bool) -> bool:
        """Whether a final answer must be followed by a human turn."""
        return (
            interactive
            or self.state.needs_user_input
            or self.output_classifier.solicits_confirmation(content)
        )

    def handle_reply(self, reply: str) -> Message | None:
        """
        Process a human reply.

        Returns the authorizing System message when the reply approves a
        pending blocked command, otherwise None.
        """
        if not self.state.needs_user_input:
            return None
        self.state.needs_user_input = False
        if not self.reply_classifier.is_affirmative(reply):
            logger.info("User did not confirm the blocked operation")
            self.blocked_command = None
            return None
        self.state.user_just_confirmed = True
        logger.info("User confirmed the blocked operation")
        return authorization_message(self.blocked_command)
