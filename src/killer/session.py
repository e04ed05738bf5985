"""
Session - The owned state of one agent run.

An AgentSession owns everything the iteration controller mutates: the
conversation transcript, the token budget and the confirmation flags.
Nothing here is persisted; when the process exits the session is gone.

The Conversation is append-only. The only other mutation allowed is a
wholesale replacement during compression, and even then the same
referential-integrity rules are re-checked on the new history.
"""

import json
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from killer.types import Message, Role, ToolCall


class ConversationError(Exception):
    """A message would break the transcript's invariants."""
    pass


class Conversation:
    """
    Ordered, append-only sequence of role-tagged messages.

    Every Tool message must answer a tool call id announced by the most
    recent Assistant tool-call turn, and each id can be answered once per
    turn. Ids only need to be unique within a turn; some servers restart
    their numbering (call_0, call_1, ...) on every response.
    """

    def __init__(self, messages: Iterable[Message] | None = None) -> None:
        self._messages: list[Message] = []
        self._turn_ids: set[str] = set()
        self._pending: set[str] = set()
        self._revision = 0
        for message in messages or ():
            self.append(message)

    def append(self, message: Message) -> Message:
        """Append a message after validating it against the transcript."""
        if message.role == Role.TOOL:
            call_id = message.tool_call_id
            if not call_id:
                raise ConversationError("Tool message is missing tool_call_id")
            if call_id not in self._turn_ids:
                raise ConversationError(
                    f"Tool message references unknown tool_call_id {call_id!r}"
                )
            if call_id not in self._pending:
                raise ConversationError(f"tool_call_id {call_id!r} already answered")
            self._pending.discard(call_id)
        elif message.role == Role.ASSISTANT and message.tool_calls:
            ids = message.call_ids
            if len(set(ids)) != len(ids):
                raise ConversationError("Duplicate tool call ids within one assistant turn")
            self._turn_ids = set(ids)
            self._pending = set(ids)

        self._messages.append(message)
        self._revision += 1
        return message

    def add_system(self, content: str) -> Message:
        return self.append(Message(role=Role.SYSTEM, content=content))

    def add_user(self, content: str) -> Message:
        return self.append(Message(role=Role.USER, content=content))

    def add_assistant(
        self,
        content: str | None,
        tool_calls: Iterable[ToolCall] | None = None,
    ) -> Message:
        calls = tuple(tool_calls) if tool_calls else None
        return self.append(Message(role=Role.ASSISTANT, content=content, tool_calls=calls))

    def add_tool_result(self, tool_call_id: str, name: str, content: str) -> Message:
        return self.append(Message(
            role=Role.TOOL,
            content=content,
            tool_call_id=tool_call_id,
            name=name,
        ))

    def replace(self, messages: Iterable[Message]) -> None:
        """
        Swap in a whole new history (used by compression).

        The replacement is validated from scratch; on failure the current
        history is left untouched.
        """
        rebuilt = Conversation(messages)
        self._messages = rebuilt._messages
        self._turn_ids = rebuilt._turn_ids
        self._pending = rebuilt._pending
        self._revision += 1

    def pending_call_ids(self) -> set[str]:
        """Ids of the latest tool-call turn that have no result yet."""
        return set(self._pending)

    def messages(self) -> list[Message]:
        """A copy of the current history."""
        return list(self._messages)

    def to_wire(self) -> list[dict[str, Any]]:
        """The literal message array sent to the model."""
        return [m.to_dict() for m in self._messages]

    def serialized_length(self) -> int:
        """Character length of the JSON-serialized message array."""
        return len(json.dumps(self.to_wire(), ensure_ascii=False))

    @property
    def revision(self) -> int:
        """Increments on every structural change."""
        return self._revision

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]


@dataclass
class TokenBudget:
    """
    Token accounting for one session.

    ``current_context_tokens`` is the size of the history that the next
    call will send; ``cumulative_used`` sums every prompt and completion
    token the API has reported.
    """
    max_context_tokens: int
    compression_threshold: int
    cumulative_used: int = 0
    current_context_tokens: int = 0

    @property
    def utilization(self) -> float:
        """Fraction of the ceiling currently in use."""
        if self.max_context_tokens <= 0:
            return 0.0
        return self.current_context_tokens / self.max_context_tokens


@dataclass
class ConfirmationState:
    """Transient per-cycle flags driven by the confirmation gate."""
    needs_user_input: bool = False
    user_just_confirmed: bool = False

    def reset(self) -> None:
        self.needs_user_input = False
        self.user_just_confirmed = False


@dataclass
class AgentSession:
    """
    All mutable state of a single agent run.

    Owned exclusively by the iteration controller.
    """
    budget: TokenBudget
    conversation: Conversation = field(default_factory=Conversation)
    confirmation: ConfirmationState = field(default_factory=ConfirmationState)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    iteration: int = 0
    api_calls: int = 0
    compressions: int = 0
