"""
Core types for the agent system.

These types represent the data that flows through the iteration engine:
role-tagged messages, the tool calls the model asks for, the results the
invoker hands back, and the usage numbers the API reports.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Message roles in the conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCall:
    """
    A request from the model to execute a tool.

    ``arguments`` is the decoded payload. ``raw_arguments`` keeps the exact
    string the model sent so the assistant message can be echoed back to the
    API unchanged.
    """
    id: str
    name: str
    arguments: dict[str, Any]
    raw_arguments: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the OpenAI ``tool_calls`` entry format."""
        arguments = self.raw_arguments
        if arguments is None:
            arguments = json.dumps(self.arguments, ensure_ascii=False)
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": arguments,
            },
        }


@dataclass(frozen=True)
class Message:
    """
    A single message in the conversation history.

    Messages are immutable once created; the conversation only grows, or is
    replaced wholesale when tool results are compressed.
    """
    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to OpenAI API format."""
        result: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
        }
        if self.tool_calls:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            result["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            result["name"] = self.name
        return result

    @property
    def call_ids(self) -> tuple[str, ...]:
        return tuple(tc.id for tc in self.tool_calls or ())


@dataclass
class InvocationResult:
    """
    The outcome of invoking one tool.

    ``result`` is the structured payload (what ends up, JSON encoded, in the
    Tool message). ``exit_status`` follows process conventions: 0 success,
    1 generic failure, 124 timeout.
    """
    success: bool
    exit_status: int
    result: dict[str, Any] = field(default_factory=dict)

    @property
    def timed_out(self) -> bool:
        return bool(self.result.get("timeout"))

    @property
    def cancelled(self) -> bool:
        return bool(self.result.get("cancelled"))

    def to_content(self) -> str:
        """Serialize the payload for embedding in a Tool message."""
        return json.dumps(self.result, ensure_ascii=False)


@dataclass
class TokenUsage:
    """Token usage as reported by the chat-completions API."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TokenUsage | None":
        if not data:
            return None
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        total = int(data.get("total_tokens") or prompt + completion)
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


class LoopPhase(str, Enum):
    """States of the iteration controller."""
    INIT = "init"
    CALL_MODEL = "call_model"
    TOOL_CALLS = "tool_calls"
    AWAIT_USER = "await_user"
    STOP = "stop"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopPhase.STOP, LoopPhase.ERROR)
