"""
Context Budget Manager - Token accounting and tool-result compression.

Token counting has one canonical path. The prompt-token count reported by
the API for the last call is the anchor; after any structural edit to the
history the current size is the anchor plus the heuristic size
(characters / chars_per_token) of the change in serialized length since
that call. Before the first API report the heuristic is applied to the
whole array.

When the current size reaches the compression threshold, every run of
consecutive Tool messages that has not been compressed yet is replaced by
one Tool message holding a model-written summary. System, User and
Assistant messages are never touched. If the history is still at or above
the hard ceiling afterwards, CompressionError is raised and the caller must
not call the model.
"""

import json
import logging
from typing import Any, Protocol

from killer.config import ContextConfig
from killer.session import Conversation, TokenBudget
from killer.types import Message, Role

logger = logging.getLogger(__name__)

COMPRESSED_PREFIX = "[Compressed "
PLACEHOLDER_SUMMARY = (
    "Summary unavailable; earlier tool results were removed to stay within "
    "the context budget. Re-run a tool if you need its output again."
)


class CompressionError(Exception):
    """The history cannot be brought under the context ceiling."""
    pass


class SummaryClient(Protocol):
    """Anything with an LLMClient-compatible ``chat`` method."""

    def chat(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None) -> Any: ...


def is_compressed(message: Message) -> bool:
    return message.role == Role.TOOL and (message.content or "").startswith(COMPRESSED_PREFIX)


def tool_runs(messages: list[Message]) -> list[tuple[int, int]]:
    """Half-open index ranges of each maximal run of Tool messages."""
    runs: list[tuple[int, int]] = []
    i = 0
    while i < len(messages):
        if messages[i].role != Role.TOOL:
            i += 1
            continue
        j = i
        while j < len(messages) and messages[j].role == Role.TOOL:
            j += 1
        runs.append((i, j))
        i = j
    return runs


class ContextBudgetManager:
    """
    Tracks the session's TokenBudget and compresses tool results.

    ``llm_client`` is used for the summarization sub-call. Without one (or
    when the sub-call fails) the placeholder summary is used.
    """

    def __init__(
        self,
        config: ContextConfig | None = None,
        llm_client: SummaryClient | None = None,
        budget: TokenBudget | None = None,
    ) -> None:
        self.config = config or ContextConfig.from_env()
        self.llm_client = llm_client
        self.budget = budget or TokenBudget(
            max_context_tokens=self.config.max_context_tokens,
            compression_threshold=self.config.compression_threshold,
        )
        self._anchor_tokens: int | None = None
        self._anchor_chars = 0

    def estimate_chars(self, chars: int) -> int:
        """Approximate token count of ``chars`` serialized characters."""
        return int(chars / self.config.chars_per_token)

    def record_usage(
        self,
        prompt_tokens: int,
        completion_tokens: int,
        sent_chars: int | None = None,
    ) -> None:
        """
        Account for one completed API call.

        Args:
            prompt_tokens: Prompt tokens reported by the API
            completion_tokens: Completion tokens reported by the API
            sent_chars: Serialized length of the history that was sent; it
                becomes the anchor for later heuristic adjustments
        """
        self.budget.cumulative_used += prompt_tokens + completion_tokens
        self.budget.current_context_tokens = prompt_tokens
        self._anchor_tokens = prompt_tokens
        self._anchor_chars = sent_chars or 0
        logger.debug(
            f"Usage: prompt={prompt_tokens} completion={completion_tokens} "
            f"cumulative={self.budget.cumulative_used}"
        )

    def update(self, conversation: Conversation, extra_chars: int = 0) -> int:
        """
        Re-estimate the current context size after a structural change.

        ``extra_chars`` covers content sent alongside the history (tool
        schemas, ephemeral messages) and only matters before the first API
        report.
        """
        chars = conversation.serialized_length()
        if self._anchor_tokens is None:
            current = self.estimate_chars(chars + extra_chars)
        else:
            current = self._anchor_tokens + self.estimate_chars(chars - self._anchor_chars)
        self.budget.current_context_tokens = max(0, current)
        return self.budget.current_context_tokens

    def should_compress(self) -> bool:
        return self.budget.current_context_tokens >= self.budget.compression_threshold

    def exceeds_ceiling(self) -> bool:
        return self.budget.current_context_tokens >= self.budget.max_context_tokens

    def compress(self, messages: list[Message]) -> list[Message]:
        """
        Return a new history with every uncompressed tool run summarized.

        Runs made only of already-compressed messages are kept as they are,
        so compressing twice without new tool output changes nothing.
        """
        result: list[Message] = []
        cursor = 0
        for start, end in tool_runs(messages):
            result.extend(messages[cursor:start])
            run = messages[start:end]
            cursor = end
            if all(is_compressed(m) for m in run):
                result.extend(run)
                continue

            user_requests = [
                m.content for m in messages[:start]
                if m.role == Role.USER and m.content
            ]
            summary = self.summarize(run, user_requests)
            result.append(Message(
                role=Role.TOOL,
                content=f"{COMPRESSED_PREFIX}{len(run)} tool results] {summary}",
                tool_call_id=run[0].tool_call_id,
            ))
        result.extend(messages[cursor:])
        return result

    def apply(self, conversation: Conversation, extra_chars: int = 0) -> int:
        """
        Compress ``conversation`` in place and re-estimate the budget.

        Returns the number of messages removed.

        Raises:
            CompressionError: If the history is still at or above the ceiling
        """
        before = conversation.messages()
        after = self.compress(before)
        removed = len(before) - len(after)
        if after != before:
            conversation.replace(after)
            logger.info(
                f"Compressed tool results: {len(before)} -> {len(after)} messages"
            )
        tokens = self.update(conversation, extra_chars)
        if self.exceeds_ceiling():
            raise CompressionError(
                f"Context still at ~{tokens} tokens after compression "
                f"(limit {self.budget.max_context_tokens})"
            )
        return removed

    def summarize(self, run: list[Message], user_requests: list[str]) -> str:
        """
        Summarize a run of tool results with one model call.

        Never raises: any failure yields PLACEHOLDER_SUMMARY.
        """
        if self.llm_client is None:
            return PLACEHOLDER_SUMMARY

        limit = int(self.config.max_context_tokens * self.config.chars_per_token / 2)
        results_text = "\n\n".join(
            f"[{m.name or 'tool'}] {m.content or ''}" for m in run
        )[:limit]
        requests_text = "\n".join(f"- {r}" for r in user_requests) or "- (none)"

        prompt = (
            "Summarize the following tool results for an agent that is still working "
            "on the user's requests. Keep only what matters for those requests: file "
            "paths, command outcomes and exit codes, error messages, key values and "
            f"decisions. Use at most {self.config.summary_max_words} words.\n\n"
            f"User requests:\n{requests_text}\n\n"
            f"Tool results:\n{results_text}"
        )

        try:
            response = self.llm_client.chat(
                messages=[
                    {"role": "system", "content": "You write short, factual summaries of tool output."},
                    {"role": "user", "content": prompt},
                ],
                tools=None,
            )
            summary = (response.content or "").strip()
        except Exception as e:
            logger.warning(f"Tool result summarization failed: {e}, using placeholder")
            return PLACEHOLDER_SUMMARY

        if not summary:
            return PLACEHOLDER_SUMMARY
        words = summary.split()
        if len(words) > self.config.summary_max_words:
            summary = " ".join(words[: self.config.summary_max_words]) + " ..."
        if getattr(response, "usage", None):
            self.budget.cumulative_used += response.usage.total_tokens
        return summary


def wire_length(messages: list[dict[str, Any]]) -> int:
    """Serialized length of an arbitrary wire payload fragment."""
    return len(json.dumps(messages, ensure_ascii=False))
