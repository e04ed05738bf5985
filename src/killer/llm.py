"""
LLM Client - Thin client for chat-completions style APIs.

Works with any OpenAI-compatible endpoint (GLM coding API, OpenAI, vLLM,
Ollama). The request is ``POST {base_url}/chat/completions`` with a bearer
token; the response is parsed into a ChatResponse.

There is deliberately no retry here. A bad status, an unparsable body or an
API-reported error is raised as LLMError and the controller ends the run.
"""

import json
import logging
from typing import Any

import httpx

from killer.config import LLMConfig
from killer.types import TokenUsage, ToolCall

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_POOL_TIMEOUT = 10.0


class LLMError(Exception):
    """Transport or protocol error from the model API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMClient:
    """
    Synchronous client for OpenAI-compatible chat-completions APIs.

    A custom ``transport`` can be injected for tests.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config or LLMConfig.from_env()

        timeout = httpx.Timeout(
            connect=DEFAULT_CONNECT_TIMEOUT,
            read=self.config.timeout,
            write=DEFAULT_WRITE_TIMEOUT,
            pool=DEFAULT_POOL_TIMEOUT,
        )

        self._client = httpx.Client(
            base_url=self.config.base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def build_payload(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Build the request body. ``tools`` is omitted when empty."""
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return payload

    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> "ChatResponse":
        """
        Send one chat completion request.

        Args:
            messages: The conversation in OpenAI wire format
            tools: Tool schemas, or None/empty for a plain completion

        Returns:
            ChatResponse with the first choice parsed

        Raises:
            LLMError: On network failure, non-2xx status, malformed JSON or
                an error object in the response body
        """
        payload = self.build_payload(messages, tools)
        logger.debug(
            f"Sending chat request with {len(messages)} messages "
            f"and {len(tools or [])} tools"
        )

        try:
            response = self._client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise LLMError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise LLMError(f"Request failed: {e}") from e

        if not response.is_success:
            raise LLMError(
                f"HTTP {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(f"Invalid JSON response from API: {response.text[:200]}") from e

        return ChatResponse.from_api_response(data)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class ChatResponse:
    """
    Response from a chat completion request.

    Wraps the first choice of the API response and the reported usage.
    """

    def __init__(
        self,
        content: str | None,
        tool_calls: list[ToolCall] | None,
        finish_reason: str,
        usage: TokenUsage | None = None,
        raw_response: dict[str, Any] | None = None,
    ) -> None:
        self.content = content or ""
        self.tool_calls = tool_calls or []
        self.finish_reason = finish_reason
        self.usage = usage
        self.raw_response = raw_response or {}

    @classmethod
    def from_api_response(cls, data: Any) -> "ChatResponse":
        """Parse an API response into a ChatResponse."""
        if not isinstance(data, dict):
            raise LLMError("Invalid response from API: expected a JSON object")

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LLMError(f"API Error: {message or error}")

        choices = data.get("choices")
        if not choices or not isinstance(choices, list):
            raise LLMError("Invalid response from API: no choices")

        choice = choices[0]
        if not isinstance(choice, dict):
            raise LLMError("Invalid response from API: choice is not an object")
        message = choice.get("message")
        if not isinstance(message, dict):
            raise LLMError("Invalid response from API: missing message")

        finish_reason = choice.get("finish_reason")
        if not finish_reason or not isinstance(finish_reason, str):
            raise LLMError("Invalid response from API: missing finish_reason")

        raw_calls = message.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise LLMError("Invalid response from API: tool_calls is not a list")

        tool_calls: list[ToolCall] = []
        for index, tc in enumerate(raw_calls):
            if not isinstance(tc, dict):
                raise LLMError("Invalid response from API: tool call is not an object")
            function = tc.get("function") or {}
            if not isinstance(function, dict):
                raise LLMError("Invalid response from API: tool call function is not an object")
            raw_arguments = function.get("arguments")
            if isinstance(raw_arguments, dict):
                arguments = raw_arguments
                raw_arguments = json.dumps(raw_arguments, ensure_ascii=False)
            else:
                try:
                    arguments = json.loads(raw_arguments or "{}")
                except (json.JSONDecodeError, TypeError):
                    arguments = {"raw": raw_arguments}
                if not isinstance(arguments, dict):
                    arguments = {"raw": arguments}

            # Servers that omit ids still need one for the Tool message.
            tool_calls.append(ToolCall(
                id=str(tc.get("id") or f"call_{index}"),
                name=str(function.get("name") or ""),
                arguments=arguments,
                raw_arguments=raw_arguments if isinstance(raw_arguments, str) else None,
            ))

        content = message.get("content")
        if content is not None and not isinstance(content, str):
            raise LLMError("Invalid response from API: content is not a string")

        usage = data.get("usage")
        try:
            token_usage = TokenUsage.from_dict(usage) if isinstance(usage, dict) else None
        except (TypeError, ValueError) as e:
            raise LLMError(f"Invalid response from API: bad usage block: {e}") from e

        return cls(
            content=content,
            tool_calls=tool_calls,
            finish_reason=finish_reason,
            usage=token_usage,
            raw_response=data,
        )

    @property
    def has_tool_calls(self) -> bool:
        """Check if the response includes tool calls."""
        return len(self.tool_calls) > 0
