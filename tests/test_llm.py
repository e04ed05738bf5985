"""
Tests for the chat-completions client, using httpx.MockTransport.
"""

import json

import httpx
import pytest

from killer.config import LLMConfig
from killer.llm import ChatResponse, LLMClient, LLMError


def _config() -> LLMConfig:
    return LLMConfig(base_url="https://api.example.com/v4/", api_key="secret", model="glm-4.6")


def _completion(message: dict, finish_reason: str = "stop", usage: dict | None = None) -> dict:
    data = {"choices": [{"message": message, "finish_reason": finish_reason}]}
    if usage is not None:
        data["usage"] = usage
    return data


class TestLLMClient:
    """Test the request side of the client."""

    def test_request_shape(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion({"content": "hi"}))

        tools = [{"type": "function", "function": {"name": "calculator", "parameters": {}}}]
        with LLMClient(_config(), transport=httpx.MockTransport(handler)) as client:
            client.chat([{"role": "user", "content": "hello"}], tools=tools)

        assert seen["url"] == "https://api.example.com/v4/chat/completions"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["model"] == "glm-4.6"
        assert seen["body"]["messages"] == [{"role": "user", "content": "hello"}]
        assert seen["body"]["tools"] == tools
        assert seen["body"]["tool_choice"] == "auto"

    def test_tools_omitted_when_empty(self) -> None:
        client = LLMClient(_config(), transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        payload = client.build_payload([{"role": "user", "content": "x"}], tools=[])

        assert "tools" not in payload
        assert "tool_choice" not in payload

    def test_non_2xx_raises(self) -> None:
        transport = httpx.MockTransport(lambda r: httpx.Response(429, text="rate limited"))
        client = LLMClient(_config(), transport=transport)

        with pytest.raises(LLMError, match="HTTP 429") as exc_info:
            client.chat([{"role": "user", "content": "x"}])
        assert exc_info.value.status_code == 429

    def test_malformed_json_raises(self) -> None:
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>oops"))
        client = LLMClient(_config(), transport=transport)

        with pytest.raises(LLMError, match="Invalid JSON"):
            client.chat([{"role": "user", "content": "x"}])

    def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = LLMClient(_config(), transport=httpx.MockTransport(handler))

        with pytest.raises(LLMError, match="Request failed"):
            client.chat([{"role": "user", "content": "x"}])

    def test_no_retry(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="boom")

        client = LLMClient(_config(), transport=httpx.MockTransport(handler))
        with pytest.raises(LLMError):
            client.chat([{"role": "user", "content": "x"}])

        assert len(calls) == 1


class TestChatResponse:
    """Test response parsing."""

    def test_parse_final_answer_with_usage(self) -> None:
        response = ChatResponse.from_api_response(_completion(
            {"content": "Done."},
            usage={"prompt_tokens": 120, "completion_tokens": 8, "total_tokens": 128},
        ))

        assert response.content == "Done."
        assert response.finish_reason == "stop"
        assert not response.has_tool_calls
        assert response.usage.prompt_tokens == 120
        assert response.usage.completion_tokens == 8

    def test_parse_tool_calls(self) -> None:
        response = ChatResponse.from_api_response(_completion(
            {
                "content": None,
                "tool_calls": [{
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "calculator", "arguments": '{"expression": "2+2"}'},
                }],
            },
            finish_reason="tool_calls",
        ))

        assert response.has_tool_calls
        assert response.content == ""
        call = response.tool_calls[0]
        assert call.id == "call_1"
        assert call.name == "calculator"
        assert call.arguments == {"expression": "2+2"}
        assert call.raw_arguments == '{"expression": "2+2"}'

    def test_invalid_arguments_kept_raw(self) -> None:
        response = ChatResponse.from_api_response(_completion(
            {"tool_calls": [{"id": "c", "function": {"name": "t", "arguments": "{not json"}}]},
            finish_reason="tool_calls",
        ))

        assert response.tool_calls[0].arguments == {"raw": "{not json"}

    def test_api_error_field(self) -> None:
        with pytest.raises(LLMError, match="API Error: quota exceeded"):
            ChatResponse.from_api_response({"error": {"message": "quota exceeded"}})

    def test_missing_choices(self) -> None:
        with pytest.raises(LLMError, match="no choices"):
            ChatResponse.from_api_response({"choices": []})

    def test_missing_finish_reason(self) -> None:
        with pytest.raises(LLMError, match="finish_reason"):
            ChatResponse.from_api_response({"choices": [{"message": {"content": "x"}}]})

    def test_usage_optional(self) -> None:
        response = ChatResponse.from_api_response(_completion({"content": "x"}))
        assert response.usage is None

    @pytest.mark.parametrize("data", [
        {"choices": ["oops"]},
        {"choices": [{"finish_reason": "tool_calls", "message": {"tool_calls": ["bad"]}}]},
        {"choices": [{"finish_reason": "tool_calls", "message": {"tool_calls": {"id": "c"}}}]},
        {"choices": [{"finish_reason": "tool_calls", "message": {"tool_calls": [{"id": "c", "function": "f"}]}}]},
        {"choices": [{"finish_reason": "stop", "message": {"content": ["x"]}}]},
        {"choices": [{"finish_reason": "stop", "message": {"content": "x"}}], "usage": {"prompt_tokens": "many"}},
    ])
    def test_malformed_shapes_raise_llm_error(self, data) -> None:
        with pytest.raises(LLMError, match="Invalid response from API"):
            ChatResponse.from_api_response(data)

    def test_non_string_arguments_kept_raw(self) -> None:
        response = ChatResponse.from_api_response(_completion(
            {"tool_calls": [{"id": "c", "function": {"name": "t", "arguments": 42}}]},
            finish_reason="tool_calls",
        ))

        call = response.tool_calls[0]
        assert call.arguments == {"raw": 42}
        assert call.to_dict()["function"]["arguments"] == '{"raw": 42}'

    def test_missing_call_id_gets_positional_id(self) -> None:
        response = ChatResponse.from_api_response(_completion(
            {"tool_calls": [
                {"function": {"name": "a", "arguments": "{}"}},
                {"function": {"name": "b", "arguments": "{}"}},
            ]},
            finish_reason="tool_calls",
        ))

        assert [c.id for c in response.tool_calls] == ["call_0", "call_1"]
