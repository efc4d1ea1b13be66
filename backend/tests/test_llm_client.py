import httpx
import pytest
from unittest.mock import AsyncMock, patch, MagicMock
from anthropic import APIConnectionError

from pchealth.errors import ReasoningServiceError
from pchealth.utils.llm_client import AnthropicClient


def _mock_response(text="test response", input_tokens=100, output_tokens=50, stop_reason="end_turn"):
    response = MagicMock()
    response.content = [MagicMock(type="text", text=text)]
    response.usage = MagicMock(input_tokens=input_tokens, output_tokens=output_tokens)
    response.stop_reason = stop_reason
    return response


@pytest.mark.asyncio
async def test_client_tracks_tokens():
    with patch("pchealth.utils.llm_client.AsyncAnthropic") as mock_cls:
        mock_instance = AsyncMock()
        mock_instance.messages.create = AsyncMock(return_value=_mock_response())
        mock_cls.return_value = mock_instance

        client = AnthropicClient(agent_name="test_agent")
        await client.chat_with_tools(system="s", messages=[{"role": "user", "content": "Why is my PC slow?"}])
        usage = client.get_total_usage()
        assert usage.total_tokens == 150
        assert usage.agent_name == "test_agent"


@pytest.mark.asyncio
async def test_client_accumulates_tokens():
    with patch("pchealth.utils.llm_client.AsyncAnthropic") as mock_cls:
        mock_instance = AsyncMock()
        mock_instance.messages.create = AsyncMock(return_value=_mock_response())
        mock_cls.return_value = mock_instance

        client = AnthropicClient(agent_name="chat_assistant")
        await client.chat_with_tools(system="s", messages=[{"role": "user", "content": "Query 1"}])
        await client.chat_with_tools(system="s", messages=[{"role": "user", "content": "Query 2"}])
        usage = client.get_total_usage()
        assert usage.input_tokens == 200
        assert usage.output_tokens == 100
        assert usage.total_tokens == 300


@pytest.mark.asyncio
async def test_chat_with_tools_passes_tools_and_returns_raw_response():
    raw = _mock_response(stop_reason="tool_use")
    tools = [{"name": "check_disk_health", "description": "x", "input_schema": {"type": "object", "properties": {}}}]
    with patch("pchealth.utils.llm_client.AsyncAnthropic") as mock_cls:
        mock_instance = AsyncMock()
        mock_instance.messages.create = AsyncMock(return_value=raw)
        mock_cls.return_value = mock_instance

        client = AnthropicClient(agent_name="conversational_agent", model="claude-test")
        messages = [{"role": "user", "content": "Is my disk OK?"}]
        response = await client.chat_with_tools(system="You are a technician.", messages=messages, tools=tools)

        assert response is raw
        kwargs = mock_instance.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "You are a technician."
        assert kwargs["messages"] == messages
        assert kwargs["tools"] == tools


@pytest.mark.asyncio
async def test_chat_with_tools_omits_empty_tools():
    with patch("pchealth.utils.llm_client.AsyncAnthropic") as mock_cls:
        mock_instance = AsyncMock()
        mock_instance.messages.create = AsyncMock(return_value=_mock_response())
        mock_cls.return_value = mock_instance

        client = AnthropicClient()
        await client.chat_with_tools(system="s", messages=[{"role": "user", "content": "hi"}], tools=None)
        assert "tools" not in mock_instance.messages.create.call_args.kwargs


@pytest.mark.asyncio
async def test_api_error_becomes_reasoning_service_error():
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    with patch("pchealth.utils.llm_client.AsyncAnthropic") as mock_cls:
        mock_instance = AsyncMock()
        mock_instance.messages.create = AsyncMock(side_effect=APIConnectionError(request=request))
        mock_cls.return_value = mock_instance

        client = AnthropicClient(agent_name="conversational_agent")
        with pytest.raises(ReasoningServiceError):
            await client.chat_with_tools(system="s", messages=[{"role": "user", "content": "hi"}])
        assert client.get_total_usage().total_tokens == 0
