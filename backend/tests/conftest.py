import copy
from types import SimpleNamespace

import pytest

from pchealth.config import AgentConfig
from pchealth.models.schemas import TokenUsage


def text_block(text):
    return SimpleNamespace(type="text", text=text)


def tool_use_block(block_id, name, tool_input=None):
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=tool_input or {})


def make_response(*blocks, stop_reason=None, input_tokens=10, output_tokens=5):
    """Message-shaped response: stop_reason, content blocks, usage."""
    if stop_reason is None:
        stop_reason = "tool_use" if any(b.type == "tool_use" for b in blocks) else "end_turn"
    return SimpleNamespace(
        stop_reason=stop_reason,
        content=list(blocks),
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


class FakeReasoningService:
    """Replays scripted responses in order and records every request.

    A scripted Exception instance is raised instead of returned.
    """

    def __init__(self, responses=None, agent_name="fake_agent"):
        self.responses = list(responses or [])
        self.agent_name = agent_name
        self.calls = []
        self._input_tokens = 0
        self._output_tokens = 0

    def script(self, *responses):
        self.responses.extend(responses)

    async def chat_with_tools(self, system, messages, tools=None, max_tokens=8192, temperature=0.0):
        self.calls.append({
            "system": system,
            "messages": copy.deepcopy(messages),
            "tools": tools,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            raise AssertionError("FakeReasoningService ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        self._input_tokens += response.usage.input_tokens
        self._output_tokens += response.usage.output_tokens
        return response

    def get_total_usage(self):
        return TokenUsage(
            agent_name=self.agent_name,
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
            total_tokens=self._input_tokens + self._output_tokens,
        )


class FakeRunner:
    """Async command runner. `results` maps a substring of the command to a
    (returncode, stdout, stderr) tuple or an exception to raise."""

    def __init__(self, results=None, default=(0, "0", "")):
        self.results = dict(results or {})
        self.default = default
        self.calls = []

    async def __call__(self, command, timeout):
        self.calls.append(command)
        for needle, outcome in self.results.items():
            if needle in command:
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return self.default


@pytest.fixture
def config():
    return AgentConfig(step_delay=0.0)


@pytest.fixture
def fake_llm():
    return FakeReasoningService()


@pytest.fixture
def runner():
    return FakeRunner()
