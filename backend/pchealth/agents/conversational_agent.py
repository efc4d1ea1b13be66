import asyncio
import inspect
import json
from typing import Any, Callable

from pchealth.agents.playbooks import build_playbook_prompt
from pchealth.agents.synthesizer import apply_evidence_rules, extract_issues_from_text, filter_and_prioritize
from pchealth.config import MIN_ITERATIONS, AgentConfig, load_config
from pchealth.errors import LoopExceeded, ReasoningServiceError
from pchealth.models.schemas import (
    ChatResult, ConversationTurn, PlaybookResult, TokenUsage, ToolCall, ToolResultBlock, TurnRole,
)
from pchealth.tools.tool_executor import ToolExecutor
from pchealth.tools.tool_registry import PROPOSE_FIX_TOOL, TOOL_SCHEMAS, summarize_tool_call
from pchealth.utils.event_emitter import EventEmitter
from pchealth.utils.llm_client import AnthropicClient, ReasoningService
from pchealth.utils.logger import get_logger, redact

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a friendly, patient PC repair technician helping someone fix their computer.

Investigate step by step: ask clarifying questions, check one thing at a time, explain what you are
checking in everyday language, and only propose fixes for problems confirmed by evidence.

ACCURACY RULES:
- You run inside "PC Health Assistant". Never flag its processes, network connections or temp files.
- ALWAYS call check_disk_health before diagnosing disk problems. SMART health (healthStatus.isHealthy)
  is the source of truth: if SMART reports healthy, the disk is healthy, whatever old event log
  "bad block" entries say.
- Event log entries carry daysAgo/isRecent. Old one-off errors are rarely current problems; look for
  recent, recurring patterns and cross-check them before concluding.
- A driver is only outdated when it is more than 6 months old. CPU is only a problem when usage stays
  above 80%, not on a single spike. Disk space is only low below 10% free.

TOOLS:
- Use the check_* tools for evidence. run_powershell_diagnostic accepts read-only commands only.
- To fix something, call propose_fix. Nothing runs until the user approves it. State the risk level
  honestly; risky fixes get a restore point first.
"""


class ConversationalDiagnosticAgent:
    """Drives a bounded tool-use loop against the reasoning service.

    One instance owns one conversation. Tool calls within a turn run
    sequentially and their results go back as a single aggregated turn.
    """

    AGENT_NAME = "conversational_agent"

    def __init__(
        self,
        llm_client: ReasoningService | None = None,
        tool_executor: ToolExecutor | None = None,
        config: AgentConfig | None = None,
        event_emitter: EventEmitter | None = None,
    ):
        self.config = config or load_config()
        self.llm_client = llm_client or AnthropicClient(
            agent_name=self.AGENT_NAME,
            model=self.config.llm_model,
            api_key=self.config.anthropic_api_key or None,
        )
        self.tool_executor = tool_executor or ToolExecutor(config=self.config)
        self.event_emitter = event_emitter
        self.max_iterations = max(self.config.max_iterations, MIN_ITERATIONS)

        self._conversation: list[ConversationTurn] = []
        self.last_proposed_fix: dict[str, Any] | None = None
        # Latest output per tool, consulted by the evidence rules
        self.evidence: dict[str, Any] = {}
        # Single writer: concurrent turns on one conversation run one after another
        self._turn_lock = asyncio.Lock()

    async def chat(self, user_message: str, on_tool_use: Callable | None = None) -> ChatResult:
        """Send one user message and run the tool loop to a final answer.

        Raises LoopExceeded when the model keeps requesting tools past the
        iteration ceiling, and ReasoningServiceError when a round-trip fails
        or exceeds the per-call budget. Concurrent calls are serialized.
        """
        async with self._turn_lock:
            return await self._run_turn(user_message, on_tool_use)

    async def _run_turn(self, user_message: str, on_tool_use: Callable | None) -> ChatResult:
        self._conversation.append(ConversationTurn(role=TurnRole.USER, content=user_message))
        proposed_fix: dict[str, Any] | None = None

        logger.info("Chat turn started", extra={
            "agent_name": self.AGENT_NAME, "action": "chat_start", "extra": {"history": len(self._conversation)},
        })

        for iteration in range(self.max_iterations):
            response = await self._converse()

            tool_calls = [
                ToolCall(id=b.id, name=b.name, input=b.input or {})
                for b in response.content if b.type == "tool_use"
            ]

            if response.stop_reason == "tool_use" and tool_calls:
                self._conversation.append(ConversationTurn(
                    role=TurnRole.ASSISTANT, content=[_block_to_dict(b) for b in response.content]))

                results: list[ToolResultBlock] = []
                for call in tool_calls:
                    await self._notify_tool_use(on_tool_use, call, iteration)
                    if call.name == PROPOSE_FIX_TOOL:
                        proposed_fix = dict(call.input)
                        self.last_proposed_fix = proposed_fix
                        logger.info("Fix proposed", extra={
                            "agent_name": self.AGENT_NAME, "action": "fix_proposed",
                            "extra": {"title": proposed_fix.get("title"), "risk": proposed_fix.get("riskLevel")},
                        })

                    output = await self.tool_executor.execute(call.name, call.input)
                    if call.name != PROPOSE_FIX_TOOL and "error" not in output:
                        self.evidence[call.name] = output

                    content = json.dumps(output, default=str)
                    logger.info("Tool result", extra={
                        "agent_name": self.AGENT_NAME, "action": "tool_result", "tool": call.name,
                        "extra": {"iteration": iteration + 1, "result_length": len(content), "preview": content[:500]},
                    })
                    results.append(ToolResultBlock(tool_call_id=call.id, content=content))

                self._conversation.append(ConversationTurn(
                    role=TurnRole.TOOL_RESULT, content=[r.to_block() for r in results]))
                continue

            final_text = "\n".join(b.text for b in response.content if b.type == "text")
            self._conversation.append(ConversationTurn(role=TurnRole.ASSISTANT, content=final_text))

            logger.info("Chat turn completed", extra={
                "agent_name": self.AGENT_NAME, "action": "chat_complete",
                "extra": {"iterations": iteration + 1, "proposed_fix": proposed_fix is not None},
            })
            if self.event_emitter:
                await self.event_emitter.emit(self.AGENT_NAME, "success", "Diagnostic response ready")

            return ChatResult(
                final_text=final_text,
                proposed_fix=proposed_fix,
                iterations=iteration + 1,
                usage=self.get_token_usage(),
            )

        logger.error("Tool loop exceeded ceiling", extra={
            "agent_name": self.AGENT_NAME, "action": "loop_exceeded", "extra": {"max": self.max_iterations},
        })
        if self.event_emitter:
            await self.event_emitter.emit(
                self.AGENT_NAME, "error", f"Stopped after {self.max_iterations} tool rounds without an answer")
        raise LoopExceeded(self.max_iterations)

    async def run_playbook_diagnosis(self, problem_type: str, on_tool_use: Callable | None = None) -> PlaybookResult:
        """Run a canned investigation through the chat loop and scrape its findings."""
        if self.event_emitter:
            await self.event_emitter.emit(self.AGENT_NAME, "started", f"Running {problem_type} diagnosis")

        result = await self.chat(build_playbook_prompt(problem_type), on_tool_use)

        analysis = extract_issues_from_text(result.final_text)
        analysis = filter_and_prioritize(apply_evidence_rules(analysis, self.evidence))

        return PlaybookResult(
            problem_type=problem_type,
            analysis=analysis,
            proposed_fix=result.proposed_fix,
            raw_response=result.final_text,
        )

    def reset_conversation(self) -> None:
        self._conversation = []
        self.last_proposed_fix = None
        self.evidence = {}

    def get_history(self) -> list[dict[str, Any]]:
        return [turn.model_dump(mode="json") for turn in self._conversation]

    def get_token_usage(self) -> TokenUsage | None:
        getter = getattr(self.llm_client, "get_total_usage", None)
        return getter() if getter else None

    async def _converse(self):
        messages = [turn.to_message() for turn in self._conversation]
        timeout = self.config.llm_timeout
        try:
            return await asyncio.wait_for(
                self.llm_client.chat_with_tools(
                    system=SYSTEM_PROMPT,
                    messages=messages,
                    tools=TOOL_SCHEMAS,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Reasoning service timed out", extra={
                "agent_name": self.AGENT_NAME, "action": "llm_timeout", "extra": {"timeout": timeout},
            })
            raise ReasoningServiceError(f"Reasoning service did not respond within {timeout:g}s")

    async def _notify_tool_use(self, on_tool_use: Callable | None, call: ToolCall, iteration: int) -> None:
        logger.info("Tool called", extra={
            "agent_name": self.AGENT_NAME, "action": "tool_call", "tool": call.name,
            "extra": {"iteration": iteration + 1, "input": redact(call.input)},
        })
        if self.event_emitter:
            await self.event_emitter.emit(
                self.AGENT_NAME, "tool_call", summarize_tool_call(call.name, call.input),
                details={"tool": call.name, "input_keys": list(call.input.keys())},
            )
        if on_tool_use is None:
            return
        try:
            outcome = on_tool_use({"tool": call.name, "input": call.input, "status": "executing"})
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("Tool-use callback failed", extra={
                "agent_name": self.AGENT_NAME, "action": "callback_failed", "tool": call.name, "extra": str(e),
            })


def _block_to_dict(block: Any) -> dict[str, Any]:
    """Plain-dict copy of a response content block, re-sendable as-is."""
    if block.type == "text":
        return {"type": "text", "text": block.text}
    if block.type == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input or {}}
    if hasattr(block, "model_dump"):
        return block.model_dump()
    return {"type": block.type}
