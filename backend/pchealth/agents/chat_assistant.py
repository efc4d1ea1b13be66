import asyncio
from typing import Any

from pchealth.config import AgentConfig, load_config
from pchealth.errors import ReasoningServiceError
from pchealth.models.schemas import AnalysisResult, AssistantReply, Fix, Issue
from pchealth.utils.llm_client import AnthropicClient, ReasoningService
from pchealth.utils.logger import get_logger

logger = get_logger(__name__)

FALLBACK_REPLY = "I'm having trouble responding right now. Please try again in a moment."

BASE_PROMPT = """You are a friendly, patient PC tech support assistant helping someone troubleshoot
their Windows computer. Explain things in very simple terms, give exact step-by-step instructions one
step at a time, warn about risky operations and suggest backups first, and ask clarifying questions
when unsure. Keep responses to 2-4 short paragraphs, with bullet points for lists and numbered steps
for instructions."""


def format_issues(issues: list[Issue]) -> str:
    if not issues:
        return "None detected"
    lines = []
    for i, issue in enumerate(issues, 1):
        lines.append(f"{i}. [{issue.severity.upper()}] {issue.title or issue.description}")
        if issue.description:
            lines.append(f"   Description: {issue.description}")
    return "\n".join(lines)


def format_fixes(fixes: list[Fix]) -> str:
    if not fixes:
        return "No automated fixes available"
    lines = []
    for i, fix in enumerate(fixes, 1):
        lines.append(f"{i}. {fix.title}")
        lines.append(f"   Time: {fix.estimated_time or 'Unknown'}")
        if fix.description:
            lines.append(f"   Description: {fix.description}")
        lines.append(f"   Steps: {len(fix.steps)} steps")
        if fix.risk_level:
            lines.append(f"   Risk Level: {fix.risk_level}")
    return "\n".join(lines)


def build_system_prompt(context: AnalysisResult | None = None, selected_problem: str | None = None) -> str:
    if context is None:
        return BASE_PROMPT
    return (
        f"{BASE_PROMPT}\n\n"
        "CURRENT DIAGNOSTIC CONTEXT:\n"
        "The app has just completed a diagnostic scan and the user can see these results on screen.\n"
        f"Problem being diagnosed: {selected_problem or 'General system scan'}\n"
        f"Summary: {context.summary or 'Diagnostic completed'}\n\n"
        f"Issues found ({len(context.issues)}):\n{format_issues(context.issues)}\n\n"
        f"Recommended fixes ({len(context.fixes)}):\n{format_fixes(context.fixes)}\n\n"
        "Answer questions about these specific issues and fixes: what they mean, whether a fix is safe, "
        "which to apply first and what happens if they are left alone."
    )


class ChatAssistant:
    """Free-form follow-up chat, optionally grounded in a finished diagnosis."""

    AGENT_NAME = "chat_assistant"

    def __init__(self, llm_client: ReasoningService | None = None, config: AgentConfig | None = None):
        self.config = config or load_config()
        self.llm_client = llm_client or AnthropicClient(
            agent_name=self.AGENT_NAME,
            model=self.config.llm_model,
            api_key=self.config.anthropic_api_key or None,
        )
        self._history: list[dict[str, Any]] = []
        self._turn_lock = asyncio.Lock()

    async def chat(
        self,
        user_message: str,
        context: AnalysisResult | None = None,
        selected_problem: str | None = None,
    ) -> AssistantReply:
        """One exchange. Concurrent calls are serialized so the history keeps alternating."""
        async with self._turn_lock:
            return await self._exchange(user_message, context, selected_problem)

    async def _exchange(self, user_message: str, context: AnalysisResult | None, selected_problem: str | None) -> AssistantReply:
        self._history.append({"role": "user", "content": user_message})
        try:
            response = await asyncio.wait_for(
                self.llm_client.chat_with_tools(
                    system=build_system_prompt(context, selected_problem),
                    messages=list(self._history),
                    tools=None,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                ),
                timeout=self.config.llm_timeout,
            )
        except (ReasoningServiceError, asyncio.TimeoutError) as e:
            # Unanswered turn is dropped so the history keeps alternating
            self._history.pop()
            error = str(e) or "Reasoning service timed out"
            logger.error("Chat request failed", extra={"agent_name": self.AGENT_NAME, "action": "llm_error", "extra": error})
            return AssistantReply(success=False, message=FALLBACK_REPLY, error=error,
                                  conversation_length=len(self._history))

        text = "\n".join(b.text for b in response.content if b.type == "text")
        self._history.append({"role": "assistant", "content": text})
        return AssistantReply(success=True, message=text, conversation_length=len(self._history))

    def clear_history(self) -> None:
        self._history = []
        logger.info("Conversation history cleared", extra={"agent_name": self.AGENT_NAME, "action": "history_cleared"})

    def get_history(self) -> list[dict[str, Any]]:
        return list(self._history)
