"""Structured diagnostic pass: run a playbook, then ask for a JSON analysis."""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

from pchealth.agents.playbooks import PLAYBOOKS, get_playbook
from pchealth.agents.synthesizer import apply_evidence_rules, filter_and_prioritize, parse_analysis
from pchealth.config import AgentConfig, load_config
from pchealth.errors import ReasoningServiceError
from pchealth.models.schemas import AnalysisResult, DiagnosticReport
from pchealth.tools.tool_executor import ToolExecutor
from pchealth.utils.event_emitter import EventEmitter
from pchealth.utils.llm_client import AnthropicClient, ReasoningService
from pchealth.utils.logger import get_logger

logger = get_logger(__name__)

ANALYSIS_MAX_TOKENS = 16384

ANALYSIS_SYSTEM_PROMPT = """You are an expert PC diagnostics system. Analyze the investigation data in
depth, then report your findings in language a non-technical person understands.

Apply the same thresholds every time:
* Disk failing = SMART unhealthy AND more than 10 recent bad-block events. A healthy SMART flag wins
  over any event log noise.
* Driver outdated = driver dated more than 6 months before today.
* High CPU = sustained usage above 80%, never a single sample.
* Low disk space = less than 10% free.

Only report issues with confidence >= 0.7 that are actionable or critical. If the system is healthy,
say so; never invent issues. Only create fixes for critical or warning issues, and put the repair
commands (not read-only checks) in technicalDetails.commands.

Return ONLY valid JSON, no text before or after, no trailing commas:
{
  "summary": "1-2 sentence overview",
  "issues": [{"severity": "critical|warning|info", "priority": "immediate|high|medium|low",
              "confidence": 0.0, "actionable": true, "title": "", "description": "",
              "whatThisMeans": "", "foundEvidence": "", "timeToFix": ""}],
  "fixes": [{"id": "", "title": "", "whyThis": "", "howLong": "", "needsRestart": false,
             "requiresAdmin": true, "automatable": true, "riskLevel": "low|medium|high",
             "priority": "immediate|high|medium|low", "confidence": 0.0, "steps": [],
             "technicalDetails": {"commands": [], "rollback": []}}]
}
"""


class DiagnosticAgent:
    """Runs a named playbook collector by collector and synthesizes one analysis."""

    AGENT_NAME = "diagnostic_agent"

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

    async def investigate(self, problem_type: str, options: dict[str, Any] | None = None) -> DiagnosticReport:
        if problem_type not in PLAYBOOKS:
            raise ValueError(f"Unknown problem type: {problem_type}")

        playbook = get_playbook(problem_type)
        logger.info("Investigation started", extra={
            "agent_name": self.AGENT_NAME, "action": "start",
            "extra": {"problem_type": problem_type, "playbook": playbook["name"], "steps": len(playbook["steps"])},
        })
        if self.event_emitter:
            await self.event_emitter.emit(self.AGENT_NAME, "started", f"Running playbook: {playbook['name']}")

        investigations = await self.run_playbook(playbook, options or {})
        analysis = await self.analyze(investigations, problem_type)

        logger.info("Investigation complete", extra={
            "agent_name": self.AGENT_NAME, "action": "complete",
            "extra": {"issues": len(analysis.issues), "fixes": len(analysis.fixes)},
        })
        if self.event_emitter:
            await self.event_emitter.emit(
                self.AGENT_NAME, "summary",
                f"Found {len(analysis.issues)} issue(s) and {len(analysis.fixes)} fix(es)",
                details={"summary": analysis.summary},
            )

        return DiagnosticReport(
            problem_type=problem_type,
            timestamp=datetime.now(timezone.utc),
            investigations=investigations,
            analysis=analysis,
            recommendations=analysis.fixes,
        )

    async def run_playbook(self, playbook: dict, options: dict[str, Any]) -> dict[str, Any]:
        """Run every step in order; a failing step records an error entry."""
        results: dict[str, Any] = {}
        for step in playbook["steps"]:
            action = step["action"]
            if self.event_emitter:
                await self.event_emitter.emit(self.AGENT_NAME, "progress", step.get("description", action),
                                              details={"action": action})
            results[action] = await self.tool_executor.run_step(step, options)
        return results

    async def analyze(self, investigations: dict[str, Any], problem_type: str) -> AnalysisResult:
        prompt = (
            f"Problem Type: {problem_type}\n\n"
            f"Investigation Results:\n{json.dumps(investigations, indent=2, default=str)}"
        )
        try:
            response = await asyncio.wait_for(
                self.llm_client.chat_with_tools(
                    system=ANALYSIS_SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": prompt}],
                    tools=None,
                    max_tokens=ANALYSIS_MAX_TOKENS,
                    temperature=self.config.temperature,
                ),
                timeout=self.config.llm_timeout,
            )
        except (ReasoningServiceError, asyncio.TimeoutError) as e:
            logger.error("Analysis request failed", extra={"agent_name": self.AGENT_NAME, "action": "llm_error", "extra": str(e)})
            return AnalysisResult(summary="Unable to analyze - API error")

        if response.stop_reason == "max_tokens":
            logger.warning("Analysis truncated at max_tokens", extra={"agent_name": self.AGENT_NAME, "action": "llm_truncated"})

        text = "\n".join(b.text for b in response.content if b.type == "text")
        analysis = apply_evidence_rules(parse_analysis(text), investigations)
        return filter_and_prioritize(analysis)
