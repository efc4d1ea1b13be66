import json

import pytest

from conftest import FakeReasoningService, make_response, text_block
from pchealth.agents.diagnostic_agent import ANALYSIS_MAX_TOKENS, ANALYSIS_SYSTEM_PROMPT, DiagnosticAgent
from pchealth.agents.playbooks import CRASH_INVESTIGATION, PLAYBOOKS, get_playbook
from pchealth.collectors.base import Collector
from pchealth.collectors.mock_collector import mock_collectors
from pchealth.config import AgentConfig
from pchealth.errors import ReasoningServiceError
from pchealth.tools.tool_executor import ToolExecutor
from pchealth.utils.event_emitter import EventEmitter

ANALYSIS = {
    "summary": "One application keeps crashing; your hardware is healthy.",
    "issues": [
        {"severity": "critical", "priority": "immediate", "confidence": 0.9, "actionable": True,
         "title": "SSD is failing", "description": "Bad block events found in the System log"},
        {"severity": "warning", "priority": "high", "confidence": 0.85, "actionable": True,
         "title": "game.exe crashes repeatedly", "description": "Faulting module nvwgf2umx.dll"},
        {"severity": "warning", "priority": "low", "confidence": 0.5, "actionable": True,
         "title": "Possibly something", "description": "Not sure"},
    ],
    "fixes": [
        {"id": "fix-gpu", "title": "Reinstall graphics package", "whyThis": "Replaces the faulting module",
         "riskLevel": "medium", "priority": "high", "confidence": 0.9, "steps": ["Reinstall"],
         "technicalDetails": {"commands": ["winget install --id Nvidia.GeForceExperience"]}},
    ],
}


class ExplodingCollector(Collector):
    name = "exploding"

    async def investigate(self, step, options=None):
        raise TimeoutError("event log query hung")


def _agent(llm, collectors=None, emitter=None):
    config = AgentConfig(step_delay=0.0)
    return DiagnosticAgent(
        llm_client=llm,
        tool_executor=ToolExecutor(collectors=mock_collectors() if collectors is None else collectors, config=config),
        config=config,
        event_emitter=emitter,
    )


def test_playbook_catalogue():
    assert set(PLAYBOOKS) == {"crash", "slow", "error", "hardware", "network", "full-scan"}
    playbook = get_playbook("crash")
    playbook["steps"].clear()
    assert CRASH_INVESTIGATION["steps"]


def test_get_playbook_unknown():
    with pytest.raises(KeyError):
        get_playbook("meltdown")


@pytest.mark.asyncio
async def test_unknown_problem_type():
    with pytest.raises(ValueError, match="Unknown problem type: meltdown"):
        await _agent(FakeReasoningService()).investigate("meltdown")


@pytest.mark.asyncio
async def test_investigate_runs_playbook_and_synthesizes():
    llm = FakeReasoningService([make_response(text_block("```json\n" + json.dumps(ANALYSIS) + "\n```"))])
    report = await _agent(llm).investigate("crash")

    assert report.problem_type == "crash"
    assert list(report.investigations) == [s["action"] for s in CRASH_INVESTIGATION["steps"]]
    assert report.investigations["findCrashDumps"]["findings"] == [
        'Investigation for "findCrashDumps" is not yet implemented']
    assert report.investigations["analyzeDiskHealth"]["healthStatus"][0]["isHealthy"] is True

    # SMART says healthy, so the disk claim goes; low confidence goes too
    assert [i.title for i in report.analysis.issues] == ["game.exe crashes repeatedly"]
    assert [f.id for f in report.recommendations] == ["fix-gpu"]
    assert report.recommendations == report.analysis.fixes

    call = llm.calls[0]
    assert call["system"] == ANALYSIS_SYSTEM_PROMPT
    assert call["tools"] is None
    assert call["max_tokens"] == ANALYSIS_MAX_TOKENS
    assert call["messages"][0]["content"].startswith("Problem Type: crash")


@pytest.mark.asyncio
async def test_failing_collector_is_recorded_not_raised():
    collectors = mock_collectors()
    collectors["event_log"] = ExplodingCollector()
    llm = FakeReasoningService([make_response(text_block(json.dumps({"summary": "ok", "issues": [], "fixes": []})))])
    report = await _agent(llm, collectors=collectors).investigate("error")
    entry = report.investigations["checkEventLogs"]
    assert entry["error"] == "event log query hung"
    assert entry["findings"] == ["Could not complete checkEventLogs: event log query hung"]


@pytest.mark.asyncio
async def test_service_error_yields_empty_analysis():
    llm = FakeReasoningService([ReasoningServiceError("Reasoning service request failed: 500")])
    report = await _agent(llm).investigate("network")
    assert report.analysis.summary == "Unable to analyze - API error"
    assert report.analysis.issues == []
    assert report.recommendations == []


@pytest.mark.asyncio
async def test_unparsable_analysis_falls_back():
    llm = FakeReasoningService([make_response(text_block("Sorry, I can only answer in prose today."))])
    report = await _agent(llm).investigate("slow")
    assert [i.title for i in report.analysis.issues] == ["Analysis Error"]
    assert report.analysis.parse_error


@pytest.mark.asyncio
async def test_progress_events():
    emitter = EventEmitter(session_id="s-1")
    llm = FakeReasoningService([make_response(text_block(json.dumps({"summary": "ok"})))])
    await _agent(llm, emitter=emitter).investigate("hardware")
    types = [e.event_type for e in emitter.get_all_events()]
    assert types[0] == "started"
    assert types[-1] == "summary"
    assert types.count("progress") == len(PLAYBOOKS["hardware"]["steps"])
