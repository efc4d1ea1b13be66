"""
API Routes

HTTP routing, request validation and in-memory session management. Each
session owns one conversational agent (and its conversation); the fix
executor and its lock are shared by the whole process.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException

from pchealth.agents.chat_assistant import ChatAssistant
from pchealth.agents.conversational_agent import ConversationalDiagnosticAgent
from pchealth.agents.diagnostic_agent import DiagnosticAgent
from pchealth.api.models import (
    AssistantRequest, ChatRequest, ChatResponse, DiagnoseRequest, FixExecuteRequest,
    HealthResponse, HistoryResponse, PlaybookRequest, StartSessionRequest, StartSessionResponse,
)
from pchealth.collectors.mock_collector import mock_collectors
from pchealth.config import AgentConfig, load_config
from pchealth.models.schemas import AssistantReply, DiagnosticReport, FixExecutionRecord, PlaybookResult
from pchealth.remediation.engine import FixExecutor
from pchealth.remediation.models import ExecutionLock, RollbackResult
from pchealth.tools.tool_executor import ToolExecutor
from pchealth.utils.event_emitter import EventEmitter
from pchealth.utils.llm_client import AnthropicClient
from pchealth.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

# Global state
sessions: Dict[str, Dict[str, Any]] = {}
execution_lock = ExecutionLock()
_fix_executor: Optional[FixExecutor] = None
_config: Optional[AgentConfig] = None

# Collectors are supplied by the host; the fixture-backed set stands in until one registers
collector_factory = mock_collectors


def get_config() -> AgentConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def build_llm_client(agent_name: str, config: AgentConfig):
    return AnthropicClient(agent_name=agent_name, model=config.llm_model, api_key=config.anthropic_api_key or None)


def get_fix_executor() -> FixExecutor:
    global _fix_executor
    if _fix_executor is None:
        _fix_executor = FixExecutor(lock=execution_lock, config=get_config())
    return _fix_executor


def set_fix_executor(executor: Optional[FixExecutor]) -> None:
    global _fix_executor
    _fix_executor = executor


def _get_session(session_id: str) -> Dict[str, Any]:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# =========================================================================
# SESSION ENDPOINTS
# =========================================================================

@router.post("/session/start", response_model=StartSessionResponse)
async def start_session(request: StartSessionRequest):
    config = get_config()
    session_id = str(uuid.uuid4())
    emitter = EventEmitter(session_id=session_id)
    tool_executor = ToolExecutor(collectors=collector_factory(), config=config)

    sessions[session_id] = {
        "created_at": datetime.now(timezone.utc),
        "problem_description": request.problem_description,
        "emitter": emitter,
        "agent": ConversationalDiagnosticAgent(
            llm_client=build_llm_client(ConversationalDiagnosticAgent.AGENT_NAME, config),
            tool_executor=tool_executor, config=config, event_emitter=emitter,
        ),
        "diagnostic_agent": DiagnosticAgent(
            llm_client=build_llm_client(DiagnosticAgent.AGENT_NAME, config),
            tool_executor=tool_executor, config=config, event_emitter=emitter,
        ),
        "assistant": ChatAssistant(llm_client=build_llm_client(ChatAssistant.AGENT_NAME, config), config=config),
        "last_analysis": None,
    }
    logger.info("Session started", extra={"session_id": session_id, "action": "session_start"})
    return StartSessionResponse(session_id=session_id, created_at=sessions[session_id]["created_at"])


@router.post("/session/{session_id}/chat", response_model=ChatResponse)
async def chat(session_id: str, request: ChatRequest):
    session = _get_session(session_id)
    result = await session["agent"].chat(request.message)
    return ChatResponse(
        session_id=session_id,
        response=result.final_text,
        proposed_fix=result.proposed_fix,
        iterations=result.iterations,
        usage=result.usage,
    )


@router.post("/session/{session_id}/playbook", response_model=PlaybookResult)
async def run_playbook(session_id: str, request: PlaybookRequest):
    session = _get_session(session_id)
    result = await session["agent"].run_playbook_diagnosis(request.problem_type)
    session["last_analysis"] = result.analysis
    return result


@router.post("/session/{session_id}/diagnose", response_model=DiagnosticReport)
async def diagnose(session_id: str, request: DiagnoseRequest):
    session = _get_session(session_id)
    try:
        report = await session["diagnostic_agent"].investigate(request.problem_type, request.options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    session["last_analysis"] = report.analysis
    return report


@router.post("/session/{session_id}/assistant", response_model=AssistantReply)
async def ask_assistant(session_id: str, request: AssistantRequest):
    session = _get_session(session_id)
    context = session["last_analysis"] if request.use_diagnostic_context else None
    return await session["assistant"].chat(request.message, context=context, selected_problem=request.selected_problem)


@router.post("/session/{session_id}/assistant/clear")
async def clear_assistant(session_id: str):
    session = _get_session(session_id)
    session["assistant"].clear_history()
    return {"session_id": session_id, "status": "cleared"}


@router.get("/session/{session_id}/history", response_model=HistoryResponse)
async def get_history(session_id: str):
    session = _get_session(session_id)
    return HistoryResponse(session_id=session_id, history=session["agent"].get_history())


@router.get("/session/{session_id}/events")
async def get_events(session_id: str):
    session = _get_session(session_id)
    return [e.model_dump(mode="json") for e in session["emitter"].get_all_events()]


@router.post("/session/{session_id}/reset")
async def reset_session(session_id: str):
    session = _get_session(session_id)
    session["agent"].reset_conversation()
    session["last_analysis"] = None
    logger.info("Session reset", extra={"session_id": session_id, "action": "session_reset"})
    return {"session_id": session_id, "status": "reset"}


# =========================================================================
# FIX ENDPOINTS
# =========================================================================

@router.post("/fix/execute", response_model=FixExecutionRecord)
async def execute_fix(request: FixExecuteRequest):
    """Calling this endpoint is the user's approval of the fix."""
    if request.session_id is not None:
        _get_session(request.session_id)
    logger.info("Fix approved", extra={
        "session_id": request.session_id, "action": "fix_approved", "extra": {"title": request.fix.get("title")},
    })
    return await get_fix_executor().execute_fix(request.fix)


@router.post("/fix/rollback", response_model=RollbackResult)
async def rollback_fix():
    return await get_fix_executor().rollback()


# =========================================================================
# SYSTEM ENDPOINTS
# =========================================================================

@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", active_sessions=len(sessions), fix_in_progress=execution_lock.locked)
