"""
API Request/Response Models
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from pchealth.models.schemas import TokenUsage


class StartSessionRequest(BaseModel):
    problem_description: Optional[str] = Field(None, description="What the user says is wrong, if known")


class StartSessionResponse(BaseModel):
    session_id: str
    created_at: datetime


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User's message")


class ChatResponse(BaseModel):
    session_id: str
    response: str
    proposed_fix: Optional[Dict[str, Any]] = None
    iterations: int = 0
    usage: Optional[TokenUsage] = None


class PlaybookRequest(BaseModel):
    problem_type: str = Field("full", description="crash, slow, error, network or full")


class DiagnoseRequest(BaseModel):
    problem_type: str = Field(..., description="crash, slow, error, hardware, network or full-scan")
    options: Dict[str, Any] = Field(default_factory=dict)


class AssistantRequest(BaseModel):
    message: str = Field(..., min_length=1)
    use_diagnostic_context: bool = Field(True, description="Fold the session's last analysis into the prompt")
    selected_problem: Optional[str] = None


class HistoryResponse(BaseModel):
    session_id: str
    history: List[Dict[str, Any]]


class FixExecuteRequest(BaseModel):
    fix: Dict[str, Any] = Field(..., description="The fix the user approved")
    session_id: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    active_sessions: int
    fix_in_progress: bool
