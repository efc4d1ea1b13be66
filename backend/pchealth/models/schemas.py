from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from typing import Any, Optional, Literal
from datetime import datetime
from enum import Enum


Severity = Literal["critical", "warning", "info"]
RiskLevel = Literal["low", "medium", "high"]

RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high")
PRIORITY_RANK: dict[str, int] = {"immediate": 1, "high": 2, "medium": 3, "low": 4}
UNKNOWN_PRIORITY_RANK = 5
DEFAULT_CONFIDENCE = 0.8


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class ConversationTurn(BaseModel):
    """One entry of a conversation. `content` is a string or a list of content blocks."""
    role: TurnRole
    content: Any

    def to_message(self) -> dict:
        # Tool results travel back to the Messages API as a user turn
        role = "user" if self.role == TurnRole.TOOL_RESULT else self.role.value
        return {"role": role, "content": self.content}


class ToolCall(BaseModel):
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    tool_call_id: str
    content: str

    def to_block(self) -> dict:
        return {"type": "tool_result", "tool_use_id": self.tool_call_id, "content": self.content}


class Issue(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    severity: Severity = "info"
    priority: str = "medium"
    confidence: float = DEFAULT_CONFIDENCE
    actionable: bool = True
    title: str = ""
    description: str = ""
    what_this_means: str = Field(default="", alias="whatThisMeans")
    evidence: str = Field(default="", alias="foundEvidence")
    time_to_fix: str = Field(default="", alias="timeToFix")

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, v):
        v = str(v or "info").strip().lower()
        return v if v in ("critical", "warning", "info") else "info"

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, v):
        return str(v or "").strip().lower()

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        if v is None:
            return DEFAULT_CONFIDENCE
        return min(max(float(v), 0.0), 1.0)

    @computed_field
    @property
    def priority_rank(self) -> int:
        return PRIORITY_RANK.get(self.priority, UNKNOWN_PRIORITY_RANK)


class Fix(BaseModel):
    """A remediation plan. Structural invariants are enforced at execution time
    by the fix executor's validation stage, so proposals from the model can be
    carried and displayed even when incomplete."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    title: str = ""
    description: str = ""
    why: str = Field(default="", alias="whyThis")
    risk_level: str = Field(default="", alias="riskLevel")
    requires_admin: Optional[bool] = Field(default=None, alias="requiresAdmin")
    automatable: bool = True
    requires_restart: bool = Field(default=False, alias="requiresRestart")
    priority: str = ""
    confidence: float = DEFAULT_CONFIDENCE
    estimated_time: str = Field(default="", alias="estimatedTime")
    steps: list[str] = Field(default_factory=list)
    commands: list[str] = Field(default_factory=list)
    technical_details: dict[str, Any] = Field(default_factory=dict, alias="technicalDetails")

    @model_validator(mode="before")
    @classmethod
    def _lift_technical_commands(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        details = data.get("technicalDetails") or data.get("technical_details") or {}
        if not data.get("commands") and isinstance(details, dict) and details.get("commands"):
            data["commands"] = details["commands"]
        if "needsRestart" in data and "requiresRestart" not in data and "requires_restart" not in data:
            data["requiresRestart"] = data["needsRestart"]
        if "howLong" in data and "estimatedTime" not in data and "estimated_time" not in data:
            data["estimatedTime"] = data["howLong"]
        if data.get("description") is None and data.get("whyThis"):
            data["description"] = data["whyThis"]
        return data

    @field_validator("risk_level", "priority", mode="before")
    @classmethod
    def _lower(cls, v):
        return str(v or "").strip().lower()

    @field_validator("confidence", mode="before")
    @classmethod
    def _default_confidence(cls, v):
        if v is None:
            return DEFAULT_CONFIDENCE
        return min(max(float(v), 0.0), 1.0)

    @field_validator("steps", "commands", mode="before")
    @classmethod
    def _as_str_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if not isinstance(v, (list, tuple)):
            raise ValueError("expected a list of strings")
        return [str(item) for item in v]

    @computed_field
    @property
    def priority_rank(self) -> int:
        return PRIORITY_RANK.get(self.priority, UNKNOWN_PRIORITY_RANK)


class AnalysisResult(BaseModel):
    summary: str = ""
    issues: list[Issue] = Field(default_factory=list)
    fixes: list[Fix] = Field(default_factory=list)
    full_report: Optional[str] = None
    parse_error: Optional[str] = None


class TokenUsage(BaseModel):
    agent_name: str
    input_tokens: int
    output_tokens: int
    total_tokens: int

    @model_validator(mode="after")
    def check_total(self):
        if self.total_tokens != self.input_tokens + self.output_tokens:
            raise ValueError("total_tokens must equal input_tokens + output_tokens")
        return self


class ChatResult(BaseModel):
    final_text: str
    proposed_fix: Optional[dict[str, Any]] = None
    iterations: int = 0
    usage: Optional[TokenUsage] = None


class PlaybookResult(BaseModel):
    problem_type: str
    analysis: AnalysisResult
    proposed_fix: Optional[dict[str, Any]] = None
    raw_response: str = ""


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: int
    command: str
    description: str = ""
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None


class FixExecutionRecord(BaseModel):
    """Outcome of one execution attempt. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    fix_id: str = ""
    title: str = ""
    success: bool
    status: Literal["complete", "error", "busy", "rejected"]
    steps: tuple[StepResult, ...] = ()
    successful_steps: int = 0
    failed_steps: int = 0
    requires_restart: bool = False
    can_rollback: bool = False
    restore_point_created: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @computed_field
    @property
    def message(self) -> str:
        if self.success:
            return f'Fix "{self.title}" applied successfully'
        return self.error or "Fix failed"


class TaskEvent(BaseModel):
    timestamp: datetime
    agent_name: str
    event_type: Literal["started", "progress", "success", "warning", "error", "tool_call", "fix_progress", "summary"]
    message: str
    details: Optional[dict] = None
    session_id: Optional[str] = None


class DiagnosticReport(BaseModel):
    problem_type: str
    timestamp: datetime
    investigations: dict[str, Any] = Field(default_factory=dict)
    analysis: AnalysisResult
    recommendations: list[Fix] = Field(default_factory=list)


class AssistantReply(BaseModel):
    success: bool
    message: str
    error: Optional[str] = None
    conversation_length: int = 0
