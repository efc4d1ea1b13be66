import threading
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class FixStage(str, Enum):
    VALIDATING = "validating"
    SAFETY_CHECKING = "safety_checking"
    CHECKPOINTING = "checkpointing"
    EXECUTING = "executing"
    STEP_COMPLETE = "step_complete"
    STEP_FAILED = "step_failed"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    ERROR = "error"
    ROLLED_BACK = "rolled_back"


class ProgressUpdate(BaseModel):
    stage: FixStage
    message: str
    percentage: float = 0.0
    current_step: Optional[int] = None
    total_steps: Optional[int] = None
    command: Optional[str] = None
    error: Optional[str] = None
    summary: Optional[dict[str, Any]] = None


class RollbackResult(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None


class ExecutionLock:
    """Single-writer flag guarding the live system.

    Acquisition never waits: a caller that finds it held is told so and
    must retry later. Share one instance between executors to make the
    exclusion process-wide.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        if self._lock.locked():
            self._lock.release()

    @property
    def locked(self) -> bool:
        return self._lock.locked()
