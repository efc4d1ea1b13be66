"""Error taxonomy for diagnostic sessions and fix execution."""


class PCHealthError(Exception):
    """Base class for all errors raised by this package."""


class CollectorFailure(PCHealthError):
    """An evidence collector failed. Isolated per call, never fatal to a turn."""


class ReasoningServiceError(PCHealthError):
    """Network, timeout or auth failure talking to the reasoning service."""


class LoopExceeded(PCHealthError):
    """The tool-use loop hit its iteration ceiling without a final answer."""

    def __init__(self, max_iterations: int):
        super().__init__(f"Tool-use loop exceeded {max_iterations} iterations without a final answer")
        self.max_iterations = max_iterations


class SynthesisParseFailure(PCHealthError):
    """Model output could not be parsed as JSON, even after repair."""


class FixValidationError(PCHealthError):
    """The fix is structurally invalid."""


class SafetyRejection(PCHealthError):
    """The fix contains commands matching the destructive deny-list."""

    def __init__(self, violations: list[str]):
        preview = "; ".join(v[:50] for v in violations)
        super().__init__(f"Dangerous command detected: {preview} - Fix rejected for safety")
        self.violations = violations


class AdminPrivilegesRequired(PCHealthError):
    """The admin-privilege probe failed for a fix that needs elevation."""


class StepExecutionFailure(PCHealthError):
    """A fix step failed under the high-risk abort policy."""

    def __init__(self, step: int, message: str):
        super().__init__(f"High-risk fix aborted at step {step}: {message}")
        self.step = step


class ConcurrencyBusy(PCHealthError):
    """Another fix is already executing."""

    def __init__(self):
        super().__init__("Another fix is already being executed")


class CommandTimeout(PCHealthError):
    def __init__(self, command: str, timeout: float):
        super().__init__(f"Command timed out after {timeout:g}s: {command[:80]}")
        self.command = command
        self.timeout = timeout
