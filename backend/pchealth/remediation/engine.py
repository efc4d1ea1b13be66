"""
FixExecutor: applies a user-approved fix under safety controls.

validating -> safety_checking -> (checkpointing) -> executing[1..N] ->
verifying -> complete, with error reachable from any stage. Rollback is a
separate operator action that hands over to the platform's system restore.
"""

import asyncio
import inspect
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from pchealth.config import AgentConfig
from pchealth.errors import (
    AdminPrivilegesRequired, CommandTimeout, ConcurrencyBusy, FixValidationError,
    SafetyRejection, StepExecutionFailure,
)
from pchealth.models.schemas import RISK_LEVELS, Fix, FixExecutionRecord, StepResult
from pchealth.remediation.models import ExecutionLock, FixStage, ProgressUpdate, RollbackResult
from pchealth.tools.command_policy import find_dangerous_commands
from pchealth.utils.event_emitter import EventEmitter
from pchealth.utils.logger import get_logger
from pchealth.utils.shell import IS_WINDOWS, CommandRunner, run_command, wrap_powershell

logger = get_logger(__name__)

ADMIN_PROBE_TIMEOUT = 30.0
CHECKPOINT_RISK_LEVELS = ("medium", "high")

ADMIN_REQUIRED_MESSAGE = (
    "This fix requires administrator privileges.\n\n"
    "To run as administrator:\n"
    "1. Close this app\n"
    "2. Right-click the app icon\n"
    '3. Select "Run as administrator"\n'
    "4. Try the fix again"
)

# Failures that mean the fix was never attempted
_REJECTIONS = (FixValidationError, SafetyRejection, AdminPrivilegesRequired)


class FixExecutor:
    """Executes one fix at a time. Holds no state between executions apart
    from the lock."""

    AGENT_NAME = "fix_executor"

    def __init__(
        self,
        lock: ExecutionLock | None = None,
        runner: CommandRunner = run_command,
        config: AgentConfig | None = None,
        event_emitter: EventEmitter | None = None,
        audit_sink: Callable | None = None,
        is_windows: bool = IS_WINDOWS,
    ):
        self.lock = lock or ExecutionLock()
        self._runner = runner
        self._config = config or AgentConfig()
        self._event_emitter = event_emitter
        self._audit_sink = audit_sink
        self._is_windows = is_windows

    @property
    def is_executing(self) -> bool:
        return self.lock.locked

    async def execute_fix(self, fix: Fix | dict, on_progress: Callable | None = None) -> FixExecutionRecord:
        """Run an approved fix. Every outcome is a FixExecutionRecord, including
        unexpected runner errors, which are recorded with status "error"."""
        if not self.lock.try_acquire():
            busy = ConcurrencyBusy()
            logger.warning("Fix rejected, executor busy", extra={"agent_name": self.AGENT_NAME, "action": "fix_busy"})
            return FixExecutionRecord(
                fix_id=_field(fix, "id"), title=_field(fix, "title"),
                success=False, status="busy", error=str(busy), error_type=type(busy).__name__,
            )

        started_at = datetime.now(timezone.utc)
        steps: list[StepResult] = []
        restore_point_created = False
        risk = _field(fix, "riskLevel") or _field(fix, "risk_level")
        try:
            fix = await self._validate(fix, on_progress)
            risk = fix.risk_level

            await self._safety_check(fix, on_progress)

            if fix.risk_level in CHECKPOINT_RISK_LEVELS:
                restore_point_created = await self._create_restore_point(fix, on_progress)

            await self._execute_commands(fix, on_progress, steps)

            await self._report(on_progress, ProgressUpdate(
                stage=FixStage.VERIFYING, message="Verifying that the fix worked...", percentage=90))

            successful = sum(1 for s in steps if s.success)
            record = FixExecutionRecord(
                fix_id=fix.id,
                title=fix.title,
                success=True,
                status="complete",
                steps=tuple(steps),
                successful_steps=successful,
                failed_steps=len(steps) - successful,
                requires_restart=fix.requires_restart,
                can_rollback=fix.risk_level in CHECKPOINT_RISK_LEVELS,
                restore_point_created=restore_point_created,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
            )
            await self._report(on_progress, ProgressUpdate(
                stage=FixStage.COMPLETE,
                message=f"Fix completed! {successful} action(s) applied successfully.",
                percentage=100,
                summary={
                    "title": fix.title,
                    "description": fix.description,
                    "successful_steps": successful,
                    "failed_steps": len(steps) - successful,
                    "completed_actions": ", ".join(s.description or f"Step {s.step}" for s in steps if s.success),
                    "requires_restart": fix.requires_restart,
                },
            ))
            logger.info("Fix completed", extra={
                "agent_name": self.AGENT_NAME, "action": "fix_complete",
                "extra": {"title": fix.title, "successful": successful, "failed": len(steps) - successful},
            })
        except Exception as e:
            successful = sum(1 for s in steps if s.success)
            record = FixExecutionRecord(
                fix_id=_field(fix, "id"),
                title=_field(fix, "title"),
                success=False,
                status="rejected" if isinstance(e, _REJECTIONS) else "error",
                steps=tuple(steps),
                successful_steps=successful,
                failed_steps=len(steps) - successful,
                requires_restart=False,
                can_rollback=risk in CHECKPOINT_RISK_LEVELS,
                restore_point_created=restore_point_created,
                error=str(e),
                error_type=type(e).__name__,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
            )
            logger.error("Fix failed", extra={
                "agent_name": self.AGENT_NAME, "action": "fix_error",
                "extra": {"title": record.title, "error_type": record.error_type, "error": record.error},
            })
            await self._report(on_progress, ProgressUpdate(stage=FixStage.ERROR, message=f"Error: {e}", error=str(e)))
        finally:
            self.lock.release()

        await self._audit(record)
        return record

    def validate_fix(self, fix: Fix) -> None:
        """Raise FixValidationError unless the fix is structurally executable."""
        for name, value in (
            ("title", fix.title),
            ("description", fix.description),
            ("commands", fix.commands),
            ("riskLevel", fix.risk_level),
        ):
            if not value:
                raise FixValidationError(f"Invalid fix structure: missing required field {name}")
        if fix.risk_level not in RISK_LEVELS:
            raise FixValidationError(f"Invalid fix structure: unknown risk level {fix.risk_level!r}")

    async def rollback(self, on_progress: Callable | None = None) -> RollbackResult:
        """Open the platform's system restore UI. Only the launch is tracked."""
        await self._report(on_progress, ProgressUpdate(
            stage=FixStage.ROLLED_BACK, message="Rolling back changes using system restore..."))
        if not self._is_windows:
            return RollbackResult(success=False, error="Could not open System Restore: only available on Windows")

        try:
            returncode, _, stderr = await self._runner("rstrui.exe", self._config.fix_command_timeout)
        except (CommandTimeout, OSError) as e:
            return RollbackResult(success=False, error=f"Could not open System Restore: {e}")
        if returncode != 0:
            return RollbackResult(success=False, error=f"Could not open System Restore: {stderr or returncode}")

        await self._report(on_progress, ProgressUpdate(
            stage=FixStage.ROLLED_BACK,
            message="System Restore opened. Please select the most recent restore point.",
            percentage=100,
        ))
        logger.info("System restore launched", extra={"agent_name": self.AGENT_NAME, "action": "rollback"})
        return RollbackResult(success=True, message="System Restore opened. Follow the wizard to restore your system.")

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    async def _validate(self, fix: Fix | dict, on_progress) -> Fix:
        await self._report(on_progress, ProgressUpdate(
            stage=FixStage.VALIDATING, message=f"Starting: {_field(fix, 'title')}", percentage=0))
        if not isinstance(fix, Fix):
            try:
                fix = Fix.model_validate(fix)
            except ValidationError as e:
                raise FixValidationError(f"Invalid fix structure: {e.error_count()} invalid field(s)") from e
        self.validate_fix(fix)
        return fix

    async def _safety_check(self, fix: Fix, on_progress) -> None:
        await self._report(on_progress, ProgressUpdate(
            stage=FixStage.SAFETY_CHECKING, message="Running safety checks...", percentage=10))

        violations = find_dangerous_commands(fix.commands)
        if violations:
            logger.warning("Dangerous commands in fix", extra={
                "agent_name": self.AGENT_NAME, "action": "safety_rejection", "extra": {"violations": violations},
            })
            raise SafetyRejection(violations)

        if fix.requires_admin is not False and not await self._has_admin_rights():
            raise AdminPrivilegesRequired(ADMIN_REQUIRED_MESSAGE)

        await self._report(on_progress, ProgressUpdate(
            stage=FixStage.SAFETY_CHECKING, message="Safety checks passed", percentage=20))

    async def _has_admin_rights(self) -> bool:
        probe = "net session" if self._is_windows else "id -u"
        try:
            returncode, stdout, _ = await self._runner(probe, ADMIN_PROBE_TIMEOUT)
        except (CommandTimeout, OSError) as e:
            logger.warning("Admin probe failed", extra={"agent_name": self.AGENT_NAME, "action": "admin_probe", "extra": str(e)})
            return False
        if self._is_windows:
            return returncode == 0
        return returncode == 0 and stdout.strip() == "0"

    async def _create_restore_point(self, fix: Fix, on_progress) -> bool:
        """Best effort: a failure is reported and execution carries on."""
        await self._report(on_progress, ProgressUpdate(
            stage=FixStage.CHECKPOINTING, message="Creating system restore point for safety...", percentage=25))

        if not self._is_windows:
            created, reason = False, "system restore points are only available on Windows"
        else:
            name = f"PC Health Assistant - {fix.title} - {datetime.now(timezone.utc).isoformat()}".replace("'", "")
            command = wrap_powershell(f"Checkpoint-Computer -Description '{name}' -RestorePointType MODIFY_SETTINGS")
            try:
                returncode, _, stderr = await self._runner(command, self._config.restore_point_timeout)
                created, reason = returncode == 0, stderr or f"exit code {returncode}"
            except (CommandTimeout, OSError) as e:
                created, reason = False, str(e)

        if created:
            await self._report(on_progress, ProgressUpdate(
                stage=FixStage.CHECKPOINTING, message="Restore point created", percentage=35))
        else:
            logger.warning("Restore point not created, proceeding", extra={
                "agent_name": self.AGENT_NAME, "action": "checkpoint_failed", "extra": reason,
            })
            await self._report(on_progress, ProgressUpdate(
                stage=FixStage.CHECKPOINTING,
                message="Could not create restore point - proceeding with caution",
                percentage=35,
                error=reason,
            ))
        return created

    async def _execute_commands(self, fix: Fix, on_progress, steps: list[StepResult]) -> None:
        """Run commands in order. High risk aborts on the first failure;
        low and medium risk record the failure and continue."""
        total = len(fix.commands)
        for i, command in enumerate(fix.commands):
            number = i + 1
            description = fix.steps[i] if i < len(fix.steps) and fix.steps[i] else f"Step {number}"
            await self._report(on_progress, ProgressUpdate(
                stage=FixStage.EXECUTING, message=description, percentage=40 + 40 * i / total,
                current_step=number, total_steps=total, command=command,
            ))

            error = None
            output = ""
            try:
                shell_command = wrap_powershell(command) if self._is_windows else command
                returncode, stdout, stderr = await self._runner(shell_command, self._config.fix_command_timeout)
                output = stdout or stderr
                if returncode != 0:
                    error = stderr or f"Command exited with code {returncode}"
            except (CommandTimeout, OSError) as e:
                error = str(e)

            if error is None:
                steps.append(StepResult(step=number, command=command, description=description, success=True, output=output))
                await self._report(on_progress, ProgressUpdate(
                    stage=FixStage.STEP_COMPLETE, message=f"{description} - completed",
                    percentage=40 + 40 * number / total, current_step=number, total_steps=total,
                ))
                if self._config.step_delay > 0:
                    await asyncio.sleep(self._config.step_delay)
                continue

            steps.append(StepResult(
                step=number, command=command, description=description, success=False, output=output or None, error=error))
            logger.warning("Fix step failed", extra={
                "agent_name": self.AGENT_NAME, "action": "step_failed",
                "extra": {"step": number, "command": command[:200], "error": error},
            })
            await self._report(on_progress, ProgressUpdate(
                stage=FixStage.STEP_FAILED, message=f"Step {number} failed: {error}",
                percentage=40 + 40 * i / total, current_step=number, total_steps=total, error=error,
            ))
            if fix.risk_level == "high":
                raise StepExecutionFailure(number, error)

    # ------------------------------------------------------------------
    # sinks
    # ------------------------------------------------------------------

    async def _report(self, on_progress: Callable | None, update: ProgressUpdate) -> None:
        if self._event_emitter:
            await self._event_emitter.emit(
                self.AGENT_NAME, "fix_progress", update.message, details=update.model_dump(mode="json"))
        if on_progress is None:
            return
        try:
            outcome = on_progress(update)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("Progress callback failed", extra={"agent_name": self.AGENT_NAME, "action": "callback_failed", "extra": str(e)})

    async def _audit(self, record: FixExecutionRecord) -> None:
        if self._audit_sink is None:
            return
        try:
            outcome = self._audit_sink(record)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("Audit sink failed", extra={"agent_name": self.AGENT_NAME, "action": "audit_failed", "extra": str(e)})


def _field(fix: Any, name: str) -> str:
    value = fix.get(name) if isinstance(fix, dict) else getattr(fix, name, "")
    return str(value) if value else ""
