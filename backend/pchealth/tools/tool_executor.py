"""
ToolExecutor: dispatches tool calls requested by the reasoning service.

Each handler takes the tool input dict and returns a JSON-serializable dict
that is sent back to the model as the tool result. Collector output is
normalized into a compact summary (counts + top-N findings) to bound prompt
size. Nothing here raises into the conversation loop: unknown tools, failing
collectors and rejected commands all come back as structured results.
"""

from typing import Any

from pchealth.collectors.base import Collector, NotImplementedCollector
from pchealth.config import AgentConfig
from pchealth.errors import CollectorFailure, CommandTimeout
from pchealth.tools.command_policy import diagnostic_command_violations
from pchealth.tools.tool_registry import ACTION_TO_COLLECTOR, DIAGNOSTIC_COMMAND_TOOL, PROPOSE_FIX_TOOL
from pchealth.utils.logger import get_logger, redact
from pchealth.utils.shell import CommandRunner, platform_command, run_command

logger = get_logger(__name__)

_DEFAULT_LOG_NAMES = ["Application", "System"]
_DEFAULT_DRIVER_FOCUS = ["GPU", "Audio", "Network"]


class ToolExecutor:
    """Stateless tool dispatcher. Each handler: input -> result dict."""

    HANDLERS: dict[str, str] = {
        "check_event_logs": "_check_event_logs",
        "check_disk_health": "_check_disk_health",
        "check_system_resources": "_check_system_resources",
        "check_drivers": "_check_drivers",
        "check_network": "_check_network",
        DIAGNOSTIC_COMMAND_TOOL: "_run_diagnostic_command",
        PROPOSE_FIX_TOOL: "_propose_fix",
    }

    def __init__(
        self,
        collectors: dict[str, Collector] | None = None,
        runner: CommandRunner = run_command,
        config: AgentConfig | None = None,
    ):
        self._collectors = dict(collectors or {})
        self._runner = runner
        self._config = config or AgentConfig()

    async def execute(self, tool_name: str, tool_input: dict[str, Any] | None = None) -> dict[str, Any]:
        """Dispatch a tool call by name."""
        tool_input = tool_input or {}
        handler_name = self.HANDLERS.get(tool_name)
        if handler_name is None:
            logger.warning("Unknown tool requested", extra={"action": "unknown_tool", "tool": tool_name})
            return {"error": f"Unknown tool: {tool_name}", "status": "not_implemented"}

        logger.info("Executing tool", extra={"action": "tool_execute", "tool": tool_name, "extra": redact(tool_input)})
        handler = getattr(self, handler_name)
        try:
            return await handler(tool_input)
        except Exception as e:
            logger.error("Tool handler failed", extra={"action": "tool_error", "tool": tool_name, "extra": str(e)})
            return {"error": str(e), "findings": [f"Could not complete {tool_name}: {e}"], "recommendations": []}

    async def run_step(self, step: dict[str, Any], options: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run one playbook step `{action, config}` against its collector.

        Actions nobody registered a collector for yield a "not yet
        implemented" findings object.
        """
        action = step.get("action", "")
        category = ACTION_TO_COLLECTOR.get(action)
        collector = self._collectors.get(category) if category else None
        if collector is None:
            collector = NotImplementedCollector(action)
        return await self._investigate(collector, step, options)

    # ------------------------------------------------------------------
    # collector plumbing
    # ------------------------------------------------------------------

    async def _collect(self, category: str, action: str, config: dict[str, Any]) -> dict[str, Any]:
        step = {"action": action, "config": config}
        collector = self._collectors.get(category)
        if collector is None:
            failure = CollectorFailure(f"No collector registered for {category}")
            logger.warning(str(failure), extra={"action": "collector_missing", "tool": action})
            return _failure_result(action, failure)
        return await self._investigate(collector, step)

    @staticmethod
    async def _investigate(collector: Collector, step: dict[str, Any], options: dict[str, Any] | None = None) -> dict[str, Any]:
        action = step.get("action", "")
        try:
            result = await collector.investigate(step, options)
        except Exception as e:
            failure = CollectorFailure(str(e))
            logger.warning("Collector failed", extra={
                "action": "collector_failed", "tool": action, "extra": {"collector": collector.name, "error": str(e)},
            })
            return _failure_result(action, failure)
        return result if isinstance(result, dict) else {"result": result}

    # ------------------------------------------------------------------
    # handlers
    # ------------------------------------------------------------------

    async def _check_event_logs(self, params: dict[str, Any]) -> dict[str, Any]:
        log_names = params.get("logNames") or _DEFAULT_LOG_NAMES
        days_back = params.get("daysBack") or 7
        result = await self._collect("event_log", "checkEventLogs", {
            "logNames": log_names,
            "timeRange": f"{days_back}days",
            "findPatterns": True,
        })
        if "error" in result:
            return result

        errors = result.get("errors") or []
        return {
            "summary": f"Found {len(errors)} errors in {', '.join(log_names)} logs",
            "errors": errors[: self._config.max_event_errors],
            "patterns": result.get("patterns") or [],
        }

    async def _check_disk_health(self, params: dict[str, Any]) -> dict[str, Any]:
        result = await self._collect("disk", "analyzeDiskHealth", {"checkSMART": True})
        if "error" in result:
            return result

        disks = result.get("disks") or []
        health = result.get("healthStatus") or []
        for disk in disks:
            total = disk.get("totalSpace") or 0
            if total:
                disk["percentFree"] = round(100.0 * (disk.get("freeSpace") or 0) / total, 1)
        return {
            "disks": disks,
            "healthStatus": health,
            "lowSpaceWarnings": result.get("lowSpaceWarnings") or [],
            "summary": f"Checked {len(health)} disk(s)",
        }

    async def _check_system_resources(self, params: dict[str, Any]) -> dict[str, Any]:
        result = await self._collect("system_resource", "checkSystemResources", {})
        if "error" in result:
            return result

        ram = result.get("ram") or {}
        cpu = result.get("cpu") or {}
        return {
            "ram": ram,
            "cpu": cpu,
            "gpu": result.get("gpu") or [],
            "warnings": result.get("warnings") or [],
            "summary": f"RAM: {ram.get('usagePercent', 'N/A')}%, CPU: {cpu.get('usagePercent', 'N/A')}%",
        }

    async def _check_drivers(self, params: dict[str, Any]) -> dict[str, Any]:
        result = await self._collect("driver", "checkDrivers", {"focus": params.get("focus") or _DEFAULT_DRIVER_FOCUS})
        if "error" in result:
            return result

        drivers = result.get("drivers") or []
        outdated = result.get("outdatedDrivers") or []
        return {
            "drivers": drivers,
            "outdatedDrivers": outdated,
            "problematicDrivers": result.get("problematicDrivers") or [],
            "summary": f"Found {len(drivers)} drivers, {len(outdated)} outdated",
        }

    async def _check_network(self, params: dict[str, Any]) -> dict[str, Any]:
        result = await self._collect("network", "testConnectivity", {})
        if "error" in result:
            return result
        result.setdefault("summary", f"{len(result.get('adapters') or [])} adapter(s) checked")
        return result

    async def _run_diagnostic_command(self, params: dict[str, Any]) -> dict[str, Any]:
        command = params.get("command") or ""
        explanation = params.get("explanation") or ""

        violations = diagnostic_command_violations(command)
        if violations or not command.strip():
            logger.warning("Diagnostic command rejected", extra={
                "action": "command_rejected", "tool": DIAGNOSTIC_COMMAND_TOOL,
                "extra": {"command": command[:200], "matched": violations},
            })
            return {
                "error": "Command not allowed - diagnostic commands must be read-only",
                "explanation": "For safety, only diagnostic (read-only) commands are allowed without approval",
                "command": command,
            }

        try:
            returncode, stdout, stderr = await self._runner(
                platform_command(command), self._config.diagnostic_command_timeout)
        except CommandTimeout as e:
            return {"error": str(e), "explanation": explanation, "command": command}

        output = self._truncate(stdout or stderr)
        if returncode != 0:
            return {
                "error": stderr[:500] or f"Command exited with code {returncode}",
                "explanation": explanation,
                "output": output,
                "command": command,
            }
        return {"success": True, "explanation": explanation, "output": output, "command": command}

    async def _propose_fix(self, params: dict[str, Any]) -> dict[str, Any]:
        # Never executed here; the orchestrator captures the proposal for approval
        return {"success": True, "message": "Fix proposal sent to user for approval", "fix": params}

    def _truncate(self, text: str) -> str:
        limit = self._config.max_command_output
        if len(text) <= limit:
            return text
        return text[:limit] + f"\n... [truncated {len(text) - limit} chars]"


def _failure_result(action: str, failure: CollectorFailure) -> dict[str, Any]:
    """Error result handed back to the model in place of collector output."""
    return {
        "error": str(failure),
        "error_type": type(failure).__name__,
        "findings": [f"Could not complete {action}: {failure}"],
        "recommendations": [],
    }
