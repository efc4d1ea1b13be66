"""Result synthesis: model text -> filtered, ordered Issues and Fixes.

Parse -> evidence rules -> filter/prioritize. Every function here is pure;
no network or file I/O.
"""

from __future__ import annotations

import calendar
import json
import re
from datetime import date, datetime, timezone
from typing import Any

from pydantic import ValidationError

from pchealth.errors import SynthesisParseFailure
from pchealth.models.schemas import AnalysisResult, Fix, Issue
from pchealth.utils.logger import get_logger

logger = get_logger(__name__)

MIN_CONFIDENCE = 0.7
BAD_BLOCK_THRESHOLD = 10
DRIVER_STALE_MONTHS = 6
CPU_HIGH_PERCENT = 80.0
CPU_MIN_SAMPLES = 3
LOW_DISK_FREE_RATIO = 0.10
RECENT_EVENT_DAYS = 30

FALLBACK_SUMMARY = (
    "Diagnostic completed but results could not be formatted properly. "
    "Please try running the diagnosis again."
)

_FENCE_JSON = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE = re.compile(r"```\s*")
_LEADING_JSON_TAG = re.compile(r"^json\s*", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",(\s*[\]}])")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_LINE_BREAKS = re.compile(r"[\t\r\n]")

_DISK_FAILURE = re.compile(
    r"bad (block|sector)|(disk|drive|ssd|hdd|smart)\b.*\b(fail|failing|dying|degrad)", re.IGNORECASE)
_STALE_DRIVER = re.compile(r"(outdated|old|stale|out-of-date)\b.*\bdriver|driver.*\b(outdated|stale|out of date)", re.IGNORECASE)
_HIGH_CPU = re.compile(r"(high|excessive|sustained)\s+cpu|cpu\s+(usage\s+)?(is\s+)?(high|maxed|pegged)", re.IGNORECASE)
_LOW_DISK_SPACE = re.compile(r"(low|insufficient|running out of)\s+(disk\s+)?(space|storage)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _strip_fences(text: str) -> str:
    text = _FENCE_JSON.sub("", text)
    text = _FENCE.sub("", text)
    return _LEADING_JSON_TAG.sub("", text.strip()).strip()


def _outer_object(text: str) -> str:
    try:
        start = text.index("{")
        end = text.rindex("}") + 1
    except ValueError:
        raise SynthesisParseFailure("No JSON object found in model output")
    if end <= start:
        raise SynthesisParseFailure("No JSON object found in model output")
    return text[start:end]


def _escape_inner_quotes(text: str) -> str:
    """Escape quotes inside string values that do not terminate the string.

    A closing quote in valid JSON is always followed (after whitespace) by
    one of `, : } ]` or the end of input; any other quote met while inside a
    string is treated as literal text.
    """
    out: list[str] = []
    in_string = False
    escaped = False
    n = len(text)
    for i, ch in enumerate(text):
        if not in_string:
            out.append(ch)
            if ch == '"':
                in_string = True
            continue
        if escaped:
            out.append(ch)
            escaped = False
        elif ch == "\\":
            out.append(ch)
            escaped = True
        elif ch == '"':
            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j >= n or text[j] in ",:}]":
                out.append(ch)
                in_string = False
            else:
                out.append('\\"')
        else:
            out.append(ch)
    return "".join(out)


def repair_json(text: str) -> str:
    """Apply the mechanical repairs for common model JSON mistakes."""
    text = _TRAILING_COMMA.sub(r"\1", text)
    text = _LINE_BREAKS.sub(" ", text)
    text = _CONTROL_CHARS.sub("", text)
    return _escape_inner_quotes(text)


def _coerce(items: Any, model: type) -> list:
    if not isinstance(items, list):
        return []
    parsed = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning("Dropping malformed entry", extra={
                "action": "synthesis_skip", "extra": {"model": model.__name__, "error": str(e)[:300]},
            })
    return parsed


def analysis_from_dict(data: dict[str, Any], full_report: str | None = None) -> AnalysisResult:
    return AnalysisResult(
        summary=str(data.get("summary") or ""),
        issues=_coerce(data.get("issues"), Issue),
        fixes=_coerce(data.get("fixes"), Fix),
        full_report=full_report,
    )


def fallback_analysis(text: str, reason: str) -> AnalysisResult:
    return AnalysisResult(
        summary=FALLBACK_SUMMARY,
        issues=[Issue(
            severity="warning",
            title="Analysis Error",
            description="The diagnostic completed but encountered a formatting issue.",
            what_this_means="You may want to try running the scan again.",
            evidence="Technical parsing error occurred",
        )],
        fixes=[],
        full_report=text,
        parse_error=reason,
    )


def parse_analysis(text: str) -> AnalysisResult:
    """Parse model output into an AnalysisResult. Never raises."""
    text = text or ""
    try:
        candidate = _outer_object(_strip_fences(text))
    except SynthesisParseFailure as e:
        logger.warning("No JSON in model output", extra={"action": "synthesis_fallback", "extra": text[:500]})
        return fallback_analysis(text, str(e))

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as first:
        logger.info("JSON parse failed, repairing", extra={"action": "synthesis_repair", "extra": str(first)})
        try:
            data = json.loads(repair_json(candidate))
        except json.JSONDecodeError as second:
            logger.warning("JSON still unparsable after repair", extra={
                "action": "synthesis_fallback", "extra": {"error": str(second), "text": candidate[:500]},
            })
            return fallback_analysis(text, str(second))

    if not isinstance(data, dict):
        return fallback_analysis(text, "Top-level JSON value is not an object")
    return analysis_from_dict(data, full_report=text)


# ---------------------------------------------------------------------------
# Filtering and ordering
# ---------------------------------------------------------------------------

def _keep_issue(issue: Issue) -> bool:
    if issue.confidence < MIN_CONFIDENCE:
        return False
    if issue.severity == "info" and not issue.actionable:
        return False
    return issue.actionable or issue.severity == "critical"


def filter_and_prioritize(analysis: AnalysisResult) -> AnalysisResult:
    """Drop low-value findings and order the rest. Idempotent."""
    issues = sorted(
        (i for i in analysis.issues if _keep_issue(i)),
        key=lambda i: (i.priority_rank, -i.confidence),
    )
    fixes = sorted(
        (f for f in analysis.fixes if f.confidence >= MIN_CONFIDENCE),
        key=lambda f: f.priority_rank,
    )
    return analysis.model_copy(update={"issues": issues, "fixes": fixes})


# ---------------------------------------------------------------------------
# Classification rules
# ---------------------------------------------------------------------------

def is_disk_failing(is_healthy: bool, recent_bad_blocks: int) -> bool:
    """A disk is failing only when SMART says unhealthy AND the log shows
    more than BAD_BLOCK_THRESHOLD recent bad-block events."""
    return (not is_healthy) and recent_bad_blocks > BAD_BLOCK_THRESHOLD


def _to_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()


def months_before(day: date, months: int) -> date:
    year, month = divmod(day.year * 12 + (day.month - 1) - months, 12)
    month += 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last))


def is_driver_stale(driver_date: date | datetime | str, now: date | datetime | None = None) -> bool:
    today = _to_date(now) if now is not None else datetime.now(timezone.utc).date()
    return _to_date(driver_date) < months_before(today, DRIVER_STALE_MONTHS)


def is_cpu_high(samples: list[float]) -> bool:
    """Sustained load: enough samples, every one above the threshold."""
    if not samples or len(samples) < CPU_MIN_SAMPLES:
        return False
    return all(float(s) > CPU_HIGH_PERCENT for s in samples)


def is_disk_space_low(free: float, total: float) -> bool:
    if not total or total <= 0:
        return False
    return (free / total) < LOW_DISK_FREE_RATIO


# ---------------------------------------------------------------------------
# Evidence safety net
# ---------------------------------------------------------------------------

def _walk(evidence: Any):
    """Yield every dict nested anywhere in the evidence."""
    if isinstance(evidence, dict):
        yield evidence
        for v in evidence.values():
            yield from _walk(v)
    elif isinstance(evidence, list):
        for v in evidence:
            yield from _walk(v)


def _list(node: dict, key: str) -> list:
    value = node.get(key)
    return value if isinstance(value, list) else []


def _disk_verdict(evidence: Any) -> bool | None:
    """True if any disk is failing, False if disks were checked and none is,
    None when there is no disk health evidence."""
    health_flags: list[bool] = []
    bad_blocks = 0
    for node in _walk(evidence):
        for entry in _list(node, "healthStatus"):
            if isinstance(entry, dict):
                flag = entry.get("isHealthy")
                if flag is None:
                    flag = str(entry.get("healthStatus", "")).lower() == "healthy"
                health_flags.append(bool(flag))
        for err in _list(node, "errors"):
            if not isinstance(err, dict) or "bad block" not in str(err.get("message", "")).lower():
                continue
            recent = err.get("isRecent")
            if recent is None:
                recent = (err.get("daysAgo") or 0) <= RECENT_EVENT_DAYS
            if recent:
                bad_blocks += 1
    if not health_flags:
        return None
    return any(is_disk_failing(flag, bad_blocks) for flag in health_flags)


def _driver_verdict(evidence: Any, now) -> bool | None:
    dates = [
        d["driverDate"] for node in _walk(evidence)
        for d in _list(node, "drivers")
        if isinstance(d, dict) and d.get("driverDate")
    ]
    if not dates:
        return None
    unparsed = 0
    for value in dates:
        try:
            if is_driver_stale(value, now):
                return True
        except ValueError:
            unparsed += 1
    # A date we cannot read might be the stale one
    return None if unparsed else False


def _cpu_verdict(evidence: Any) -> bool | None:
    for node in _walk(evidence):
        cpu = node.get("cpu")
        if isinstance(cpu, dict) and isinstance(cpu.get("samples"), list):
            return is_cpu_high(cpu["samples"])
    return None


def _space_verdict(evidence: Any) -> bool | None:
    disks = [
        d for node in _walk(evidence)
        for d in _list(node, "disks")
        if isinstance(d, dict) and d.get("totalSpace")
    ]
    if not disks:
        return None
    return any(is_disk_space_low(d.get("freeSpace") or 0, d["totalSpace"]) for d in disks)


def _text_of(item: Issue | Fix) -> str:
    return f"{item.title} {item.description}"


def apply_evidence_rules(analysis: AnalysisResult, evidence: Any, now: date | datetime | None = None) -> AnalysisResult:
    """Drop findings the collected evidence contradicts.

    Only rules with evidence present are applied; a claim is dropped when
    its rule evaluates to "not affected".
    """
    rules = [
        (_DISK_FAILURE, _disk_verdict(evidence)),
        (_STALE_DRIVER, _driver_verdict(evidence, now)),
        (_HIGH_CPU, _cpu_verdict(evidence)),
        (_LOW_DISK_SPACE, _space_verdict(evidence)),
    ]
    contradicted = [pattern for pattern, verdict in rules if verdict is False]
    if not contradicted:
        return analysis

    def supported(item) -> bool:
        text = _text_of(item)
        return not any(p.search(text) for p in contradicted)

    issues = [i for i in analysis.issues if supported(i)]
    fixes = [f for f in analysis.fixes if supported(f)]
    dropped = len(analysis.issues) - len(issues) + len(analysis.fixes) - len(fixes)
    if dropped:
        logger.info("Findings contradicted by evidence dropped", extra={"action": "evidence_rules", "extra": {"dropped": dropped}})
    return analysis.model_copy(update={"issues": issues, "fixes": fixes})


def synthesize(text: str, evidence: Any = None, now: date | datetime | None = None) -> AnalysisResult:
    """Full pipeline for a JSON-emitting analysis."""
    analysis = parse_analysis(text)
    if evidence is not None:
        analysis = apply_evidence_rules(analysis, evidence, now)
    return filter_and_prioritize(analysis)


# ---------------------------------------------------------------------------
# Heuristic fallback
# ---------------------------------------------------------------------------

_BULLET = re.compile(r"^\s*(?:[-•*]|\d+\.)\s+")
_CRITICAL_WORDS = ("critical", "serious", "failing")
_WARNING_WORDS = ("warning", "issue", "problem")
_HEALTHY_WORDS = ("healthy", "normal", "ok")


def extract_issues_from_text(text: str) -> AnalysisResult:
    """Scrape bullet and numbered lines of free text into Issues.

    Severity follows the most recent keyword seen. Lines scraped under an
    "info" context are observations and are marked non-actionable. When no
    line qualifies the result has no issues; nothing is fabricated.
    """
    text = text or ""
    issues: list[Issue] = []
    severity = "info"

    for line in text.splitlines():
        lowered = line.lower()
        if any(w in lowered for w in _CRITICAL_WORDS):
            severity = "critical"
        elif any(w in lowered for w in _WARNING_WORDS):
            severity = "warning"
        elif any(w in lowered for w in _HEALTHY_WORDS):
            severity = "info"

        if not _BULLET.match(line):
            continue
        body = _BULLET.sub("", line).strip()
        if len(body) <= 10:
            continue
        issues.append(Issue(
            severity=severity,
            actionable=severity != "info",
            title=body[:80],
            description=body,
            what_this_means="Analysis from AI diagnostic",
            evidence="Detected during playbook investigation",
        ))

    summary = text[:150] + "..." if len(text) > 150 else text
    return AnalysisResult(summary=summary, issues=issues, fixes=[], full_report=text)
