"""
Tool registry: the tool schemas offered to the reasoning service and the
mapping from playbook actions to collector categories. This is the single
source of truth for both the conversational loop and the playbook runner.
"""

PROPOSE_FIX_TOOL = "propose_fix"
DIAGNOSTIC_COMMAND_TOOL = "run_powershell_diagnostic"

TOOL_SCHEMAS = [
    {
        "name": "check_event_logs",
        "description": "Check Windows Event Logs for errors and warnings. Use this to investigate crashes, errors, and system issues.",
        "input_schema": {
            "type": "object",
            "properties": {
                "logNames": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": 'Log names to check (e.g., ["Application", "System"])',
                },
                "daysBack": {
                    "type": "number",
                    "description": "How many days back to search (default: 7)",
                },
            },
        },
    },
    {
        "name": "check_disk_health",
        "description": "Check disk health using SMART data and disk space. ALWAYS use this before diagnosing disk issues.",
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "name": "check_system_resources",
        "description": "Check RAM, CPU, and GPU usage. Use this to investigate performance issues.",
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "name": "check_drivers",
        "description": "Check driver versions and status. Use this for hardware issues or crashes.",
        "input_schema": {
            "type": "object",
            "properties": {
                "focus": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": 'Which drivers to focus on (e.g., ["GPU", "Audio"])',
                },
            },
        },
    },
    {
        "name": "check_network",
        "description": "Check network connectivity and adapters. Use this for internet problems.",
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "name": DIAGNOSTIC_COMMAND_TOOL,
        "description": "Run a read-only PowerShell diagnostic command. Use for specific checks not covered by other tools.",
        "input_schema": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The PowerShell command to run (must be read-only)"},
                "explanation": {"type": "string", "description": "Simple explanation of what this checks and why"},
            },
            "required": ["command", "explanation"],
        },
    },
    {
        "name": PROPOSE_FIX_TOOL,
        "description": "Propose a fix to the user. This will show an approval dialog - user must approve before execution.",
        "input_schema": {
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Short title for the fix (user-friendly)"},
                "description": {"type": "string", "description": "What this fix will do, explained simply"},
                "why": {"type": "string", "description": "Why this fix will help solve their problem"},
                "steps": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Step-by-step instructions in simple language",
                },
                "commands": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "PowerShell commands to execute, one per step (will be shown to user)",
                },
                "riskLevel": {"type": "string", "enum": ["low", "medium", "high"], "description": "Risk level of this fix"},
                "requiresAdmin": {"type": "boolean", "description": "Whether the commands need administrator rights"},
                "requiresRestart": {"type": "boolean", "description": "Whether this fix requires a system restart"},
                "estimatedTime": {"type": "string", "description": 'How long this will take (e.g., "2-5 minutes")'},
            },
            "required": ["title", "description", "why", "steps", "commands", "riskLevel"],
        },
    },
]

TOOL_NAMES = [t["name"] for t in TOOL_SCHEMAS]

# Playbook action -> collector category
ACTION_TO_COLLECTOR: dict[str, str] = {
    "checkEventLogs": "event_log",
    "findCrashDumps": "crash_dump",
    "checkDrivers": "driver",
    "analyzeDiskSpace": "disk",
    "analyzeDiskHealth": "disk",
    "checkNetworkAdapters": "network",
    "testConnectivity": "network",
    "checkFirewall": "network",
    "checkProxySettings": "network",
    "checkSystemResources": "system_resource",
    "checkRAMUsage": "system_resource",
    "checkHardwareHealth": "system_resource",
    "analyzeRecentChanges": "recent_changes",
    "checkStartupPrograms": "startup_programs",
    "checkBackgroundProcesses": "processes",
    "analyzeProcesses": "processes",
    "scanTempFiles": "temp_files",
    "checkSystemFiles": "system_files",
    "checkDeviceManager": "device_manager",
    "checkUSBDevices": "usb_devices",
}


def summarize_tool_call(tool_name: str, tool_input: dict) -> str:
    """Human-readable one-liner for progress events."""
    summaries = {
        "check_event_logs": lambda i: f"Checking {', '.join(i.get('logNames') or ['Application', 'System'])} event logs ({i.get('daysBack', 7)} days)",
        "check_disk_health": lambda i: "Checking disk health (SMART) and free space",
        "check_system_resources": lambda i: "Checking RAM, CPU and GPU usage",
        "check_drivers": lambda i: f"Checking drivers ({', '.join(i.get('focus') or ['GPU', 'Audio', 'Network'])})",
        "check_network": lambda i: "Testing network connectivity",
        DIAGNOSTIC_COMMAND_TOOL: lambda i: f"Running diagnostic: {i.get('explanation') or i.get('command', '')[:60]}",
        PROPOSE_FIX_TOOL: lambda i: f"Proposing fix: {i.get('title', 'untitled')}",
    }
    fn = summaries.get(tool_name)
    if fn:
        try:
            return fn(tool_input)
        except (TypeError, AttributeError):
            pass
    return f"Running {tool_name}"
