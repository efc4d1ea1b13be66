"""
Investigation playbooks: fixed mappings from a problem category to an ordered
set of collector steps.

`PLAYBOOKS` drives the structured diagnostic pass (one collector call per
step). `CHAT_PLAYBOOKS` drives the conversational playbook mode, where the
categories are expanded into a numbered instruction message and the model
picks the tools itself.
"""

from __future__ import annotations

import copy

CRASH_INVESTIGATION = {
    "name": "Application/Game Crash Investigation",
    "description": "Investigates why programs or games are crashing",
    "steps": [
        {"action": "checkEventLogs", "description": "Check Windows Event Logs for crash entries", "config": {
            "logNames": ["Application", "System"],
            "levels": ["Error", "Critical"],
            "sources": ["Application Error", "Windows Error Reporting"],
            "timeRange": "7days",
            "findPatterns": True,
        }},
        {"action": "findCrashDumps", "description": "Locate and analyze crash dump files", "config": {
            "locations": [
                "C:\\Windows\\Minidump",
                "%LOCALAPPDATA%\\CrashDumps",
                "%APPDATA%\\*\\Saved\\Crashes",
                "%LOCALAPPDATA%\\*\\Crashes",
            ],
            "maxAge": "30days",
        }},
        {"action": "analyzeDiskHealth", "description": "Check disk health with SMART data", "config": {
            "checkSMART": True, "checkFragmentation": False,
        }},
        {"action": "checkDrivers", "description": "Verify driver versions and status", "config": {
            "focus": ["GPU", "Audio", "Network", "Chipset"], "checkForUpdates": True, "checkBlacklists": True,
        }},
        {"action": "checkSystemResources", "description": "Verify system has sufficient resources", "config": {
            "metrics": ["RAM", "Disk", "CPU", "GPU", "Temperature"],
        }},
        {"action": "analyzeRecentChanges", "description": "Check for recent software installations or updates", "config": {
            "timeRange": "7days", "types": ["software", "drivers", "windows-updates"],
        }},
    ],
}

SLOW_PC_INVESTIGATION = {
    "name": "Slow Performance Investigation",
    "description": "Investigates why the computer is running slowly",
    "steps": [
        {"action": "checkStartupPrograms", "description": "Analyze programs that start with Windows", "config": {
            "locations": ["registry", "startup-folder", "task-scheduler"],
        }},
        {"action": "analyzeDiskSpace", "description": "Check available disk space", "config": {
            "warningThreshold": 10, "criticalThreshold": 5,
        }},
        {"action": "checkRAMUsage", "description": "Analyze memory usage patterns", "config": {
            "includeProcesses": True, "top": 10,
        }},
        {"action": "analyzeDiskHealth", "description": "Check disk health and fragmentation", "config": {
            "checkSMART": True, "checkFragmentation": True,
        }},
        {"action": "checkBackgroundProcesses", "description": "Identify resource-hungry background processes", "config": {
            "sortBy": "cpu", "top": 20,
        }},
        {"action": "scanTempFiles", "description": "Find and analyze temporary files", "config": {
            "locations": ["%TEMP%", "C:\\Windows\\Temp", "%LOCALAPPDATA%\\Temp"],
        }},
    ],
}

ERROR_INVESTIGATION = {
    "name": "Error Message Investigation",
    "description": "Investigates recurring error messages",
    "steps": [
        {"action": "checkEventLogs", "description": "Search Event Logs for error patterns", "config": {
            "logNames": ["Application", "System"], "levels": ["Error", "Warning"], "timeRange": "7days", "findPatterns": True,
        }},
        {"action": "analyzeDiskHealth", "description": "Check disk health with SMART data", "config": {
            "checkSMART": True, "checkFragmentation": False,
        }},
        {"action": "checkSystemFiles", "description": "Verify system file integrity", "config": {
            "runSFC": False, "checkWindowsImage": False,
        }},
        {"action": "checkDrivers", "description": "Look for driver errors", "config": {
            "focus": "all", "checkForErrors": True,
        }},
        {"action": "analyzeRecentChanges", "description": "Correlation with recent system changes", "config": {
            "timeRange": "14days",
        }},
    ],
}

HARDWARE_INVESTIGATION = {
    "name": "Hardware Problem Investigation",
    "description": "Investigates hardware-related issues",
    "steps": [
        {"action": "checkDeviceManager", "description": "Check for hardware errors in Device Manager", "config": {
            "findErrors": True, "findDisabled": True, "findMissing": True,
        }},
        {"action": "checkDrivers", "description": "Verify all hardware drivers", "config": {
            "focus": "all", "checkForUpdates": True,
        }},
        {"action": "checkHardwareHealth", "description": "Monitor hardware sensors and health", "config": {
            "checkTemperature": True, "checkVoltage": True, "checkFanSpeeds": True,
        }},
        {"action": "checkUSBDevices", "description": "Analyze USB device issues", "config": {
            "checkEventLogs": True,
        }},
    ],
}

NETWORK_INVESTIGATION = {
    "name": "Network Problem Investigation",
    "description": "Investigates internet and network connectivity issues",
    "steps": [
        {"action": "testConnectivity", "description": "Test internet connectivity and speed", "config": {
            "pingTargets": ["8.8.8.8", "1.1.1.1"], "checkDNS": True, "checkSpeed": True,
        }},
        {"action": "checkNetworkAdapters", "description": "Verify network adapter status", "config": {
            "checkDrivers": True, "checkIPConfig": True,
        }},
        {"action": "checkFirewall", "description": "Check Windows Firewall settings", "config": {
            "checkRules": True, "checkBlockedApps": True,
        }},
        {"action": "checkProxySettings", "description": "Verify proxy and VPN settings", "config": {
            "includeVPN": True,
        }},
    ],
}

FULL_SYSTEM_SCAN = {
    "name": "Complete System Scan",
    "description": "Comprehensive diagnostic of entire system",
    "steps": (
        CRASH_INVESTIGATION["steps"]
        + SLOW_PC_INVESTIGATION["steps"]
        + HARDWARE_INVESTIGATION["steps"]
        + NETWORK_INVESTIGATION["steps"]
    ),
}

PLAYBOOKS: dict[str, dict] = {
    "crash": CRASH_INVESTIGATION,
    "slow": SLOW_PC_INVESTIGATION,
    "error": ERROR_INVESTIGATION,
    "hardware": HARDWARE_INVESTIGATION,
    "network": NETWORK_INVESTIGATION,
    "full-scan": FULL_SYSTEM_SCAN,
}


def get_playbook(problem_type: str) -> dict:
    """Return a private copy of the named playbook; unknown types raise KeyError."""
    return copy.deepcopy(PLAYBOOKS[problem_type])


# ---------------------------------------------------------------------------
# Conversational playbook mode
# ---------------------------------------------------------------------------

CHAT_PLAYBOOKS: dict[str, list[str]] = {
    "crash": ["event_logs", "disk_health", "drivers", "system_resources"],
    "slow": ["system_resources", "disk_health", "startup_programs"],
    "error": ["event_logs", "disk_health", "system_resources"],
    "network": ["network", "drivers"],
    "full": ["event_logs", "disk_health", "drivers", "system_resources", "network"],
}

PROBLEM_DESCRIPTIONS: dict[str, str] = {
    "crash": "Program/Game Crashing Issues",
    "slow": "Slow Computer Performance",
    "error": "Error Messages",
    "network": "Network/Internet Problems",
    "full": "Complete System Scan",
}

# Fixed order of the numbered instructions
_AREA_INSTRUCTIONS: list[tuple[str, str]] = [
    ("event_logs", "Check Windows Event Logs for errors and warnings in the last 7 days"),
    ("disk_health", "Check disk health using SMART data"),
    ("drivers", "Check driver status (GPU, Audio, Network)"),
    ("system_resources", "Check system resources (RAM, CPU, GPU usage)"),
    ("network", "Check network connectivity"),
    ("startup_programs", "Check startup programs and background processes"),
]


def describe_problem(problem_type: str) -> str:
    return PROBLEM_DESCRIPTIONS.get(problem_type, "System Diagnostic")


def build_playbook_prompt(problem_type: str) -> str:
    """Expand a problem type into the instruction message for the chat loop.

    Unknown problem types fall back to the full scan.
    """
    areas = CHAT_PLAYBOOKS.get(problem_type) or CHAT_PLAYBOOKS["full"]
    lines = [
        f"I need you to run a comprehensive diagnostic for: {describe_problem(problem_type)}",
        "",
        "Please investigate the following areas systematically:",
    ]
    number = 0
    for area, instruction in _AREA_INSTRUCTIONS:
        if area in areas:
            number += 1
            lines.append(f"{number}. {instruction}")
    lines += [
        "",
        "After running these checks:",
        "1. Analyze the results carefully",
        "2. Identify any real problems (ignore false positives like old event logs if SMART shows healthy)",
        "3. If you find fixable issues, propose a fix using the propose_fix tool",
        "4. Provide a clear summary of what you found",
        "",
        "Run each check one at a time and report your findings.",
    ]
    return "\n".join(lines)
