"""
Command deny-lists.

Two independent policies:

* the diagnostic policy gates ad-hoc read-only commands the model asks to run
  mid-conversation; it is a plain substring match over a lower-cased command
  and errs on the side of refusing;
* the fix policy gates commands of an approved fix; it targets destructive
  operations on the system drive, the machine-wide registry hive, boot
  configuration and disk layout.
"""

import re

# Substrings that disqualify an ad-hoc diagnostic command
DIAGNOSTIC_DENYLIST: tuple[str, ...] = (
    # state-mutating verbs
    "remove-item", "rm", "del", "delete",
    "format", "clear-disk",
    "set-", "new-", "remove-",
    "restart-", "stop-", "restart-computer", "stop-computer", "shutdown",
    # command / script injection primitives
    "invoke-expression", "iex",
    "invoke-command", "icm",
    "start-process",
)

FIX_DENYLIST_PATTERNS: tuple[re.Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    # whole-drive format
    r"format\s+[a-z]:",
    r"format-volume",
    r"mkfs",
    # recursive delete of the system drive, flags and target in any order
    r"\b(del|erase|rd|rmdir)\b(?=.*\s/s\b)(?=.*\bc:\\)",
    r"\bremove-item\b(?=.*\s-recurse\b)(?=.*\bc:\\)",
    r"\brm\b(?=.*\s--?[a-z]*r)(?=.*\s/(\s|$|\*))",
    # machine-wide registry hive
    r"reg\s+delete.*(hklm|hkey_local_machine)",
    r"remove-item.*(hklm|hkey_local_machine):",
    # boot configuration
    r"bcdedit",
    r"bootrec",
    # disk partitioning
    r"diskpart",
    r"fdisk",
    r"clear-disk",
    r"initialize-disk",
    r"remove-partition",
    r"dd\s+if=.*of=/dev/",
))


def diagnostic_command_violations(command: str) -> list[str]:
    """Deny-list entries found in an ad-hoc diagnostic command."""
    lowered = (command or "").lower()
    return [entry for entry in DIAGNOSTIC_DENYLIST if entry in lowered]


def is_diagnostic_command_allowed(command: str) -> bool:
    if not command or not command.strip():
        return False
    return not diagnostic_command_violations(command)


def is_dangerous_command(command: str) -> bool:
    return any(p.search(command or "") for p in FIX_DENYLIST_PATTERNS)


def find_dangerous_commands(commands: list[str]) -> list[str]:
    """Every command of a fix that matches the fix deny-list.

    Scans the whole list so all violations can be reported at once.
    """
    return [cmd for cmd in commands if is_dangerous_command(cmd)]
