"""
Host shell primitive: run one command, capture stdout/stderr, enforce a timeout.

Nothing here keeps a shell session alive between calls.
"""

import asyncio
import sys
from typing import Awaitable, Callable, Tuple

from pchealth.errors import CommandTimeout
from pchealth.utils.logger import get_logger

logger = get_logger(__name__)

CommandRunner = Callable[[str, float], Awaitable[Tuple[int, str, str]]]

IS_WINDOWS = sys.platform == "win32"


def wrap_powershell(command: str) -> str:
    """Wrap a command for PowerShell unless it already is a PowerShell invocation."""
    if command.strip().lower().startswith("powershell"):
        return command
    escaped = command.replace('"', '\\"')
    return f'powershell -NoProfile -Command "{escaped}"'


def platform_command(command: str) -> str:
    """Commands are authored for PowerShell; elsewhere they go to the default shell."""
    return wrap_powershell(command) if IS_WINDOWS else command


async def run_command(cmd: str, timeout: float = 30.0) -> Tuple[int, str, str]:
    """Run a shell command and return (returncode, stdout, stderr).

    Raises CommandTimeout when the command exceeds `timeout` seconds; the
    child process is killed first.
    """
    proc = await asyncio.create_subprocess_shell(
        cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("Command timed out", extra={"action": "command_timeout", "extra": {"command": cmd[:200], "timeout": timeout}})
        raise CommandTimeout(cmd, timeout)
    return (
        proc.returncode,
        stdout.decode(errors="replace").strip(),
        stderr.decode(errors="replace").strip(),
    )
