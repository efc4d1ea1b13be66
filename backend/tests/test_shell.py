import sys

import pytest

from pchealth.errors import CommandTimeout
from pchealth.utils.shell import run_command, wrap_powershell

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")


def test_wrap_powershell():
    assert wrap_powershell("Get-Process") == 'powershell -NoProfile -Command "Get-Process"'
    assert wrap_powershell('Write-Output "hi"') == 'powershell -NoProfile -Command "Write-Output \\"hi\\""'


def test_wrap_powershell_leaves_powershell_alone():
    command = "powershell -Command Get-Date"
    assert wrap_powershell(command) == command


@posix_only
@pytest.mark.asyncio
async def test_run_command_captures_output():
    returncode, stdout, stderr = await run_command("echo hello && echo oops 1>&2")
    assert returncode == 0
    assert stdout == "hello"
    assert stderr == "oops"


@posix_only
@pytest.mark.asyncio
async def test_run_command_exit_code():
    returncode, _, _ = await run_command("exit 3")
    assert returncode == 3


@posix_only
@pytest.mark.asyncio
async def test_run_command_timeout():
    with pytest.raises(CommandTimeout) as exc_info:
        await run_command("sleep 5", timeout=0.2)
    assert exc_info.value.timeout == 0.2
