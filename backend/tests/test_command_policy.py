import pytest

from pchealth.tools.command_policy import (
    diagnostic_command_violations,
    find_dangerous_commands,
    is_dangerous_command,
    is_diagnostic_command_allowed,
)


@pytest.mark.parametrize("command", [
    "Get-Process | Sort-Object CPU -Descending | Select-Object -First 10",
    "Get-WmiObject Win32_DiskDrive",
    "Get-ComputerInfo",
    "ipconfig /all",
    "Get-NetAdapter",
])
def test_read_only_commands_allowed(command):
    assert is_diagnostic_command_allowed(command) is True


@pytest.mark.parametrize("command", [
    "Remove-Item C:\\Users\\me\\file.txt",
    "REMOVE-ITEM C:\\temp",
    "Stop-Service wuauserv",
    "Restart-Computer",
    "Set-ItemProperty -Path HKCU:\\Software\\X -Name Y -Value 1",
    "New-Item -ItemType File foo.txt",
    "shutdown /r /t 0",
    "iex (Get-Content script.ps1)",
    "Invoke-Command -ScriptBlock { Get-Process }",
    "Start-Process notepad.exe",
    "Clear-Disk -Number 1",
])
def test_mutating_commands_rejected(command):
    assert is_diagnostic_command_allowed(command) is False


@pytest.mark.parametrize("command", ["", "   "])
def test_empty_command_rejected(command):
    assert is_diagnostic_command_allowed(command) is False


def test_substring_match_errs_on_refusing():
    # "Formatted" contains "format"
    assert is_diagnostic_command_allowed("Get-CimInstance Win32_PerfFormattedData_PerfOS_Processor") is False
    assert "format" in diagnostic_command_violations("Get-CimInstance Win32_PerfFormattedData_PerfOS_Processor")


@pytest.mark.parametrize("command", [
    "format C:",
    "FORMAT d: /q",
    "Format-Volume -DriveLetter D",
    "mkfs.ext4 /dev/sdb1",
    "del /s /q C:\\",
    "Remove-Item -Recurse -Force C:\\Windows",
    "rd /s /q c:\\",
    "rmdir /s C:\\Users",
    "rm -rf /",
    "rm -rf /*",
    "Remove-Item -Path C:\\ -Recurse -Force",
    "remove-item c:\\Windows -force -recurse",
    "del /q /s C:\\*",
    "erase /s /q C:\\Windows",
    "rmdir C:\\ /s /q",
    "rd C:\\Users /s",
    "rm -fr /",
    "rm -r -f /*",
    "rm --recursive --force /",
    "reg delete HKLM\\Software\\Vendor /f",
    "reg delete HKEY_LOCAL_MACHINE\\SYSTEM\\X /f",
    "Remove-Item HKLM:\\Software\\Vendor",
    "bcdedit /set {current} safeboot minimal",
    "bootrec /fixmbr",
    "diskpart /s script.txt",
    "fdisk /dev/sda",
    "Clear-Disk -Number 0 -RemoveData",
    "Initialize-Disk -Number 1",
    "Remove-Partition -DiskNumber 0 -PartitionNumber 1",
    "dd if=/dev/zero of=/dev/sda",
])
def test_destructive_fix_commands_detected(command):
    assert is_dangerous_command(command) is True


@pytest.mark.parametrize("command", [
    "sfc /scannow",
    "DISM /Online /Cleanup-Image /RestoreHealth",
    "Remove-Item $env:TEMP\\* -Recurse -Force",
    "ipconfig /flushdns",
    "reg delete HKCU\\Software\\Vendor\\Cache /f",
    "Get-Date -Format yyyy",
    "rm -rf /tmp/cache",
    "del /q C:\\Windows\\Temp\\*.log",
    "Remove-Item -Path C:\\Windows\\Temp\\old.log -Force",
])
def test_routine_fix_commands_allowed(command):
    assert is_dangerous_command(command) is False


def test_find_dangerous_commands_reports_all_violations():
    commands = ["sfc /scannow", "format C:", "ipconfig /flushdns", "bcdedit /deletevalue safeboot"]
    assert find_dangerous_commands(commands) == ["format C:", "bcdedit /deletevalue safeboot"]


def test_find_dangerous_commands_empty():
    assert find_dangerous_commands([]) == []
    assert find_dangerous_commands(["sfc /scannow"]) == []
