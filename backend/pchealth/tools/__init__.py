"""Tools module: tool schemas, command policies and the tool dispatcher."""
from .tool_registry import TOOL_SCHEMAS, TOOL_NAMES, PROPOSE_FIX_TOOL, DIAGNOSTIC_COMMAND_TOOL
from .command_policy import is_diagnostic_command_allowed, find_dangerous_commands
from .tool_executor import ToolExecutor

__all__ = [
    'TOOL_SCHEMAS',
    'TOOL_NAMES',
    'PROPOSE_FIX_TOOL',
    'DIAGNOSTIC_COMMAND_TOOL',
    'is_diagnostic_command_allowed',
    'find_dangerous_commands',
    'ToolExecutor',
]
