"""Agent implementations"""

from .conversational_agent import ConversationalDiagnosticAgent
from .diagnostic_agent import DiagnosticAgent
from .chat_assistant import ChatAssistant

__all__ = [
    'ConversationalDiagnosticAgent',
    'DiagnosticAgent',
    'ChatAssistant',
]
