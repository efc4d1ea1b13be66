"""PC health diagnostics: conversational investigation, finding synthesis and guarded fixes."""

__version__ = "1.0.0"
