"""
Diagnostics domain module
"""
from .models import Check, CheckStatus, DiagnosticReport, LogTail, Verdict
from .aggregator import DiagnosticAggregator, command_tokens, parse_binding

__all__ = [
    "Check",
    "CheckStatus",
    "DiagnosticReport",
    "LogTail",
    "Verdict",
    "DiagnosticAggregator",
    "command_tokens",
    "parse_binding",
]
