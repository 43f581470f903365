"""Report generators for browser agent sessions."""
from reporters.base import BaseReporter, ReportFormat
from reporters.json_reporter import JSONReporter

__all__ = [
    "BaseReporter",
    "ReportFormat",
    "JSONReporter",
]
