"""Base reporter interface for browser agent sessions."""
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import List

from session_types import SessionResult


class ReportFormat(str, Enum):
    """Supported report formats."""
    JSON = "json"


class BaseReporter(ABC):
    """Abstract base class for report generators."""

    @abstractmethod
    def generate(self, result: SessionResult, output_dir: Path) -> Path:
        """
        Generate a trace report for a single session.

        Args:
            result: Finished session
            output_dir: Directory to write report to

        Returns:
            Path to the generated report file
        """
        pass

    @abstractmethod
    def generate_suite(self, results: List[SessionResult], output_dir: Path) -> Path:
        """
        Generate a combined report for several sessions run back to back.

        Args:
            results: Finished sessions in run order
            output_dir: Directory to write report to

        Returns:
            Path to the generated report file
        """
        pass

    @property
    @abstractmethod
    def format(self) -> ReportFormat:
        """Return the report format this reporter generates."""
        pass
