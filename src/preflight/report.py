"""
Check results and report sinks.

The checker never prints; it hands each CheckResult to a ReportSink,
which decides how to render it.
"""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, TextIO

from common.exceptions import EnvironmentWarning, PreflightError, UnsupportedPath


class CheckKind(Enum):
    """Classification of a single check event."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    FATAL = "fatal"
    ISSUE = "issue"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class CheckResult:
    """One event emitted by the requirement checker."""

    kind: CheckKind
    check: str
    message: str
    socket_id: Optional[int] = None
    detail: Optional[str] = None
    remediation: Optional[str] = None

    @property
    def is_fatal(self) -> bool:
        return self.kind is CheckKind.FATAL

    @classmethod
    def from_error(
        cls,
        check: str,
        error: PreflightError,
        socket_id: Optional[int] = None,
    ) -> "CheckResult":
        """Classify an error raised by a check."""
        if isinstance(error, EnvironmentWarning):
            kind = CheckKind.WARN
        elif isinstance(error, UnsupportedPath):
            kind = CheckKind.UNSUPPORTED
        else:
            kind = CheckKind.FATAL

        return cls(
            kind=kind,
            check=check,
            message=error.message,
            socket_id=socket_id,
            remediation=getattr(error, "remediation", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "kind": self.kind.value,
            "check": self.check,
            "message": self.message,
            "socket_id": self.socket_id,
            "detail": self.detail,
            "remediation": self.remediation,
        }


class ReportSink(ABC):
    """Receives check results as they are produced."""

    @abstractmethod
    def report(self, result: CheckResult) -> None:
        """Render or store one result."""
        pass


class RecordingReportSink(ReportSink):
    """Keeps every result in memory, in emission order."""

    def __init__(self):
        self.results: List[CheckResult] = []

    def report(self, result: CheckResult) -> None:
        self.results.append(result)

    def of_kind(self, kind: CheckKind) -> List[CheckResult]:
        return [r for r in self.results if r.kind is kind]


class LoggingReportSink(ReportSink):
    """Forwards results to a logger."""

    LEVELS = {
        CheckKind.PASS: logging.INFO,
        CheckKind.WARN: logging.WARNING,
        CheckKind.ISSUE: logging.WARNING,
        CheckKind.UNSUPPORTED: logging.WARNING,
        CheckKind.FAIL: logging.ERROR,
        CheckKind.FATAL: logging.CRITICAL,
    }

    LOGGER_NAME = "preflight.report"

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(self.LOGGER_NAME)

    def report(self, result: CheckResult) -> None:
        message = result.message
        if result.socket_id is not None:
            message = f"[socket {result.socket_id}] {message}"
        if result.remediation:
            message = f"{message} ({result.remediation})"
        self._logger.log(self.LEVELS[result.kind], message)


class ConsoleReportSink(ReportSink):
    """Human-readable colored lines on a terminal stream."""

    LABELS = {
        CheckKind.PASS: ("PASS:", "\033[1;32m"),
        CheckKind.WARN: ("WARN:", "\033[1;33m"),
        CheckKind.FAIL: ("FAIL:", "\033[1;31m"),
        CheckKind.FATAL: ("FATAL:", "\033[1;35m"),
        CheckKind.ISSUE: ("  !", "\033[1;35m"),
        CheckKind.UNSUPPORTED: ("  ?", "\033[1;36m"),
    }
    RESET = "\033[0m"

    def __init__(self, stream: Optional[TextIO] = None, color: Optional[bool] = None):
        self._stream = stream or sys.stdout
        self._color = self._stream.isatty() if color is None else color

    def report(self, result: CheckResult) -> None:
        label, color = self.LABELS[result.kind]
        if self._color:
            label = f"{color}{label}{self.RESET}"

        lines = [f"{label} {result.message}"]
        if result.detail:
            lines.append(f"    {result.detail}")
        if result.remediation:
            lines.append(f"    {result.remediation}")

        print("\n".join(lines), file=self._stream)


class MultiReportSink(ReportSink):
    """Fans each result out to several sinks."""

    def __init__(self, *sinks: ReportSink):
        self._sinks = list(sinks)

    def report(self, result: CheckResult) -> None:
        for sink in self._sinks:
            sink.report(result)
