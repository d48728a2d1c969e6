"""vfio-preflight Requirement Checks.

Runs the ordered passthrough readiness checks and reports each result
through a pluggable report sink.
"""

from .checker import RequirementChecker, CheckOutcome, CheckerState, SocketVerdict
from .diagnosis import DiagnosisAdvisor, Diagnosis
from .report import (
    CheckKind,
    CheckResult,
    ReportSink,
    ConsoleReportSink,
    LoggingReportSink,
    RecordingReportSink,
    MultiReportSink,
)

__all__ = [
    # Checker
    "RequirementChecker",
    "CheckOutcome",
    "CheckerState",
    "SocketVerdict",
    # Diagnosis
    "DiagnosisAdvisor",
    "Diagnosis",
    # Reporting
    "CheckKind",
    "CheckResult",
    "ReportSink",
    "ConsoleReportSink",
    "LoggingReportSink",
    "RecordingReportSink",
    "MultiReportSink",
]
