"""
Passthrough Requirement Checker

Runs the ordered host checks: kernel version, sysfs, then a per-socket
loop over CPU virtualization and IOMMU support. A host is ready as soon
as one socket passes both; a failing socket hands over to the next one,
and only the last socket's failure is fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional

from common.exceptions import (
    CollectionError,
    EnvironmentFatal,
    EnvironmentWarning,
    UnsupportedPath,
)
from common.logging_config import LogContext
from hardware_detect.host_facts import (
    CpuFacts,
    HostFacts,
    HostFactsCollector,
    KernelVersionInfo,
)

from .diagnosis import DiagnosisAdvisor, enabled_parameters
from .report import CheckKind, CheckResult, RecordingReportSink, ReportSink

logger = logging.getLogger(__name__)

MIN_KERNEL_VERSION = (4, 8)

SYSFS_REMEDIATION = "As root, try: mount -t sysfs sysfs /sys"


class CheckerState(Enum):
    """Progress of a checker run."""
    INIT = auto()
    KERNEL_CHECKED = auto()
    SYSFS_CHECKED = auto()
    PER_SOCKET_LOOP = auto()
    DONE = auto()
    ABORTED_FATAL = auto()


class SocketVerdict(Enum):
    """Result of evaluating one CPU socket."""
    READY = auto()
    NO_HVM = auto()
    NO_IOMMU = auto()


# Fatal raised when the last socket fails, keyed by how it failed
TERMINAL_FAILURES = {
    SocketVerdict.NO_HVM: (
        "hvm",
        "No CPUs featuring support for hardware virtualization "
        "(Intel VT-x or AMD-V) detected",
        "Enable VT-x (Intel) or SVM mode (AMD) in the firmware setup",
    ),
    SocketVerdict.NO_IOMMU: (
        "iommu",
        "No CPUs featuring enabled IOMMU support (Intel VT-d or AMD-Vi) detected",
        "Enable VT-d / AMD-Vi in the firmware setup and add "
        "intel_iommu=on or amd_iommu=on to the kernel command line",
    ),
}


@dataclass
class CheckOutcome:
    """Terminal state of a checker run."""

    state: CheckerState
    ready_socket: Optional[int] = None
    fatal: Optional[CheckResult] = None
    results: List[CheckResult] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.state is CheckerState.DONE and self.ready_socket is not None


class RequirementChecker:
    """
    Evaluates whether the host can do PCI/USB passthrough.

    Every event goes to the report sink as it happens; run() also returns
    them in the outcome.

    Example:
        collector = HostFactsCollector()
        checker = RequirementChecker(collector, ConsoleReportSink())
        outcome = checker.run(collector.collect(), collector.read_cmdline())
    """

    def __init__(
        self,
        collector: HostFactsCollector,
        sink: Optional[ReportSink] = None,
        advisor: Optional[DiagnosisAdvisor] = None,
    ):
        self._collector = collector
        self._sink = sink or RecordingReportSink()
        self._advisor = advisor or DiagnosisAdvisor()
        self._state = CheckerState.INIT
        self._results: List[CheckResult] = []

    @property
    def state(self) -> CheckerState:
        """Get current checker state."""
        return self._state

    def _emit(self, result: CheckResult) -> CheckResult:
        self._results.append(result)
        self._sink.report(result)
        return result

    def check_kernel(self, kernel: KernelVersionInfo) -> CheckResult:
        """WARN for kernels older than 4.8; never fatal."""
        logger.debug(f"Checking kernel version {kernel.full}")

        if kernel.as_tuple() < MIN_KERNEL_VERSION:
            return CheckResult.from_error("kernel", EnvironmentWarning(
                f"This tool requires Linux 4.8 or newer "
                f"(system Linux version: {kernel.full})"
            ))

        return CheckResult(CheckKind.PASS, "kernel", f"Linux {kernel.full}")

    def check_sysfs(self, facts: HostFacts) -> CheckResult:
        """FATAL unless sysfs is mounted on /sys, readable, with /sys/class/iommu."""
        try:
            self._require_sysfs(facts)
        except EnvironmentFatal as e:
            return CheckResult.from_error("sysfs", e)

        return CheckResult(
            CheckKind.PASS,
            "sysfs",
            "Kernel tests (version, mounted sysfs, IOMMU support)",
        )

    def _require_sysfs(self, facts: HostFacts) -> None:
        mounted = any(
            m.device == "sys" and m.mountpoint == "/sys" and m.fstype == "sysfs"
            for m in facts.mounts
        )
        if not mounted:
            raise EnvironmentFatal(
                "Sysfs doesn't appear to be mounted",
                remediation=SYSFS_REMEDIATION,
            )

        if not facts.sys_readable:
            raise EnvironmentFatal(
                "Sysfs is not readable by the current user",
                remediation="Run the check as root",
            )

        if not facts.iommu_class_is_dir:
            raise EnvironmentFatal(
                "/sys/class/iommu is not a directory",
                remediation="Boot a kernel built with IOMMU support (CONFIG_IOMMU_SUPPORT)",
            )

    def check_socket(self, cpu: CpuFacts, cmdline: str) -> SocketVerdict:
        """Evaluate one socket: virtualization first, IOMMU only if that passed."""
        with LogContext(socket_id=cpu.socket_id):
            logger.debug(
                f"Checking CPU in socket {cpu.socket_id} for hardware virtualization support"
            )
            if not cpu.has_virtualization:
                self._emit(CheckResult.from_error("hvm", EnvironmentWarning(
                    f"CPU in socket {cpu.socket_id} [{cpu.model_name}] didn't report "
                    f"hardware virtualization support"
                ), socket_id=cpu.socket_id))
                return SocketVerdict.NO_HVM

            self._emit(CheckResult(
                CheckKind.PASS,
                "hvm",
                f"CPU hardware virtualization support [#{cpu.socket_id}: {cpu.model_name}]",
                socket_id=cpu.socket_id,
            ))

            logger.debug(f"Checking CPU in socket {cpu.socket_id} for IOMMU support")
            if not self._collector.iommu_state().present:
                self._emit(CheckResult(
                    CheckKind.FAIL,
                    "iommu",
                    "CPU IOMMU support [no IOMMU devices detected]",
                    socket_id=cpu.socket_id,
                ))
                self._diagnose(cpu, cmdline)
                return SocketVerdict.NO_IOMMU

            self._emit(CheckResult(
                CheckKind.PASS,
                "iommu",
                f"CPU IOMMU support [#{cpu.socket_id}: {cpu.model_name}]",
                socket_id=cpu.socket_id,
            ))
            return SocketVerdict.READY

    def _diagnose(self, cpu: CpuFacts, cmdline: str) -> None:
        logger.debug(f"IOMMU parameters on command line: {enabled_parameters(cmdline)}")
        try:
            diagnosis = self._advisor.suggest(cpu.hvm_flag, cmdline)
        except UnsupportedPath as e:
            self._emit(CheckResult.from_error("iommu", e, socket_id=cpu.socket_id))
            return

        if diagnosis is not None:
            self._emit(CheckResult(
                CheckKind.ISSUE,
                "iommu",
                diagnosis.summary,
                socket_id=cpu.socket_id,
                detail=diagnosis.excerpt,
                remediation=diagnosis.remediation,
            ))

    def run(self, facts: HostFacts, cmdline: str) -> CheckOutcome:
        """
        Run every check in order.

        Args:
            facts: Host facts snapshot
            cmdline: Raw kernel command line

        Returns:
            CheckOutcome in state DONE (ready on the first capable socket)
            or ABORTED_FATAL carrying the single fatal result.
        """
        self._state = CheckerState.INIT
        self._results = []

        self._emit(self.check_kernel(facts.kernel))
        self._state = CheckerState.KERNEL_CHECKED

        sysfs = self._emit(self.check_sysfs(facts))
        if sysfs.is_fatal:
            return self._finish(fatal=sysfs)
        self._state = CheckerState.SYSFS_CHECKED

        if not facts.cpus:
            return self._finish(fatal=self._emit(CheckResult.from_error(
                "hvm",
                CollectionError(str(self._collector.paths.cpuinfo), "no CPU records found"),
            )))

        self._state = CheckerState.PER_SOCKET_LOOP
        verdict = None
        for cpu in facts.cpus:
            verdict = self.check_socket(cpu, cmdline)
            if verdict is SocketVerdict.READY:
                return self._finish(ready_socket=cpu.socket_id)

        check, message, remediation = TERMINAL_FAILURES[verdict]
        fatal = CheckResult.from_error(
            check,
            EnvironmentFatal(message, remediation=remediation),
            socket_id=facts.cpus[-1].socket_id,
        )
        return self._finish(fatal=self._emit(fatal))

    def _finish(
        self,
        ready_socket: Optional[int] = None,
        fatal: Optional[CheckResult] = None,
    ) -> CheckOutcome:
        self._state = CheckerState.ABORTED_FATAL if fatal else CheckerState.DONE
        if fatal:
            logger.info(f"Requirement checks aborted: {fatal.message}")
        else:
            logger.info(f"Host is ready for passthrough (socket {ready_socket})")

        return CheckOutcome(
            state=self._state,
            ready_socket=ready_socket,
            fatal=fatal,
            results=list(self._results),
        )
