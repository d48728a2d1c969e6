#!/usr/bin/env python3
"""
vfio-preflight Hardware Detection - Host Facts Module

Reads the raw platform facts the requirement checks are based on:
- Running kernel version
- Mounted filesystems (/proc/mounts)
- Per-socket CPU virtualization flags (VT-x / AMD-V)
- IOMMU sysfs presence

Nothing here makes a judgment; every read goes to the pseudo-filesystem
again, so two calls may observe different host state.
"""

import logging
import os
import re
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import List, Optional, Set, Tuple, Union

from common.exceptions import CollectionError

logger = logging.getLogger(__name__)

KERNEL_VERSION_RE = re.compile(r"^(\d+)\.(\d+)")


class HvmFlag(Enum):
    """Hardware virtualization extension reported by a CPU."""

    NONE = "none"
    VMX = "vmx"   # Intel VT-x
    SVM = "svm"   # AMD-V

    @property
    def vendor(self) -> str:
        return {HvmFlag.VMX: "Intel", HvmFlag.SVM: "AMD"}.get(self, "Unknown")

    @property
    def iommu_param(self) -> Optional[str]:
        """Kernel parameter that enables the vendor's IOMMU driver."""
        return {HvmFlag.VMX: "intel_iommu", HvmFlag.SVM: "amd_iommu"}.get(self)

    @classmethod
    def from_flags(cls, flags: List[str]) -> "HvmFlag":
        if "vmx" in flags:
            return cls.VMX
        if "svm" in flags:
            return cls.SVM
        return cls.NONE


@dataclass(frozen=True)
class KernelVersionInfo:
    """Parsed running kernel release."""

    major: int
    minor: int
    full: str

    def as_tuple(self) -> Tuple[int, int]:
        return (self.major, self.minor)


@dataclass(frozen=True)
class MountEntry:
    """A single /proc/mounts line."""

    device: str
    mountpoint: str
    fstype: str
    options: str


@dataclass(frozen=True)
class CpuFacts:
    """Virtualization facts for one physical CPU socket."""

    socket_id: int
    model_name: str
    hvm_flag: HvmFlag

    @property
    def has_virtualization(self) -> bool:
        return self.hvm_flag is not HvmFlag.NONE


@dataclass(frozen=True)
class IommuState:
    """Whether the kernel registered any IOMMU devices."""

    present: bool


@dataclass(frozen=True)
class HostFacts:
    """Snapshot of everything the checker needs apart from the IOMMU probe."""

    kernel: KernelVersionInfo
    mounts: Set[MountEntry]
    cpus: List[CpuFacts]
    sys_readable: bool
    iommu_class_is_dir: bool


@dataclass(frozen=True)
class HostPaths:
    """Pseudo-file locations read by the collector."""

    cmdline: Path = Path("/proc/cmdline")
    mounts: Path = Path("/proc/mounts")
    cpuinfo: Path = Path("/proc/cpuinfo")
    osrelease: Path = Path("/proc/sys/kernel/osrelease")
    sys: Path = Path("/sys")
    iommu_class: Path = Path("/sys/class/iommu")

    @classmethod
    def from_root(cls, root: Union[str, Path]) -> "HostPaths":
        """Relocate every default path under an alternate filesystem root."""
        root = Path(root)
        default = cls()
        return cls(**{
            f.name: root / getattr(default, f.name).relative_to("/")
            for f in fields(cls)
        })


class HostFactsCollector:
    """Collects kernel, mount, CPU and IOMMU facts from the running host."""

    def __init__(self, paths: Optional[HostPaths] = None):
        self.paths = paths or HostPaths()

    def _read(self, path: Path) -> str:
        try:
            return path.read_text()
        except OSError as e:
            raise CollectionError(str(path), e.strerror or str(e), cause=e) from e

    def read_cmdline(self) -> str:
        """Return the raw kernel command line."""
        return self._read(self.paths.cmdline).strip()

    def collect_kernel_version(self) -> KernelVersionInfo:
        """Parse the running kernel release, e.g. ``6.1.0-18-amd64``."""
        release = self._read(self.paths.osrelease).strip()

        match = KERNEL_VERSION_RE.match(release)
        if not match:
            raise CollectionError(
                str(self.paths.osrelease),
                f"unrecognized kernel release string '{release}'",
            )

        return KernelVersionInfo(
            major=int(match.group(1)),
            minor=int(match.group(2)),
            full=release,
        )

    def collect_mounts(self) -> Set[MountEntry]:
        """Parse /proc/mounts into a set of entries."""
        mounts = set()

        for line in self._read(self.paths.mounts).splitlines():
            parts = line.split()
            if len(parts) < 4:
                if parts:
                    logger.debug(f"Skipping malformed mount line: {line!r}")
                continue
            mounts.add(MountEntry(
                device=parts[0],
                mountpoint=parts[1],
                fstype=parts[2],
                options=parts[3],
            ))

        return mounts

    def collect_cpu_facts(self) -> List[CpuFacts]:
        """
        Parse /proc/cpuinfo into one CpuFacts per physical socket.

        Logical processors are grouped by their ``physical id`` field; the
        first record seen for a socket decides its model name and flags.
        Socket ids follow the order sockets first appear in the file.
        """
        sockets = {}

        for block in re.split(r"\n\s*\n", self._read(self.paths.cpuinfo)):
            record = {}
            for line in block.splitlines():
                if ":" in line:
                    key, value = line.split(":", 1)
                    record[key.strip()] = value.strip()

            if "processor" not in record:
                continue

            physical_id = record.get("physical id", "0")
            if physical_id in sockets:
                continue

            sockets[physical_id] = CpuFacts(
                socket_id=len(sockets),
                model_name=record.get("model name", "Unknown CPU"),
                hvm_flag=HvmFlag.from_flags(record.get("flags", "").split()),
            )

        return list(sockets.values())

    def iommu_directory_has_entries(self) -> bool:
        """Check whether /sys/class/iommu exists and lists at least one device."""
        try:
            return any(True for _ in self.paths.iommu_class.iterdir())
        except OSError as e:
            logger.debug(f"Cannot list {self.paths.iommu_class}: {e}")
            return False

    def iommu_state(self) -> IommuState:
        return IommuState(present=self.iommu_directory_has_entries())

    def sys_readable(self) -> bool:
        return os.access(self.paths.sys, os.R_OK)

    def iommu_class_is_dir(self) -> bool:
        return self.paths.iommu_class.is_dir()

    def collect(self) -> HostFacts:
        """
        Collect a full snapshot of host facts.

        Raises:
            CollectionError: If a pseudo-file cannot be read or parsed, or
                no CPU records were found.
        """
        cpus = self.collect_cpu_facts()
        if not cpus:
            raise CollectionError(str(self.paths.cpuinfo), "no CPU records found")

        facts = HostFacts(
            kernel=self.collect_kernel_version(),
            mounts=self.collect_mounts(),
            cpus=cpus,
            sys_readable=self.sys_readable(),
            iommu_class_is_dir=self.iommu_class_is_dir(),
        )
        logger.debug(
            f"Collected host facts: Linux {facts.kernel.full}, "
            f"{len(facts.cpus)} socket(s)"
        )
        return facts
