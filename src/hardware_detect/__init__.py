"""vfio-preflight Hardware Detection Module.

This module reads the host facts passthrough readiness depends on:
- Kernel version and sysfs mount state
- Per-socket CPU virtualization support (VT-x/AMD-V)
- IOMMU device registration
"""

from .host_facts import (
    HostFactsCollector,
    HostFacts,
    HostPaths,
    HvmFlag,
    CpuFacts,
    KernelVersionInfo,
    MountEntry,
    IommuState,
)

__all__ = [
    "HostFactsCollector",
    "HostFacts",
    "HostPaths",
    "HvmFlag",
    "CpuFacts",
    "KernelVersionInfo",
    "MountEntry",
    "IommuState",
]

__version__ = "0.1.0"
