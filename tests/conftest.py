"""
Pytest configuration and shared fixtures for vfio-preflight tests.

Provides a fake host filesystem and a fake libvirt module.
"""

import os
import pytest
from unittest.mock import MagicMock, patch
from pathlib import Path
from typing import List, Optional, Tuple
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


INTEL_MODEL = "Intel(R) Xeon(R) CPU E5-2680 v4 @ 2.40GHz"
AMD_MODEL = "AMD Ryzen 9 5900X 12-Core Processor"

SYSFS_MOUNTS = """sys /sys sysfs rw,nosuid,nodev,noexec,relatime 0 0
proc /proc proc rw,nosuid,nodev,noexec,relatime 0 0
/dev/nvme0n1p2 / ext4 rw,relatime 0 0
"""


def cpuinfo_text(sockets: List[Tuple[str, str]], threads_per_socket: int = 2) -> str:
    """
    Build /proc/cpuinfo content.

    Args:
        sockets: (model name, flags) per physical socket
        threads_per_socket: logical processors emitted per socket
    """
    blocks = []
    processor = 0
    for physical_id, (model, flags) in enumerate(sockets):
        for _ in range(threads_per_socket):
            blocks.append(
                f"processor\t: {processor}\n"
                f"vendor_id\t: GenuineIntel\n"
                f"model name\t: {model}\n"
                f"physical id\t: {physical_id}\n"
                f"flags\t\t: fpu vme de pse tsc msr {flags}\n"
            )
            processor += 1
    return "\n".join(blocks)


class FakeHost:
    """A fake /proc and /sys tree below a temporary root."""

    def __init__(self, root: Path):
        self.root = root
        (root / "proc/sys/kernel").mkdir(parents=True)
        (root / "sys/class/iommu").mkdir(parents=True)
        self.set_kernel("6.1.0-18-amd64")
        self.set_mounts(SYSFS_MOUNTS)
        self.set_cmdline("BOOT_IMAGE=/vmlinuz-6.1.0 root=/dev/nvme0n1p2 ro quiet")
        self.set_cpus([(INTEL_MODEL, "vmx")])

    @property
    def iommu_dir(self) -> Path:
        return self.root / "sys/class/iommu"

    def set_kernel(self, release: str) -> None:
        (self.root / "proc/sys/kernel/osrelease").write_text(release + "\n")

    def set_mounts(self, content: str) -> None:
        (self.root / "proc/mounts").write_text(content)

    def set_cmdline(self, cmdline: str) -> None:
        (self.root / "proc/cmdline").write_text(cmdline + "\n")

    def set_cpus(self, sockets: List[Tuple[str, str]]) -> None:
        (self.root / "proc/cpuinfo").write_text(cpuinfo_text(sockets))

    def add_iommu_device(self, name: str = "dmar0") -> None:
        (self.iommu_dir / name).mkdir()

    def paths(self):
        from hardware_detect.host_facts import HostPaths
        return HostPaths.from_root(self.root)

    def collector(self):
        from hardware_detect.host_facts import HostFactsCollector
        return HostFactsCollector(self.paths())


# ============ Host Fixtures ============

@pytest.fixture
def fake_host(tmp_path: Path) -> FakeHost:
    """Provide a fake host root with an Intel VT-x CPU and no IOMMU devices."""
    return FakeHost(tmp_path / "host")


@pytest.fixture
def recording_sink():
    """Provide a report sink that keeps every result."""
    from preflight.report import RecordingReportSink
    return RecordingReportSink()


# ============ Libvirt Fixtures ============

class FakeLibvirtError(Exception):
    """Stand-in for libvirt.libvirtError carrying an error code."""

    def __init__(self, message: str, code: int = 1):
        super().__init__(message)
        self._code = code

    def get_error_code(self) -> int:
        return self._code


VIR_ERR_NO_DOMAIN = 42


@pytest.fixture
def mock_libvirt():
    """Patch the libvirt module used by vm_manager with a mock."""
    from vm_manager.core import connection

    module = MagicMock()
    module.libvirtError = FakeLibvirtError
    module.VIR_ERR_NO_DOMAIN = VIR_ERR_NO_DOMAIN

    mock_conn = MagicMock()
    mock_conn.getVersion.return_value = 8000000
    mock_conn.listAllDomains.return_value = []
    module.open.return_value = mock_conn

    with patch.object(connection, "libvirt", module), \
            patch.object(connection, "LIBVIRT_AVAILABLE", True):
        yield module


def make_domain(name: str, domain_id: int = -1, xml: Optional[str] = None):
    """Mock libvirt domain."""
    domain = MagicMock()
    domain.name.return_value = name
    domain.ID.return_value = domain_id
    domain.XMLDesc.return_value = xml or f"<domain type='kvm'><name>{name}</name></domain>"
    return domain


# ============ Marker Configuration ============

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "requires_libvirt: marks tests that need libvirt running"
    )
    config.addinivalue_line(
        "markers", "hardware: tests that read the real /proc and /sys"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests based on environment."""
    skip_hw = pytest.mark.skip(reason="Hardware tests disabled in CI")
    skip_libvirt = pytest.mark.skip(reason="Requires libvirt daemon")

    for item in items:
        if "hardware" in item.keywords and (
            os.environ.get("CI") or not sys.platform.startswith("linux")
        ):
            item.add_marker(skip_hw)

        if "requires_libvirt" in item.keywords:
            try:
                import libvirt
                conn = libvirt.open("qemu:///system")
                if conn:
                    conn.close()
            except Exception:
                item.add_marker(skip_libvirt)
