"""
IOMMU failure diagnosis.

Given the vendor of a CPU whose IOMMU check failed and the kernel command
line, proposes the kernel parameter change that should fix it.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from common.exceptions import UnsupportedPath
from hardware_detect.host_facts import HvmFlag

MARK_OPEN = ">>>"
MARK_CLOSE = "<<<"


@dataclass(frozen=True)
class Diagnosis:
    """Operator-facing remediation for a failed IOMMU check."""

    vendor: str
    summary: str
    excerpt: str
    remediation: str


def find_parameter(cmdline: str, name: str) -> Optional[str]:
    """
    Return the last ``name`` or ``name=value`` token on the command line.

    The kernel honours the last occurrence of a repeated parameter.
    """
    found = None
    for token in cmdline.split():
        if token.split("=", 1)[0] == name:
            found = token
    return found


def parameter_value(token: str) -> Optional[str]:
    """Value of a ``key=value`` token, None for a bare ``key``."""
    if "=" not in token:
        return None
    return token.split("=", 1)[1]


def render_excerpt(cmdline: str, token: Optional[str] = None) -> str:
    """
    Render /proc/cmdline with the last occurrence of ``token`` marked.

    Example:
        >>> render_excerpt("ro quiet intel_iommu=off", "intel_iommu=off")
        '/proc/cmdline: ro quiet >>>intel_iommu=off<<<'
    """
    tokens = cmdline.split()
    if token is not None and token in tokens:
        index = len(tokens) - 1 - tokens[::-1].index(token)
        tokens[index] = f"{MARK_OPEN}{token}{MARK_CLOSE}"
    return "/proc/cmdline: " + " ".join(tokens)


class DiagnosisAdvisor:
    """Vendor rule table for IOMMU failures. Stateless."""

    def __init__(self):
        self._rules: Dict[HvmFlag, Callable[[str], Optional[Diagnosis]]] = {
            HvmFlag.VMX: self._diagnose_intel,
            HvmFlag.SVM: self._diagnose_amd,
        }

    def suggest(self, hvm_flag: HvmFlag, cmdline: str) -> Optional[Diagnosis]:
        """
        Propose a remediation for a CPU whose IOMMU check failed.

        Args:
            hvm_flag: Virtualization flag of the failing CPU
            cmdline: Raw kernel command line

        Returns:
            A Diagnosis, or None when the vendor has no rule.

        Raises:
            UnsupportedPath: If the vendor branch is known but cannot be
                diagnosed yet.
        """
        rule = self._rules.get(hvm_flag)
        if rule is None:
            return None
        return rule(cmdline)

    def _diagnose_intel(self, cmdline: str) -> Diagnosis:
        token = find_parameter(cmdline, HvmFlag.VMX.iommu_param)

        if token is None:
            return Diagnosis(
                vendor=HvmFlag.VMX.vendor,
                summary="Intel CPU, but the intel_iommu kernel parameter is missing",
                excerpt=render_excerpt(cmdline),
                remediation="Add intel_iommu=on to the kernel command line and reboot",
            )

        if parameter_value(token) != "on":
            return Diagnosis(
                vendor=HvmFlag.VMX.vendor,
                summary=f"Intel CPU, but the intel_iommu kernel parameter is disabled ({token})",
                excerpt=render_excerpt(cmdline, token),
                remediation=f"Replace {token} with intel_iommu=on and reboot",
            )

        return Diagnosis(
            vendor=HvmFlag.VMX.vendor,
            summary="intel_iommu=on is set but the kernel registered no IOMMU devices",
            excerpt=render_excerpt(cmdline, token),
            remediation="Enable VT-d in the firmware setup",
        )

    def _diagnose_amd(self, cmdline: str) -> Diagnosis:
        token = find_parameter(cmdline, HvmFlag.SVM.iommu_param)

        if token is None or parameter_value(token) != "on":
            return Diagnosis(
                vendor=HvmFlag.SVM.vendor,
                summary="AMD CPU, but the amd_iommu kernel parameter is not set to on",
                excerpt=render_excerpt(cmdline, token),
                remediation="Add amd_iommu=on to the kernel command line and reboot",
            )

        raise UnsupportedPath(
            "AMD CPU with amd_iommu=on but no IOMMU devices",
            "not yet diagnosable",
        )


def enabled_parameters(cmdline: str) -> List[str]:
    """IOMMU-related parameters present on the command line."""
    names = ("intel_iommu", "amd_iommu", "iommu")
    return [t for t in cmdline.split() if t.split("=", 1)[0] in names]
