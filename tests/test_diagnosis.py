"""
Tests for IOMMU failure diagnosis.
"""

import pytest


class TestCmdlineHelpers:
    """Tests for command line parsing helpers."""

    def test_find_parameter_last_wins(self):
        """Test the last occurrence of a repeated parameter is used."""
        from preflight.diagnosis import find_parameter

        cmdline = "ro intel_iommu=on quiet intel_iommu=off"
        assert find_parameter(cmdline, "intel_iommu") == "intel_iommu=off"

    def test_find_parameter_ignores_prefixes(self):
        """Test similarly named parameters do not match."""
        from preflight.diagnosis import find_parameter

        assert find_parameter("ro intel_iommu_extra=1 iommu=pt", "intel_iommu") is None
        assert find_parameter("ro intel_iommu", "intel_iommu") == "intel_iommu"

    def test_render_excerpt_marks_token(self):
        """Test the offending token is delimited."""
        from preflight.diagnosis import render_excerpt

        excerpt = render_excerpt("ro quiet intel_iommu=off splash", "intel_iommu=off")
        assert excerpt == "/proc/cmdline: ro quiet >>>intel_iommu=off<<< splash"

    def test_render_excerpt_without_token(self):
        """Test the command line is quoted unchanged when nothing is marked."""
        from preflight.diagnosis import render_excerpt

        assert render_excerpt("ro quiet") == "/proc/cmdline: ro quiet"

    def test_enabled_parameters(self):
        """Test IOMMU parameters are picked out of the command line."""
        from preflight.diagnosis import enabled_parameters

        params = enabled_parameters("ro amd_iommu=on iommu=pt quiet")
        assert params == ["amd_iommu=on", "iommu=pt"]


class TestDiagnosisAdvisor:
    """Tests for DiagnosisAdvisor rules."""

    @pytest.fixture
    def advisor(self):
        from preflight.diagnosis import DiagnosisAdvisor
        return DiagnosisAdvisor()

    def test_intel_missing(self, advisor):
        """Test missing intel_iommu recommends adding it."""
        from hardware_detect.host_facts import HvmFlag

        diagnosis = advisor.suggest(HvmFlag.VMX, "BOOT_IMAGE=/vmlinuz ro quiet")

        assert diagnosis.vendor == "Intel"
        assert "intel_iommu" in diagnosis.summary
        assert "missing" in diagnosis.summary
        assert "intel_iommu=on" in diagnosis.remediation
        assert diagnosis.excerpt == "/proc/cmdline: BOOT_IMAGE=/vmlinuz ro quiet"

    @pytest.mark.parametrize("token", ["intel_iommu=off", "intel_iommu=igfx_off", "intel_iommu"])
    def test_intel_not_on(self, advisor, token):
        """Test any value other than on is quoted back."""
        from hardware_detect.host_facts import HvmFlag

        diagnosis = advisor.suggest(HvmFlag.VMX, f"ro {token} quiet")

        assert token in diagnosis.summary
        assert f">>>{token}<<<" in diagnosis.excerpt
        assert "intel_iommu=on" in diagnosis.remediation

    def test_intel_on_points_at_firmware(self, advisor):
        """Test a correct parameter with no IOMMU devices points at VT-d."""
        from hardware_detect.host_facts import HvmFlag

        diagnosis = advisor.suggest(HvmFlag.VMX, "ro intel_iommu=on")
        assert "VT-d" in diagnosis.remediation

    def test_amd_missing(self, advisor):
        """Test missing amd_iommu=on recommends adding it."""
        from hardware_detect.host_facts import HvmFlag

        diagnosis = advisor.suggest(HvmFlag.SVM, "ro quiet amd_iommu=off")

        assert diagnosis.vendor == "AMD"
        assert ">>>amd_iommu=off<<<" in diagnosis.excerpt
        assert "amd_iommu=on" in diagnosis.remediation

    def test_amd_enabled_is_unsupported(self, advisor):
        """Test amd_iommu=on without IOMMU devices is not diagnosed."""
        from common.exceptions import UnsupportedPath
        from hardware_detect.host_facts import HvmFlag

        with pytest.raises(UnsupportedPath) as exc_info:
            advisor.suggest(HvmFlag.SVM, "ro amd_iommu=on")
        assert exc_info.value.code == "UNSUPPORTED_PATH"

    def test_no_rule_without_hvm(self, advisor):
        """Test CPUs without virtualization have no IOMMU diagnosis."""
        from hardware_detect.host_facts import HvmFlag

        assert advisor.suggest(HvmFlag.NONE, "ro quiet") is None

    def test_suggest_is_pure(self, advisor):
        """Test repeated calls give equal diagnoses."""
        from hardware_detect.host_facts import HvmFlag

        cmdline = "ro intel_iommu=off"
        assert advisor.suggest(HvmFlag.VMX, cmdline) == advisor.suggest(HvmFlag.VMX, cmdline)
