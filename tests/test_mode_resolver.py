"""Unit tests for mode resolution and connector scanning."""

import pytest

from backend.errors import ConfigurationMissing
from backend.mode_resolver import (
    Mode,
    OutputConnectivity,
    SwitchDecision,
    SwitchReason,
    resolve_mode,
    scan_output_connectivity,
)
from conftest import EGPU_ADDRESS, make_sysfs_device


ALL_DISCONNECTED = OutputConnectivity(num_outputs=2, num_disconnected=2)
ONE_CONNECTED = OutputConnectivity(num_outputs=2, num_disconnected=1)


class TestAutoMode:
    """AUTO always resolves to a concrete mode."""

    def test_present_resolves_external(self):
        decision = resolve_mode(Mode.AUTO, hardware_present=True, driver="nvidia")
        assert decision == SwitchDecision(Mode.EXTERNAL, SwitchReason.AUTO_DETECTED_PRESENT)

    def test_absent_resolves_internal(self):
        decision = resolve_mode(Mode.AUTO, hardware_present=False, driver="nvidia")
        assert decision == SwitchDecision(Mode.INTERNAL, SwitchReason.AUTO_DETECTED_ABSENT)

    def test_auto_then_output_fallback(self):
        decision = resolve_mode(Mode.AUTO, True, "amdgpu", ALL_DISCONNECTED)
        assert decision == SwitchDecision(Mode.INTERNAL, SwitchReason.NO_USABLE_OUTPUT_FALLBACK)

    def test_decision_cannot_be_auto(self):
        with pytest.raises(ValueError):
            SwitchDecision(Mode.AUTO, SwitchReason.USER_REQUESTED)


class TestOutputFallback:
    """Open-source drivers with no connected output fall back to internal."""

    def test_all_disconnected_downgrades(self):
        decision = resolve_mode(Mode.EXTERNAL, True, "amdgpu", ALL_DISCONNECTED)
        assert decision == SwitchDecision(Mode.INTERNAL, SwitchReason.NO_USABLE_OUTPUT_FALLBACK)

    def test_override_keeps_external(self):
        decision = resolve_mode(Mode.EXTERNAL, True, "amdgpu", ALL_DISCONNECTED, override=True)
        assert decision == SwitchDecision(Mode.EXTERNAL, SwitchReason.OVERRIDE_FORCED_EXTERNAL)

    def test_proprietary_driver_skips_check(self):
        decision = resolve_mode(Mode.EXTERNAL, True, "nvidia", ALL_DISCONNECTED)
        assert decision == SwitchDecision(Mode.EXTERNAL, SwitchReason.USER_REQUESTED)

    def test_connected_output_keeps_external(self):
        decision = resolve_mode(Mode.EXTERNAL, True, "nouveau", ONE_CONNECTED)
        assert decision == SwitchDecision(Mode.EXTERNAL, SwitchReason.USER_REQUESTED)

    def test_no_outputs_keeps_external(self):
        decision = resolve_mode(Mode.EXTERNAL, True, "amdgpu", OutputConnectivity(0, 0))
        assert decision.final_mode is Mode.EXTERNAL

    def test_internal_request_stands(self):
        decision = resolve_mode(Mode.INTERNAL, True, "amdgpu", ALL_DISCONNECTED)
        assert decision == SwitchDecision(Mode.INTERNAL, SwitchReason.USER_REQUESTED)


class TestPreconditions:
    """Configuration must exist before any rule runs."""

    def test_no_configuration_at_all(self):
        with pytest.raises(ConfigurationMissing):
            resolve_mode(Mode.AUTO, True, "nvidia", external_config_exists=False, internal_config_exists=False)

    def test_one_configuration_is_enough(self):
        decision = resolve_mode(Mode.AUTO, False, None, internal_config_exists=True, external_config_exists=False)
        assert decision.final_mode is Mode.INTERNAL


class TestModeParse:
    """CLI spellings."""

    @pytest.mark.parametrize("text,mode", [("auto", Mode.AUTO), ("egpu", Mode.EXTERNAL),
                                           ("external", Mode.EXTERNAL), ("INTERNAL", Mode.INTERNAL)])
    def test_known(self, text, mode):
        assert Mode.parse(text) is mode

    def test_unknown(self):
        with pytest.raises(ValueError):
            Mode.parse("hybrid")


class TestScanOutputConnectivity:
    """Reading connector status files from sysfs."""

    def test_counts_connectors(self, tmp_path):
        make_sysfs_device(tmp_path, "0000:05:00.0", connectors={
            "card1-HDMI-A-1": "disconnected",
            "card1-DP-1": "connected",
            "card1-DP-2": "disconnected",
        })
        assert scan_output_connectivity(EGPU_ADDRESS, tmp_path) == OutputConnectivity(3, 2)

    def test_other_devices_ignored(self, tmp_path):
        make_sysfs_device(tmp_path, "0000:05:00.0", connectors={"card1-DP-1": "disconnected"})
        make_sysfs_device(tmp_path, "0000:00:02.0", connectors={"card0-eDP-1": "connected"})
        connectivity = scan_output_connectivity(EGPU_ADDRESS, tmp_path)
        assert connectivity == OutputConnectivity(1, 1)
        assert connectivity.all_disconnected

    def test_missing_device(self, tmp_path):
        connectivity = scan_output_connectivity(EGPU_ADDRESS, tmp_path)
        assert connectivity == OutputConnectivity(0, 0)
        assert not connectivity.all_disconnected
