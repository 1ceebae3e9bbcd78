"""
Mode resolution
Decides which GPU Xorg should use from the requested mode, eGPU presence
and what the eGPU's driver reports about its outputs
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import config
from backend.bus_address import BusAddress
from backend.errors import ConfigurationMissing
from utils.logger import logger


class Mode(Enum):
    """Requested or resolved GPU mode"""
    AUTO = "auto"
    EXTERNAL = "egpu"
    INTERNAL = "internal"

    @classmethod
    def parse(cls, text: str) -> "Mode":
        value = text.strip().lower()
        if value == "external":
            return cls.EXTERNAL
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown mode {text!r} (expected auto, egpu or internal)") from None


class SwitchReason(Enum):
    USER_REQUESTED = "user requested"
    AUTO_DETECTED_PRESENT = "eGPU detected"
    AUTO_DETECTED_ABSENT = "eGPU not detected"
    OVERRIDE_FORCED_EXTERNAL = "override forced eGPU"
    NO_USABLE_OUTPUT_FALLBACK = "no connected eGPU output"


@dataclass(frozen=True)
class SwitchDecision:
    """Final mode plus why it was chosen"""
    final_mode: Mode
    reason: SwitchReason

    def __post_init__(self):
        if self.final_mode is Mode.AUTO:
            raise ValueError("A switch decision cannot be AUTO")


@dataclass(frozen=True)
class OutputConnectivity:
    """Connector status counts under the eGPU's DRM card"""
    num_outputs: int = 0
    num_disconnected: int = 0

    @property
    def all_disconnected(self) -> bool:
        return self.num_outputs > 0 and self.num_disconnected == self.num_outputs


def scan_output_connectivity(address: BusAddress, sysfs_root: Path = config.SYSFS_ROOT) -> OutputConnectivity:
    """
    Count connector status files under the device's DRM card directories

    Connector directories are usually named card0-HDMI-A-1, but any
    directory with a status file below a card* directory is counted.
    """
    sysfs_root = Path(sysfs_root)
    status_files = set()
    for device_dir in sysfs_root.glob(f'bus/pci/devices/*:{address.to_kernel_form()}'):
        for card_dir in device_dir.glob('drm/card*'):
            status_files.update(card_dir.glob('*/status'))

    outputs = 0
    disconnected = 0
    for status_path in sorted(status_files):
        try:
            status = status_path.read_text().strip()
        except OSError as e:
            logger.debug(f"Could not read {status_path}: {e}")
            continue
        outputs += 1
        if status == "disconnected":
            disconnected += 1

    logger.debug(f"{address}: {outputs} output(s), {disconnected} disconnected")
    return OutputConnectivity(num_outputs=outputs, num_disconnected=disconnected)


def resolve_mode(
    requested: Mode,
    hardware_present: bool,
    driver: Optional[str],
    connectivity: Optional[OutputConnectivity] = None,
    override: bool = False,
    external_config_exists: bool = True,
    internal_config_exists: bool = True,
) -> SwitchDecision:
    """
    Resolve the requested mode into a final decision

    Args:
        requested: Mode asked for by the user or the boot service
        hardware_present: Result of the presence poll for the eGPU
        driver: Driver recorded in the eGPU configuration
        connectivity: Output counts; only consulted for open-source drivers
        override: Keep the eGPU even if none of its outputs is connected
        external_config_exists: Whether xorg.conf.egpu exists
        internal_config_exists: Whether xorg.conf.internal exists

    Raises:
        ConfigurationMissing: if neither configuration exists
    """
    if not external_config_exists and not internal_config_exists:
        raise ConfigurationMissing("Neither the eGPU nor the internal Xorg configuration exists")

    if requested is Mode.AUTO:
        if hardware_present:
            mode, reason = Mode.EXTERNAL, SwitchReason.AUTO_DETECTED_PRESENT
        else:
            mode, reason = Mode.INTERNAL, SwitchReason.AUTO_DETECTED_ABSENT
    else:
        mode, reason = requested, SwitchReason.USER_REQUESTED

    if (
        mode is Mode.EXTERNAL
        and driver != config.PROPRIETARY_DRIVER
        and connectivity is not None
        and connectivity.all_disconnected
    ):
        if override:
            logger.warning(f"All {connectivity.num_outputs} eGPU output(s) report disconnected, "
                           f"keeping eGPU because of --override")
            reason = SwitchReason.OVERRIDE_FORCED_EXTERNAL
        else:
            logger.warning(f"All {connectivity.num_outputs} eGPU output(s) report disconnected, "
                           f"falling back to internal GPU (use --override to force)")
            mode, reason = Mode.INTERNAL, SwitchReason.NO_USABLE_OUTPUT_FALLBACK

    decision = SwitchDecision(final_mode=mode, reason=reason)
    logger.debug(f"Resolved {requested.value} -> {decision.final_mode.value} ({decision.reason.value})")
    return decision
