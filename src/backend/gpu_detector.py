"""
GPU Detection
Enumerates display-class PCI devices (VGA and 3D controllers) via lspci
"""

import re
import subprocess
from pathlib import Path
from typing import List, Dict, Optional
from dataclasses import dataclass

import config
from backend.bus_address import BusAddress, parse_kernel_form, strip_domain
from backend.errors import InvalidFormat
from utils.logger import logger


# 0000:01:00.0 VGA compatible controller: NVIDIA Corporation ...
LSPCI_LINE_RE = re.compile(r'^\s*((?:[0-9a-f]{4}:)?[0-9a-f]{2}:[0-9a-f]{2}\.[0-9a-f])\s+(.*)$')
KERNEL_DRIVER_RE = re.compile(r'^\s*Kernel driver in use:\s*(.+)$')


@dataclass(frozen=True)
class DeviceRecord:
    """A display device seen during one enumeration"""
    bus_address: BusAddress
    display_name: str


DeviceCatalog = Dict[BusAddress, DeviceRecord]


def parse_device_line(line: str) -> Optional[DeviceRecord]:
    """
    Parse a single lspci output line
    Format: 0000:01:00.0 VGA compatible controller: NVIDIA Corporation ...
    """
    match = LSPCI_LINE_RE.match(line)
    if not match:
        return None

    try:
        address = parse_kernel_form(strip_domain(match.group(1)))
    except InvalidFormat as e:
        logger.debug(f"Skipping lspci line {line!r}: {e}")
        return None

    return DeviceRecord(bus_address=address, display_name=match.group(2).lstrip())


class GPUDetector:
    """Queries lspci and sysfs for display devices"""

    def __init__(self, sysfs_root: Path = config.SYSFS_ROOT, timeout: int = 10):
        self.sysfs_root = Path(sysfs_root)
        self.timeout = timeout

    def _lspci(self, *args: str) -> str:
        try:
            result = subprocess.run(
                ['lspci', *args],
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout
            )
            return result.stdout
        except subprocess.CalledProcessError as e:
            logger.error(f"lspci failed: {e}")
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.error(f"Could not run lspci: {e}")
        return ""

    def list_raw_display_devices(self) -> List[str]:
        """Raw lspci lines for every VGA and 3D controller"""
        lines = []
        for class_code in config.DISPLAY_CLASS_CODES:
            output = self._lspci('-D', '-d', f'::{class_code}')
            lines.extend(line for line in output.splitlines() if line.strip())
        return lines

    def list_display_devices(self) -> DeviceCatalog:
        """
        Build a fresh catalog of display devices

        Lines that fail to parse are skipped; a partial catalog is still useful.
        """
        catalog: DeviceCatalog = {}
        for line in self.list_raw_display_devices():
            record = parse_device_line(line)
            if record is None:
                logger.debug(f"Ignoring unparseable lspci line: {line!r}")
                continue
            catalog[record.bus_address] = record

        logger.debug(f"Enumerated {len(catalog)} display device(s)")
        return catalog

    def driver_in_use(self, address: BusAddress) -> Optional[str]:
        """Get current driver for a PCI device"""
        for device_dir in self.sysfs_root.glob(f'bus/pci/devices/*:{address.to_kernel_form()}'):
            driver_path = device_dir / 'driver'
            try:
                if driver_path.is_symlink():
                    return driver_path.resolve().name
            except OSError as e:
                logger.debug(f"Could not get driver for {address}: {e}")
        return None

    def drivers_reported(self, driver: str) -> bool:
        """
        Check whether the driver is still bound to any display device

        Only "Kernel driver in use" counts; "Kernel modules" lists candidates.
        """
        for class_code in config.DISPLAY_CLASS_CODES:
            output = self._lspci('-k', '-d', f'::{class_code}')
            for line in output.splitlines():
                match = KERNEL_DRIVER_RE.match(line)
                if match and match.group(1).strip() == driver:
                    return True
        return False
