"""
Xorg configuration artifacts
One generated file per GPU plus the xorg.conf symlink pointing at the active one
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from string import Template

import config
from backend.bus_address import BusAddress, parse_decimal_triplet
from backend.errors import ConfigurationMissing, InvalidFormat
from backend.mode_resolver import Mode, SwitchDecision
from utils.logger import logger


BUSID_RE = re.compile(r'^\s*BusID\s+"([^"]+)"', re.MULTILINE | re.IGNORECASE)
DRIVER_RE = re.compile(r'^\s*Driver\s+"([^"]+)"', re.MULTILINE | re.IGNORECASE)

XORG_TEMPLATE = Template('''\
# Generated by egpu-switcher, do not edit.
Section "Module"
    Load "modesetting"
EndSection

Section "Device"
    Identifier "$identifier"
    Driver "$driver"
    BusID "$busid"
    Option "AllowEmptyInitialConfiguration"
    Option "AllowExternalGpus" "True"
EndSection
''')


@dataclass(frozen=True)
class AdapterConfig:
    """BusID and Driver read back from a generated Xorg file"""
    bus_address: BusAddress
    driver: str
    path: Path


def parse_adapter_config(text: str, path: Path) -> AdapterConfig:
    """Extract the Device section's BusID and Driver"""
    busid = BUSID_RE.search(text)
    driver = DRIVER_RE.search(text)
    if not busid or not driver:
        raise InvalidFormat(f"{path} has no BusID/Driver lines")
    return AdapterConfig(parse_decimal_triplet(busid.group(1)), driver.group(1), Path(path))


def render(address: BusAddress, driver: str, identifier: str) -> str:
    return XORG_TEMPLATE.substitute(identifier=identifier, driver=driver, busid=address.to_xorg_busid())


class XorgConfigStore:
    """Locates, reads, writes and activates the per-GPU Xorg files"""

    FILE_NAMES = {
        Mode.EXTERNAL: config.XORG_EGPU_NAME,
        Mode.INTERNAL: config.XORG_INTERNAL_NAME,
    }

    def __init__(self, config_dir: Path = config.XORG_CONFIG_DIR, link_path: Path = config.XORG_LINK):
        self.config_dir = Path(config_dir)
        self.link_path = Path(link_path)

    def path_for(self, mode: Mode) -> Path:
        if mode not in self.FILE_NAMES:
            raise ValueError(f"No configuration file for mode {mode.value}")
        return self.config_dir / self.FILE_NAMES[mode]

    def exists(self, mode: Mode) -> bool:
        return self.path_for(mode).is_file()

    def load(self, mode: Mode) -> AdapterConfig:
        """
        Read a GPU's configuration

        Raises:
            ConfigurationMissing: if the file does not exist
            InvalidFormat: if BusID or Driver cannot be read from it
        """
        path = self.path_for(mode)
        try:
            text = path.read_text()
        except FileNotFoundError:
            raise ConfigurationMissing(f"{path} not found") from None
        return parse_adapter_config(text, path)

    def write(self, mode: Mode, address: BusAddress, driver: str) -> Path:
        path = self.path_for(mode)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        identifier = "Device0" if mode is Mode.EXTERNAL else "Device1"
        path.write_text(render(address, driver, identifier))
        path.chmod(0o644)
        logger.info(f"Wrote {path} (BusID {address.to_xorg_busid()}, driver {driver})")
        return path

    def active_mode(self):
        """Mode the symlink currently points at, or None"""
        if not self.link_path.is_symlink():
            return None
        target = Path(os.readlink(self.link_path)).name
        for mode, name in self.FILE_NAMES.items():
            if target == name:
                return mode
        return None

    def apply(self, decision: SwitchDecision) -> Path:
        """Point the xorg.conf symlink at the decided GPU's file"""
        target = self.path_for(decision.final_mode)
        if not target.is_file():
            raise ConfigurationMissing(f"{target} not found")

        if self.link_path.exists() and not self.link_path.is_symlink():
            backup = self.link_path.with_name(self.link_path.name + ".backup")
            logger.warning(f"{self.link_path} is a regular file, moving it to {backup}")
            os.replace(self.link_path, backup)

        tmp_link = self.link_path.with_name(self.link_path.name + ".tmp")
        if tmp_link.is_symlink() or tmp_link.exists():
            tmp_link.unlink()
        os.symlink(target, tmp_link)
        os.replace(tmp_link, self.link_path)

        logger.info(f"Switched to {decision.final_mode.value} ({decision.reason.value})")
        return target

    def cleanup(self, hard: bool = False) -> None:
        if self.link_path.is_symlink():
            self.link_path.unlink()
            logger.info(f"Removed {self.link_path}")
        if hard:
            for mode in self.FILE_NAMES:
                path = self.path_for(mode)
                if path.exists():
                    path.unlink()
                    logger.info(f"Removed {path}")
