"""
Driver Manager - kernel module and sysfs handling for eGPU removal
"""

import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List

import psutil

import config
from backend.bus_address import BusAddress
from utils.logger import logger


@dataclass(frozen=True)
class KernelModule:
    """One line of /proc/modules"""
    name: str
    size: int
    refcount: int
    holders: List[str] = field(default_factory=list)


def parse_proc_modules(text: str) -> Dict[str, KernelModule]:
    """
    Parse /proc/modules content
    Format: nvidia_drm 73728 4 nvidia_modeset, Live 0xffffffffc0a00000
    """
    modules = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 4:
            continue
        try:
            size = int(parts[1])
            refcount = int(parts[2]) if parts[2] != '-' else 0
        except ValueError:
            logger.debug(f"Skipping malformed module line: {line!r}")
            continue
        holders = [h for h in parts[3].split(',') if h and h != '-']
        modules[parts[0]] = KernelModule(parts[0], size, refcount, holders)
    return modules


class DriverManager:
    """Loads, unloads and inspects the eGPU's kernel driver"""

    def __init__(self, proc_modules: Path = config.PROC_MODULES, sysfs_root: Path = config.SYSFS_ROOT,
                 sleep: Callable[[float], None] = time.sleep):
        self.proc_modules = Path(proc_modules)
        self.sysfs_root = Path(sysfs_root)
        self._sleep = sleep

    @staticmethod
    def modules_for(driver: str) -> List[str]:
        """Modules to unload for a driver, dependents before the base module"""
        if driver == config.PROPRIETARY_DRIVER:
            return list(config.PROPRIETARY_MODULES)
        return [driver]

    @staticmethod
    def reload_modules_for(driver: str) -> List[str]:
        if driver == config.PROPRIETARY_DRIVER:
            return list(config.PROPRIETARY_RELOAD_MODULES)
        return [driver]

    def loaded_modules(self) -> Dict[str, KernelModule]:
        try:
            return parse_proc_modules(self.proc_modules.read_text())
        except OSError as e:
            logger.error(f"Could not read {self.proc_modules}: {e}")
            return {}

    def busy_modules(self, driver: str) -> List[KernelModule]:
        """
        Modules of the driver that are still in use

        A module's reference count includes holders that are unloaded along
        with it; only references beyond those count as users.
        """
        implicated = set(self.modules_for(driver))
        busy = []
        for name, module in self.loaded_modules().items():
            if name not in implicated:
                continue
            internal = len([h for h in module.holders if h in implicated])
            if module.refcount > internal:
                logger.debug(f"{name} has {module.refcount - internal} active user(s)")
                busy.append(module)
        return busy

    def _modprobe(self, *args: str) -> bool:
        try:
            result = subprocess.run(
                ['modprobe', *args],
                capture_output=True,
                text=True,
                timeout=10
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Timeout running modprobe {' '.join(args)}")
            return False
        except FileNotFoundError as e:
            logger.error(f"Could not run modprobe: {e}")
            return False

        if result.returncode != 0:
            logger.warning(f"modprobe {' '.join(args)} failed: {result.stderr.strip()}")
            return False
        return True

    def unload(self, driver: str) -> bool:
        """Remove driver modules in reverse dependency order"""
        loaded = self.loaded_modules()
        ok = True
        for module in self.modules_for(driver):
            if module not in loaded:
                logger.debug(f"{module} not loaded, skipping")
                continue
            if self._modprobe('-r', module):
                logger.info(f"Removed {module}")
            else:
                ok = False
        return ok

    def load(self, driver: str, settle: float = config.DRIVER_SETTLE_SECONDS) -> None:
        """Reload driver modules; a module that cannot be loaded is skipped"""
        logger.info(f"Loading {driver} driver...")
        for module in self.reload_modules_for(driver):
            if self._modprobe(module):
                logger.info(f"Loaded {module}")
        self._sleep(settle)  # Give modules time to settle

    def removal_files(self, address: BusAddress) -> List[Path]:
        """sysfs remove hooks for every function on the device's bus/slot"""
        pattern = f'bus/pci/devices/*:{address.bus:02x}:{address.device:02x}.*/remove'
        return sorted(self.sysfs_root.glob(pattern))

    def remove_device_nodes(self, address: BusAddress) -> int:
        """
        Trigger PCI removal for the device and its sibling functions

        Returns:
            Number of remove hooks written
        """
        written = 0
        for remove_path in self.removal_files(address):
            try:
                remove_path.write_text("1")
            except FileNotFoundError:
                logger.debug(f"{remove_path} vanished, skipping")
                continue
            logger.info(f"Removed PCI device {remove_path.parent.name}")
            written += 1
        return written

    def processes_using_gpu(self) -> List[psutil.Process]:
        """Processes that have a GPU device node mapped"""
        users = []
        for proc in psutil.process_iter(['pid', 'name']):
            try:
                maps = proc.memory_maps(grouped=True)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            if any(m.path.startswith(config.GPU_DEVICE_NODE_PREFIXES) for m in maps):
                users.append(proc)
        return users
