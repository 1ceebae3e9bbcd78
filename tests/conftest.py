"""Pytest configuration and shared fixtures for eGPU Switcher tests."""

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from backend.bus_address import BusAddress  # noqa: E402
from backend.driver_manager import KernelModule  # noqa: E402
from backend.xorg_config import AdapterConfig  # noqa: E402


EGPU_ADDRESS = BusAddress(5, 0, 0)
INTERNAL_ADDRESS = BusAddress(0, 2, 0)

EGPU_LINE = "0000:05:00.0 VGA compatible controller: NVIDIA Corporation GA104 [GeForce RTX 3070]"
INTERNAL_LINE = "0000:00:02.0 VGA compatible controller: Intel Corporation UHD Graphics 620"


class FakeServices:
    """Records systemctl operations; the unit is active until stopped."""

    def __init__(self, inactive_after: int = 0):
        self.calls = []
        self.active = True
        self.inactive_after = inactive_after

    def stop(self, service):
        self.calls.append(("stop", service))

    def start(self, service):
        self.calls.append(("start", service))
        self.active = True

    def wait_until_inactive(self, service, interval=1.0, timeout=None):
        self.calls.append(("wait", service))
        self.active = False

    @property
    def restarted(self) -> bool:
        actions = [action for action, _ in self.calls]
        return "stop" in actions and actions[-1] == "start"


class FakeDrivers:
    """In-memory stand-in for DriverManager."""

    def __init__(self, busy=None, removed: int = 2, gpu_users=None):
        self.busy = busy or []
        self.removed = removed
        self.gpu_users = gpu_users or []
        self.calls = []

    def busy_modules(self, driver):
        self.calls.append(("busy", driver))
        return self.busy

    def unload(self, driver):
        self.calls.append(("unload", driver))
        return True

    def remove_device_nodes(self, address):
        self.calls.append(("remove", address))
        return self.removed

    def load(self, driver):
        self.calls.append(("load", driver))

    def processes_using_gpu(self):
        return self.gpu_users


class FakeDetector:
    """Serves canned lspci listings, one per call (the last one repeats)."""

    def __init__(self, listings=None, reported: bool = False, sysfs_root: Path = Path("/nonexistent")):
        self.listings = listings if listings is not None else [[EGPU_LINE, INTERNAL_LINE]]
        self.reported = reported
        self.sysfs_root = sysfs_root
        self.list_calls = 0

    def list_raw_display_devices(self):
        index = min(self.list_calls, len(self.listings) - 1)
        self.list_calls += 1
        return list(self.listings[index])

    def drivers_reported(self, driver):
        return self.reported


@pytest.fixture
def egpu_adapter(tmp_path) -> AdapterConfig:
    return AdapterConfig(EGPU_ADDRESS, "nvidia", tmp_path / "xorg.conf.egpu")


@pytest.fixture
def amd_adapter(tmp_path) -> AdapterConfig:
    return AdapterConfig(EGPU_ADDRESS, "amdgpu", tmp_path / "xorg.conf.egpu")


@pytest.fixture
def busy_module() -> KernelModule:
    return KernelModule("nvidia_drm", 73728, 3, ["nvidia_modeset"])


def make_sysfs_device(root: Path, address: str, connectors=None, remove_hook: bool = True) -> Path:
    """Create a fake /sys/bus/pci/devices/<address> tree."""
    device_dir = root / "bus" / "pci" / "devices" / address
    device_dir.mkdir(parents=True)
    if remove_hook:
        (device_dir / "remove").write_text("")
    for name, status in (connectors or {}).items():
        card = name.split("-")[0]
        connector_dir = device_dir / "drm" / card / name
        connector_dir.mkdir(parents=True)
        (connector_dir / "status").write_text(f"{status}\n")
    return device_dir
