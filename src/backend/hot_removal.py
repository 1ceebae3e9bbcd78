"""
eGPU hot removal

Stops the display manager, unloads the eGPU driver, removes the device from
the PCI bus and brings the display manager back. The display manager is
restarted on every path out of the sequence, including errors.
"""

import os
import signal
import subprocess
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence

import config
from backend.driver_manager import DriverManager
from backend.errors import DeviceNotPresent
from backend.gpu_detector import GPUDetector
from backend.presence import await_presence
from backend.service_manager import ServiceManager
from backend.xorg_config import AdapterConfig
from utils.logger import logger


INTERRUPTING_SIGNALS = (signal.SIGHUP, signal.SIGTERM, signal.SIGINT)


class RemovalFailure(Enum):
    DRIVER_BUSY = "driver busy"
    DEVICE_NODE_MISSING = "device node missing"


@dataclass(frozen=True)
class RemovalOutcome:
    succeeded: bool
    failure_reason: Optional[RemovalFailure] = None


@contextmanager
def deferred_signals(signals: Sequence[signal.Signals] = INTERRUPTING_SIGNALS) -> Iterator[None]:
    """Hold hangup/termination signals until the block has finished"""
    previous = signal.pthread_sigmask(signal.SIG_BLOCK, signals)
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)


def spawn_detached_removal(command: Optional[List[str]] = None) -> int:
    """
    Run the removal worker outside the caller's session

    The display manager may own the terminal this command was started from,
    so the worker gets its own session and survives it going away.

    Returns:
        PID of the worker
    """
    if command is None:
        command = [sys.executable, os.path.abspath(sys.argv[0]), 'remove', '--worker']

    process = subprocess.Popen(
        command,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )
    logger.info(f"Removal running in background (pid {process.pid}), see {config.LOG_FILE}")
    return process.pid


class HotRemovalOrchestrator:
    """Coordinates display manager, driver and sysfs for eGPU removal"""

    def __init__(self, services: Optional[ServiceManager] = None, drivers: Optional[DriverManager] = None,
                 detector: Optional[GPUDetector] = None,
                 display_manager: str = config.DISPLAY_MANAGER_SERVICE,
                 poll_interval: float = config.DISPLAY_MANAGER_POLL_INTERVAL,
                 presence_attempts: int = config.PRESENCE_MAX_ATTEMPTS,
                 presence_interval: float = config.PRESENCE_INTERVAL):
        self.services = services or ServiceManager()
        self.drivers = drivers or DriverManager()
        self.detector = detector or GPUDetector()
        self.display_manager = display_manager
        self.poll_interval = poll_interval
        self.presence_attempts = presence_attempts
        self.presence_interval = presence_interval

    @contextmanager
    def display_manager_stopped(self) -> Iterator[None]:
        """Stop the display manager and wait for it; always start it again"""
        try:
            self.services.stop(self.display_manager)
            self.services.wait_until_inactive(self.display_manager, interval=self.poll_interval)
            yield
        finally:
            self.services.start(self.display_manager)

    def run(self, adapter: AdapterConfig) -> RemovalOutcome:
        """
        Remove the eGPU described by the adapter configuration

        Raises:
            DeviceNotPresent: if the eGPU is not on the bus; nothing is touched
        """
        address = adapter.bus_address
        presence = await_presence(
            address,
            self.detector.list_raw_display_devices,
            max_attempts=self.presence_attempts,
            interval=self.presence_interval,
        )
        if not presence:
            raise DeviceNotPresent(f"eGPU {address} is not connected")

        logger.info(f"Removing eGPU {address} (driver {adapter.driver})")
        with self.display_manager_stopped():
            outcome = self._detach(adapter)

        if outcome.succeeded:
            logger.info("eGPU removed, it is now safe to unplug")
        else:
            logger.error(f"eGPU removal failed: {outcome.failure_reason.value}")
        return outcome

    def _detach(self, adapter: AdapterConfig) -> RemovalOutcome:
        driver = adapter.driver

        busy = self.drivers.busy_modules(driver)
        if busy:
            names = ", ".join(m.name for m in busy)
            logger.error(f"Driver {driver} is still in use ({names}), close applications using the eGPU")
            self._log_gpu_users()
            return RemovalOutcome(False, RemovalFailure.DRIVER_BUSY)

        if not self.drivers.unload(driver):
            logger.warning(f"Not every {driver} module could be unloaded, removing the device anyway")

        removed = self.drivers.remove_device_nodes(adapter.bus_address)

        if self.detector.drivers_reported(driver):
            logger.info(f"{driver} is still needed by another device, reloading it")
            self.drivers.load(driver)

        if removed == 0:
            logger.warning(f"No sysfs remove hook found for {adapter.bus_address}")
            return RemovalOutcome(False, RemovalFailure.DEVICE_NODE_MISSING)
        return RemovalOutcome(True)

    def _log_gpu_users(self) -> None:
        for proc in self.drivers.processes_using_gpu():
            logger.error(f"  in use by pid {proc.info['pid']} ({proc.info['name']})")
