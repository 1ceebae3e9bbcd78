"""
systemd service control
"""

import subprocess
import time
from typing import Callable, Optional

import config
from backend.errors import ServiceError
from utils.logger import logger


class ServiceManager:
    """Thin wrapper around systemctl"""

    def __init__(self, timeout: int = 30, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    def _systemctl(self, action: str, service: str) -> None:
        logger.debug(f"systemctl {action} {service}")
        try:
            subprocess.run(
                ['systemctl', action, service],
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise ServiceError(f"systemctl {action} {service} failed: {stderr or e}") from e
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            raise ServiceError(f"Could not run systemctl {action} {service}: {e}") from e

    def start(self, service: str = config.DISPLAY_MANAGER_SERVICE) -> None:
        logger.info(f"Starting {service}")
        self._systemctl('start', service)

    def stop(self, service: str = config.DISPLAY_MANAGER_SERVICE) -> None:
        logger.info(f"Stopping {service}")
        self._systemctl('stop', service)

    def is_active(self, service: str = config.DISPLAY_MANAGER_SERVICE) -> bool:
        """Check if a service is active (activating/deactivating count as active)"""
        try:
            result = subprocess.run(
                ['systemctl', 'is-active', service],
                capture_output=True,
                text=True,
                timeout=5
            )
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            raise ServiceError(f"Failed to check {service} status: {e}") from e

        state = result.stdout.strip()
        logger.debug(f"{service} is {state or 'unknown'}")
        return state not in ('inactive', 'failed', 'unknown', '')

    def wait_until_inactive(self, service: str = config.DISPLAY_MANAGER_SERVICE,
                            interval: float = config.DISPLAY_MANAGER_POLL_INTERVAL,
                            timeout: Optional[float] = None) -> None:
        """
        Block until the service has fully stopped

        Args:
            service: Unit name
            interval: Seconds between status checks
            timeout: Give up after this many seconds (None waits forever)

        Raises:
            ServiceError: if the timeout expires
        """
        deadline = None if timeout is None else self._clock() + timeout
        while self.is_active(service):
            if deadline is not None and self._clock() >= deadline:
                raise ServiceError(f"{service} still active after {timeout}s")
            logger.debug(f"Waiting for {service} to stop...")
            self._sleep(interval)
        logger.info(f"{service} stopped")
