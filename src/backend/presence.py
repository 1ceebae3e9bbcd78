"""
Hot-plug presence polling

At boot the eGPU can enumerate a few hundred milliseconds after the internal
bus scan, so a single lspci call is not enough to decide it is absent.
"""

import re
import time
from dataclasses import dataclass
from typing import Callable, List, Union

import config
from backend.bus_address import BusAddress
from utils.logger import logger


@dataclass(frozen=True)
class Present:
    """The device was observed on the bus"""
    address: BusAddress

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Absent:
    """The device never appeared within the retry budget"""
    address: BusAddress

    def __bool__(self) -> bool:
        return False


PresenceResult = Union[Present, Absent]


def _address_pattern(target: BusAddress) -> re.Pattern:
    return re.compile(r'^\s*(?:[0-9a-f]{4}:)?' + re.escape(target.to_kernel_form()) + r'\b')


def count_matches(target: BusAddress, lines: List[str]) -> int:
    """Number of raw listing lines that refer to the target address"""
    pattern = _address_pattern(target)
    return sum(1 for line in lines if pattern.match(line))


def await_presence(
    target: BusAddress,
    list_raw: Callable[[], List[str]],
    max_attempts: int = config.PRESENCE_MAX_ATTEMPTS,
    interval: float = config.PRESENCE_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> PresenceResult:
    """
    Poll the device listing until the target shows up

    Args:
        target: Bus address to look for
        list_raw: Returns the raw display-device listing, one line per device
        max_attempts: Number of listings to take before giving up
        interval: Fixed delay between attempts, in seconds
        sleep: Delay function

    Returns:
        Present on the first attempt with exactly one matching line,
        Absent once every attempt has failed
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        matches = count_matches(target, list_raw())
        if matches == 1:
            logger.debug(f"{target} present after {attempt} attempt(s)")
            return Present(target)

        logger.debug(f"{target} not found (attempt {attempt}/{max_attempts}, {matches} match(es))")
        if attempt < max_attempts:
            sleep(interval)

    logger.info(f"{target} not detected after {max_attempts} attempt(s)")
    return Absent(target)
