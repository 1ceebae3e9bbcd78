"""
Exception hierarchy for eGPU Switcher
"""

from typing import Optional


class EGPUSwitcherError(Exception):
    """Base exception for all switcher errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class InvalidFormat(EGPUSwitcherError):
    """Malformed or out-of-range bus address text."""

    def __init__(self, message: str):
        super().__init__(message, code="invalid-format")


class DeviceNotPresent(EGPUSwitcherError):
    """The configured external GPU is not on the PCI bus."""

    def __init__(self, message: str):
        super().__init__(message, code="device-not-present")


class ConfigurationMissing(EGPUSwitcherError):
    """A required Xorg configuration artifact does not exist."""

    def __init__(self, message: str):
        super().__init__(
            f"{message}. Run 'egpu-switcher setup' first.",
            code="configuration-missing",
        )


class ServiceError(EGPUSwitcherError):
    """systemctl could not be run or refused an operation."""

    def __init__(self, message: str):
        super().__init__(message, code="service-error")
