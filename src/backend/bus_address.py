"""
PCI bus address codec
Converts between the kernel's hexadecimal notation (01:00.0) and the
decimal triplet Xorg expects in BusID lines (PCI:1:0:0)
"""

import re
from dataclasses import dataclass
from backend.errors import InvalidFormat


# PCI encoding limits
MAX_BUS = 0xff
MAX_DEVICE = 0x1f
MAX_FUNCTION = 0x7

KERNEL_FORM_RE = re.compile(r'^([0-9a-f]{2}):([0-9a-f]{2})\.([0-9a-f])$')
DOMAIN_PREFIX_RE = re.compile(r'^[0-9a-fA-F]{4}:(?=[0-9a-fA-F]{2}:)')
XORG_PREFIX = "PCI:"


@dataclass(frozen=True)
class BusAddress:
    """A PCI function identity: (bus, device, function)"""
    bus: int
    device: int
    function: int

    def __post_init__(self):
        for field_name, value, limit in (
            ('bus', self.bus, MAX_BUS),
            ('device', self.device, MAX_DEVICE),
            ('function', self.function, MAX_FUNCTION),
        ):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidFormat(f"PCI {field_name} must be an integer, got {value!r}")
            if not 0 <= value <= limit:
                raise InvalidFormat(f"PCI {field_name} {value} out of range 0-{limit}")

    def to_kernel_form(self) -> str:
        """Render as XX:YY.Z, zero padded (matches sysfs and lspci)"""
        return f"{self.bus:02x}:{self.device:02x}.{self.function:x}"

    def to_decimal_triplet(self) -> str:
        """Render as bus:device:function in base 10"""
        return f"{self.bus}:{self.device}:{self.function}"

    def to_xorg_busid(self) -> str:
        """Render for an Xorg BusID line, e.g. PCI:1:0:0"""
        return XORG_PREFIX + self.to_decimal_triplet()

    def __str__(self) -> str:
        return self.to_kernel_form()


def strip_domain(text: str) -> str:
    """Drop a leading PCI domain (0000:01:00.0 -> 01:00.0)"""
    return DOMAIN_PREFIX_RE.sub('', text.strip(), count=1)


def parse_kernel_form(text: str) -> BusAddress:
    """
    Parse a kernel-style bus address

    Args:
        text: Address shaped XX:YY.Z, without domain prefix

    Returns:
        BusAddress

    Raises:
        InvalidFormat: if the text does not have that exact shape or a
            field is out of range
    """
    match = KERNEL_FORM_RE.match(text.strip()) if isinstance(text, str) else None
    if not match:
        raise InvalidFormat(f"Not a kernel bus address (XX:YY.Z): {text!r}")

    bus, device, function = (int(group, 16) for group in match.groups())
    return BusAddress(bus, device, function)


def parse_decimal_triplet(text: str) -> BusAddress:
    """
    Parse a decimal triplet such as 1:0:0 (a leading PCI: is accepted)

    Raises:
        InvalidFormat: unless there are exactly three unsigned integer fields
    """
    if not isinstance(text, str):
        raise InvalidFormat(f"Not a decimal bus address: {text!r}")

    value = text.strip()
    if value.upper().startswith(XORG_PREFIX):
        value = value[len(XORG_PREFIX):]

    fields = value.split(':')
    if len(fields) != 3 or not all(f.isdigit() and f.isascii() for f in fields):
        raise InvalidFormat(f"Not a decimal bus address (B:D:F): {text!r}")

    return BusAddress(*(int(f) for f in fields))
