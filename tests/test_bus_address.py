"""Unit tests for the PCI bus address codec."""

import pytest

from backend.bus_address import BusAddress, parse_decimal_triplet, parse_kernel_form, strip_domain
from backend.errors import InvalidFormat


class TestKernelForm:
    """Parsing and rendering XX:YY.Z addresses."""

    @pytest.mark.parametrize("text", ["01:00.0", "00:02.0", "3c:1f.7", "ff:00.1", "0a:0b.3"])
    def test_round_trip_keeps_padding(self, text):
        assert parse_kernel_form(text).to_kernel_form() == text

    def test_parse_fields_are_hexadecimal(self):
        assert parse_kernel_form("3c:1f.7") == BusAddress(0x3c, 0x1f, 7)

    @pytest.mark.parametrize("text", ["1:00.0", "01:0.0", "01:00", "01:00.00", "0000:01:00.0", "zz:00.0", "", "01-00.0"])
    def test_malformed_text_rejected(self, text):
        with pytest.raises(InvalidFormat):
            parse_kernel_form(text)

    def test_device_above_31_rejected(self):
        with pytest.raises(InvalidFormat):
            parse_kernel_form("01:20.0")

    def test_function_above_7_rejected(self):
        with pytest.raises(InvalidFormat):
            parse_kernel_form("01:00.8")

    def test_strip_domain(self):
        assert strip_domain("0000:05:00.0") == "05:00.0"
        assert strip_domain("05:00.0") == "05:00.0"


class TestDecimalTriplet:
    """Parsing and rendering B:D:F decimal addresses."""

    @pytest.mark.parametrize("text", ["1:0:0", "0:2:0", "255:31:7", "60:0:1"])
    def test_round_trip(self, text):
        assert parse_decimal_triplet(text).to_decimal_triplet() == text

    def test_xorg_prefix_accepted(self):
        assert parse_decimal_triplet("PCI:5:0:0") == BusAddress(5, 0, 0)
        assert BusAddress(5, 0, 0).to_xorg_busid() == "PCI:5:0:0"

    @pytest.mark.parametrize("text", ["1:0", "1:0:0:0", "1:a:0", "-1:0:0", "1::0", "", "1.0.0"])
    def test_malformed_text_rejected(self, text):
        with pytest.raises(InvalidFormat):
            parse_decimal_triplet(text)

    @pytest.mark.parametrize("text", ["256:0:0", "0:32:0", "0:0:8"])
    def test_out_of_range_rejected(self, text):
        with pytest.raises(InvalidFormat):
            parse_decimal_triplet(text)


class TestCrossForm:
    """Both notations denote the same slot."""

    def test_kernel_to_decimal(self):
        assert parse_kernel_form("01:00.0").to_decimal_triplet() == "1:0:0"
        assert parse_kernel_form("3c:00.0").to_decimal_triplet() == "60:0:0"

    def test_decimal_to_kernel(self):
        assert parse_decimal_triplet("1:0:0").to_kernel_form() == "01:00.0"
        assert parse_decimal_triplet("60:31:7").to_kernel_form() == "3c:1f.7"

    def test_addresses_are_hashable(self):
        catalog = {parse_kernel_form("01:00.0"): "egpu"}
        assert catalog[parse_decimal_triplet("1:0:0")] == "egpu"

    def test_negative_field_rejected(self):
        with pytest.raises(InvalidFormat):
            BusAddress(-1, 0, 0)
