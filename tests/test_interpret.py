"""Tests for numeric views over raw register values."""

import math

import pytest

from rtu_master.interpret import (
    WordOrder,
    from_float32,
    from_long32,
    from_signed16,
    swap_bytes,
    to_ascii,
    to_binary_string,
    to_float32,
    to_float64,
    to_hex_string,
    to_long32,
    to_signed16,
    to_unsigned16,
)


def test_signed_conversion() -> None:
    assert to_signed16(0) == 0
    assert to_signed16(32767) == 32767
    assert to_signed16(32768) == -32768
    assert to_signed16(65535) == -1
    assert from_signed16(-1) == 65535
    assert from_signed16(-32768) == 32768
    assert from_signed16(1234) == 1234
    with pytest.raises(ValueError):
        from_signed16(-32769)
    with pytest.raises(ValueError):
        from_signed16(65536)
    assert to_unsigned16(-1) == 0xFFFF


def test_swap_bytes() -> None:
    assert swap_bytes(0x1234) == 0x3412


class TestFloat32:
    # 123.456 as IEEE-754 single is 0x42F6E979
    def test_abcd(self) -> None:
        assert to_float32(0x42F6, 0xE979, WordOrder.ABCD) == pytest.approx(123.456, rel=1e-6)

    def test_cdab(self) -> None:
        assert to_float32(0xE979, 0x42F6, WordOrder.CDAB) == pytest.approx(123.456, rel=1e-6)

    def test_badc(self) -> None:
        assert to_float32(0xF642, 0x79E9, WordOrder.BADC) == pytest.approx(123.456, rel=1e-6)

    def test_dcba(self) -> None:
        assert to_float32(0x79E9, 0xF642, WordOrder.DCBA) == pytest.approx(123.456, rel=1e-6)

    def test_order_accepts_string(self) -> None:
        assert to_float32(0x3F80, 0x0000, "ABCD") == 1.0

    @pytest.mark.parametrize("order", list(WordOrder))
    def test_inverse(self, order: WordOrder) -> None:
        r1, r2 = from_float32(-2.5, order)
        assert to_float32(r1, r2, order) == -2.5


class TestLong32:
    def test_negative_one(self) -> None:
        assert to_long32(0xFFFF, 0xFFFF) == -1

    def test_word_swap(self) -> None:
        assert to_long32(0x0001, 0x0000, WordOrder.ABCD) == 65536
        assert to_long32(0x0000, 0x0001, WordOrder.CDAB) == 65536

    def test_from_long32(self) -> None:
        assert from_long32(65536) == (0x0001, 0x0000)
        assert from_long32(-1, WordOrder.CDAB) == (0xFFFF, 0xFFFF)
        with pytest.raises(ValueError):
            from_long32(2**32)


def test_float64_big_and_little() -> None:
    # 1.0 as double is 0x3FF0000000000000
    assert to_float64(0x3FF0, 0, 0, 0) == 1.0
    assert to_float64(0, 0, 0, 0x3FF0, big_endian=False) == 1.0
    assert math.isclose(to_float64(0x4009, 0x21FB, 0x5444, 0x2D18), math.pi)


def test_ascii_skips_non_printable() -> None:
    assert to_ascii([0x4142, 0x4300]) == "ABC"
    assert to_ascii([0x0A41]) == "A"
    assert to_ascii([]) == ""


def test_hex_and_binary_strings() -> None:
    assert to_hex_string(0xFF) == "0x00FF"
    assert to_hex_string(0xABCD) == "0xABCD"
    assert to_hex_string(0x1, bits=32) == "0x00000001"
    assert to_binary_string(5) == "0000000000000101"
    assert to_binary_string(3, bits=4) == "0011"
