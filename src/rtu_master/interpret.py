"""Numeric views over raw 16-bit register cells: signed, 32/64-bit, IEEE-754, ASCII."""

import struct
from enum import Enum
from typing import Sequence


class WordOrder(str, Enum):
    """Byte layout of a 32-bit value across two registers (A = most significant byte)."""

    ABCD = "ABCD"  # big-endian words, big-endian bytes
    CDAB = "CDAB"  # word swapped
    BADC = "BADC"  # byte swapped within each word
    DCBA = "DCBA"  # both swapped


def to_unsigned16(value: int) -> int:
    return value & 0xFFFF


def to_signed16(value: int) -> int:
    """Convert unsigned 16-bit to signed."""
    unsigned = value & 0xFFFF
    if unsigned > 32767:
        return unsigned - 65536
    return unsigned


def from_signed16(value: int) -> int:
    """Convert signed 16-bit to unsigned."""
    if not -32768 <= value <= 65535:
        raise ValueError(f"Value out of 16-bit range: {value}")
    return value & 0xFFFF


def swap_bytes(value: int) -> int:
    return ((value & 0xFF) << 8) | ((value >> 8) & 0xFF)


def _arrange(reg1: int, reg2: int, order: WordOrder) -> bytes:
    """Registers in wire order -> 4 bytes in ABCD order."""
    order = WordOrder(order)
    if order == WordOrder.ABCD:
        words = (reg1, reg2)
    elif order == WordOrder.CDAB:
        words = (reg2, reg1)
    elif order == WordOrder.BADC:
        words = (swap_bytes(reg1), swap_bytes(reg2))
    else:
        words = (swap_bytes(reg2), swap_bytes(reg1))
    return struct.pack(">HH", words[0] & 0xFFFF, words[1] & 0xFFFF)


def _split(raw: bytes, order: WordOrder) -> tuple[int, int]:
    """4 bytes in ABCD order -> registers in wire order."""
    order = WordOrder(order)
    high, low = struct.unpack(">HH", raw)
    if order == WordOrder.ABCD:
        return high, low
    if order == WordOrder.CDAB:
        return low, high
    if order == WordOrder.BADC:
        return swap_bytes(high), swap_bytes(low)
    return swap_bytes(low), swap_bytes(high)


def to_long32(reg1: int, reg2: int, order: WordOrder = WordOrder.ABCD) -> int:
    """Signed 32-bit integer from two registers."""
    return struct.unpack(">i", _arrange(reg1, reg2, order))[0]


def from_long32(value: int, order: WordOrder = WordOrder.ABCD) -> tuple[int, int]:
    if not -(2**31) <= value < 2**32:
        raise ValueError(f"Value out of 32-bit range: {value}")
    return _split(struct.pack(">I", value & 0xFFFFFFFF), order)


def to_float32(reg1: int, reg2: int, order: WordOrder = WordOrder.ABCD) -> float:
    """IEEE-754 single from two registers."""
    return struct.unpack(">f", _arrange(reg1, reg2, order))[0]


def from_float32(value: float, order: WordOrder = WordOrder.ABCD) -> tuple[int, int]:
    return _split(struct.pack(">f", value), order)


def to_float64(reg1: int, reg2: int, reg3: int, reg4: int, big_endian: bool = True) -> float:
    """IEEE-754 double from four registers; little-endian reverses word order only."""
    words = (reg1, reg2, reg3, reg4) if big_endian else (reg4, reg3, reg2, reg1)
    return struct.unpack(">d", struct.pack(">4H", *(w & 0xFFFF for w in words)))[0]


def to_ascii(registers: Sequence[int]) -> str:
    """Printable ASCII (32..126) from each register's high then low byte; others skipped."""
    chars: list[str] = []
    for reg in registers:
        for byte in ((reg >> 8) & 0xFF, reg & 0xFF):
            if 32 <= byte <= 126:
                chars.append(chr(byte))
    return "".join(chars)


def to_hex_string(value: int, bits: int = 16) -> str:
    """e.g. 0x00FF"""
    mask = (1 << bits) - 1
    return "0x" + f"{value & mask:X}".zfill(bits // 4)


def to_binary_string(value: int, bits: int = 16) -> str:
    mask = (1 << bits) - 1
    return f"{value & mask:b}".zfill(bits)
