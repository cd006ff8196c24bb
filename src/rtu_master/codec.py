"""Modbus RTU frame codec: CRC-16, request builders, response checks and parsers.

Everything here is pure. Frames are ``bytes`` laid out as
``[unit_id, function_code, payload..., crc_lo, crc_hi]``.
"""

import struct
from typing import Sequence

from .errors import CrcInvalid, ProtocolException, UnexpectedFunctionCode
from .types import ExceptionCode, FunctionCode, RegisterSpace

MAX_REGISTERS_PER_READ = 125
MAX_COILS_PER_READ = 2000
MAX_REGISTERS_PER_WRITE = 123
MAX_COILS_PER_WRITE = 1968

_CRC_POLY = 0xA001

# (low, high) of the user-facing reference range for each space
_REFERENCE_RANGES: dict[RegisterSpace, tuple[int, int]] = {
    RegisterSpace.COIL: (1, 9999),
    RegisterSpace.DISCRETE_INPUT: (10001, 19999),
    RegisterSpace.INPUT_REGISTER: (30001, 39999),
    RegisterSpace.HOLDING_REGISTER: (40001, 49999),
}


def crc16(data: bytes | bytearray | Sequence[int]) -> int:
    """Modbus CRC-16: reflected polynomial 0xA001, initial value 0xFFFF."""
    crc = 0xFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ _CRC_POLY
            else:
                crc >>= 1
    return crc


def append_crc(frame: bytes | bytearray) -> bytes:
    """Return frame with its CRC appended, low byte first."""
    crc = crc16(frame)
    return bytes(frame) + bytes((crc & 0xFF, (crc >> 8) & 0xFF))


def validate_crc(frame: bytes | bytearray) -> bool:
    """True when the trailing two bytes hold the CRC of everything before them."""
    if len(frame) < 4:
        return False
    received = frame[-2] | (frame[-1] << 8)
    return received == crc16(frame[:-2])


def convert_address(user_address: int, space: RegisterSpace) -> int:
    """
    Convert a user-facing reference (e.g. 40001) to a zero-based protocol offset.

    Values outside the space's canonical reference range are taken as already
    zero-based and returned unchanged.
    """
    low, high = _REFERENCE_RANGES[space]
    if low <= user_address <= high:
        return user_address - low
    return user_address


def format_hex(frame: bytes | bytearray) -> str:
    """Uppercase, space separated hex rendering used in logs."""
    return " ".join(f"{b:02X}" for b in frame)


def _check_byte(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must fit in one byte, got {value}")


def _check_word(name: str, value: int) -> None:
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{name} must be in 0..65535, got {value}")


def build_read_frame(unit_id: int, function_code: int, start_address: int, quantity: int) -> bytes:
    """Build a read request (FC01-FC04). Quantity is not clamped; callers chunk."""
    _check_byte("unit_id", unit_id)
    _check_byte("function_code", function_code)
    _check_word("start_address", start_address)
    _check_word("quantity", quantity)
    return append_crc(struct.pack(">BBHH", unit_id, function_code, start_address, quantity))


def build_write_single_coil(unit_id: int, address: int, value: bool) -> bytes:
    """FC05: ON is 0xFF00, OFF is 0x0000."""
    _check_byte("unit_id", unit_id)
    _check_word("address", address)
    coil_value = 0xFF00 if value else 0x0000
    return append_crc(struct.pack(">BBHH", unit_id, FunctionCode.WRITE_SINGLE_COIL, address, coil_value))


def build_write_single_register(unit_id: int, address: int, value: int) -> bytes:
    """FC06 with an unsigned 16-bit value."""
    _check_byte("unit_id", unit_id)
    _check_word("address", address)
    _check_word("value", value)
    return append_crc(struct.pack(">BBHH", unit_id, FunctionCode.WRITE_SINGLE_REGISTER, address, value))


def build_write_single(unit_id: int, space: RegisterSpace, address: int, value: int | bool) -> bytes:
    """Dispatch to FC05 or FC06 by register space."""
    if space == RegisterSpace.COIL:
        return build_write_single_coil(unit_id, address, bool(value))
    if space == RegisterSpace.HOLDING_REGISTER:
        return build_write_single_register(unit_id, address, int(value))
    raise ValueError(f"Register space {space.value} has no write function")


def build_write_multiple_registers(unit_id: int, start_address: int, values: Sequence[int]) -> bytes:
    """FC16: quantity, byte count, then big-endian words."""
    _check_byte("unit_id", unit_id)
    _check_word("start_address", start_address)
    if not values:
        raise ValueError("values must not be empty")
    for v in values:
        _check_word("value", v)
    header = struct.pack(
        ">BBHHB",
        unit_id,
        FunctionCode.WRITE_MULTIPLE_REGISTERS,
        start_address,
        len(values),
        len(values) * 2,
    )
    body = struct.pack(f">{len(values)}H", *values)
    return append_crc(header + body)


def pack_bits(values: Sequence[int | bool]) -> bytes:
    """Pack booleans 8 per byte, LSB first within each byte."""
    out = bytearray((len(values) + 7) // 8)
    for i, v in enumerate(values):
        if v:
            out[i // 8] |= 1 << (i % 8)
    return bytes(out)


def unpack_bits(data: bytes | bytearray) -> list[int]:
    """Inverse of pack_bits; yields 8 bits per byte in transmission order."""
    return [(byte >> bit) & 1 for byte in data for bit in range(8)]


def build_write_multiple_coils(unit_id: int, start_address: int, values: Sequence[int | bool]) -> bytes:
    """FC15: quantity, byte count, then coils packed LSB-first."""
    _check_byte("unit_id", unit_id)
    _check_word("start_address", start_address)
    if not values:
        raise ValueError("values must not be empty")
    packed = pack_bits(values)
    header = struct.pack(
        ">BBHHB",
        unit_id,
        FunctionCode.WRITE_MULTIPLE_COILS,
        start_address,
        len(values),
        len(packed),
    )
    return append_crc(header + packed)


def is_exception_response(frame: bytes | bytearray) -> bool:
    return len(frame) >= 2 and bool(frame[1] & 0x80)


def check_response(frame: bytes | bytearray, expected_function: int) -> None:
    """
    Validate a candidate response frame against the request's function code.

    Checks run in order: CRC (CrcInvalid), exception bit (ProtocolException),
    function code match on the low 7 bits (UnexpectedFunctionCode).
    """
    if not validate_crc(frame):
        raise CrcInvalid(bytes(frame))
    function_code = frame[1]
    if function_code & 0x80:
        payload = frame[2:-2]
        code = payload[0] if payload else 0
        raise ProtocolException(function_code & 0x7F, code, ExceptionCode.lookup(code))
    if function_code & 0x7F != expected_function:
        raise UnexpectedFunctionCode(expected_function, function_code)


def parse_read_response(
    frame: bytes | bytearray,
    expected_function: int,
    quantity: int | None = None,
) -> list[int]:
    """
    Parse a FC01-FC04 response into raw values.

    Registers come back as big-endian 16-bit words. Coils and discrete inputs
    come back as 0/1 per bit, LSB first per byte; without ``quantity`` the
    padding bits of the last byte are included.
    """
    check_response(frame, expected_function)
    payload = frame[2:-2]
    byte_count = payload[0] if payload else 0
    data = bytes(payload[1 : 1 + byte_count])

    if expected_function in (FunctionCode.READ_HOLDING_REGISTERS, FunctionCode.READ_INPUT_REGISTERS):
        words = len(data) // 2
        values = list(struct.unpack(f">{words}H", data[: words * 2]))
    elif expected_function in (FunctionCode.READ_COILS, FunctionCode.READ_DISCRETE_INPUTS):
        values = unpack_bits(data)
    else:
        values = list(data)

    if quantity is not None:
        values = values[:quantity]
    return values


def parse_write_response(frame: bytes | bytearray, expected_function: int) -> None:
    """Accept any valid, non-exception echo of the expected write function."""
    check_response(frame, expected_function)
