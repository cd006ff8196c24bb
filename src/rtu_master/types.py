"""Core data model: register spaces, function codes, topology items and transaction records."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional


class FunctionCode(IntEnum):
    """Modbus function codes used by the master."""

    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_COILS = 0x0F
    WRITE_MULTIPLE_REGISTERS = 0x10


class ExceptionCode(IntEnum):
    """Modbus exception codes with a known English name."""

    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SLAVE_DEVICE_BUSY = 0x06
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_UNAVAILABLE = 0x0A
    GATEWAY_TARGET_FAILED = 0x0B

    @property
    def description(self) -> str:
        return _EXCEPTION_NAMES[self]

    @classmethod
    def lookup(cls, code: int) -> Optional["ExceptionCode"]:
        """Return the member for code, or None for codes outside the table."""
        try:
            return cls(code)
        except ValueError:
            return None


_EXCEPTION_NAMES: dict[ExceptionCode, str] = {
    ExceptionCode.ILLEGAL_FUNCTION: "Illegal Function",
    ExceptionCode.ILLEGAL_DATA_ADDRESS: "Illegal Data Address",
    ExceptionCode.ILLEGAL_DATA_VALUE: "Illegal Data Value",
    ExceptionCode.SLAVE_DEVICE_FAILURE: "Slave Device Failure",
    ExceptionCode.ACKNOWLEDGE: "Acknowledge",
    ExceptionCode.SLAVE_DEVICE_BUSY: "Slave Device Busy",
    ExceptionCode.MEMORY_PARITY_ERROR: "Memory Parity Error",
    ExceptionCode.GATEWAY_PATH_UNAVAILABLE: "Gateway Path Unavailable",
    ExceptionCode.GATEWAY_TARGET_FAILED: "Gateway Target Device Failed to Respond",
}


class RegisterSpace(str, Enum):
    """The four disjoint Modbus address spaces."""

    COIL = "coil"
    DISCRETE_INPUT = "discrete_input"
    INPUT_REGISTER = "input_register"
    HOLDING_REGISTER = "holding_register"

    @classmethod
    def parse(cls, raw: str) -> "RegisterSpace":
        """Accept a space name or the classic 0x/1x/3x/4x prefix."""
        key = raw.strip().lower()
        if key in _PREFIXES:
            return _PREFIXES[key]
        return cls(key)

    @property
    def prefix(self) -> str:
        return _PREFIX_BY_SPACE[self]

    @property
    def is_bit(self) -> bool:
        return self in (RegisterSpace.COIL, RegisterSpace.DISCRETE_INPUT)

    @property
    def writable(self) -> bool:
        return self in (RegisterSpace.COIL, RegisterSpace.HOLDING_REGISTER)

    @property
    def read_function(self) -> FunctionCode:
        return _READ_FUNCTION[self]

    @property
    def write_function(self) -> FunctionCode | None:
        if self == RegisterSpace.COIL:
            return FunctionCode.WRITE_SINGLE_COIL
        if self == RegisterSpace.HOLDING_REGISTER:
            return FunctionCode.WRITE_SINGLE_REGISTER
        return None

    @property
    def write_multiple_function(self) -> FunctionCode | None:
        if self == RegisterSpace.COIL:
            return FunctionCode.WRITE_MULTIPLE_COILS
        if self == RegisterSpace.HOLDING_REGISTER:
            return FunctionCode.WRITE_MULTIPLE_REGISTERS
        return None


_PREFIXES: dict[str, RegisterSpace] = {
    "0x": RegisterSpace.COIL,
    "1x": RegisterSpace.DISCRETE_INPUT,
    "3x": RegisterSpace.INPUT_REGISTER,
    "4x": RegisterSpace.HOLDING_REGISTER,
}

_PREFIX_BY_SPACE: dict[RegisterSpace, str] = {space: prefix for prefix, space in _PREFIXES.items()}

_READ_FUNCTION: dict[RegisterSpace, FunctionCode] = {
    RegisterSpace.COIL: FunctionCode.READ_COILS,
    RegisterSpace.DISCRETE_INPUT: FunctionCode.READ_DISCRETE_INPUTS,
    RegisterSpace.INPUT_REGISTER: FunctionCode.READ_INPUT_REGISTERS,
    RegisterSpace.HOLDING_REGISTER: FunctionCode.READ_HOLDING_REGISTERS,
}


@dataclass(frozen=True)
class RegisterAddress:
    """Zero-based protocol address within one register space."""

    space: RegisterSpace
    offset: int

    def __post_init__(self) -> None:
        if not 0 <= self.offset <= 0xFFFF:
            raise ValueError(f"offset must be in 0..65535, got {self.offset}")

    def __str__(self) -> str:
        return f"{self.space.prefix}:{self.offset}"


@dataclass(eq=False)
class Register:
    """One register of interest with its last-known raw 16-bit value."""

    id: str
    address: RegisterAddress
    group_id: str = ""
    alias: str = ""
    comment: str = ""
    value: int = 0

    @property
    def space(self) -> RegisterSpace:
        return self.address.space

    @property
    def offset(self) -> int:
        return self.address.offset

    @property
    def label(self) -> str:
        return self.alias or str(self.address)


@dataclass(eq=False)
class RegisterGroup:
    """Registers of one slave polled together."""

    id: str
    slave_id: str
    name: str = "Register Group"
    poll_interval_ms: int = 1000
    registers: list[Register] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be > 0, got {self.poll_interval_ms}")

    @property
    def poll_period(self) -> float:
        return self.poll_interval_ms / 1000.0


@dataclass(frozen=True)
class SerialSettings:
    """Serial line parameters; parity is one of none/even/odd."""

    port: str
    baudrate: int = 9600
    parity: str = "none"
    bytesize: int = 8
    stopbits: int = 1

    def __post_init__(self) -> None:
        if self.parity not in ("none", "even", "odd"):
            raise ValueError(f"parity must be none, even or odd, got {self.parity!r}")
        if self.bytesize not in (7, 8):
            raise ValueError(f"bytesize must be 7 or 8, got {self.bytesize}")
        if self.stopbits not in (1, 2):
            raise ValueError(f"stopbits must be 1 or 2, got {self.stopbits}")


@dataclass(eq=False)
class Connection:
    id: str
    serial: SerialSettings
    name: str = "Serial Port"


@dataclass(eq=False)
class Slave:
    id: str
    connection_id: str
    unit_id: int
    alias: str = ""

    def __post_init__(self) -> None:
        if not 1 <= self.unit_id <= 247:
            raise ValueError(f"unit_id must be in 1..247, got {self.unit_id}")
        if not self.alias:
            self.alias = f"Slave {self.unit_id}"


@dataclass(frozen=True)
class ReadRequest:
    """One planned read covering a span of a single register space."""

    space: RegisterSpace
    start: int
    quantity: int
    registers: tuple[Register, ...] = ()

    @property
    def function_code(self) -> FunctionCode:
        return self.space.read_function


class TransactionState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(eq=False)
class Transaction:
    """One request frame and its outcome, owned by the coordinator."""

    request: bytes
    state: TransactionState = TransactionState.PENDING
    response: bytes | None = None
    error: BaseException | None = None
    started_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None

    def complete(self, response: bytes) -> None:
        self.response = response
        self.state = TransactionState.COMPLETED
        self.finished_at = time.monotonic()

    def fail(self, error: BaseException, response: bytes | None = None) -> None:
        self.response = response
        self.error = error
        self.state = TransactionState.FAILED
        self.finished_at = time.monotonic()

    @property
    def elapsed(self) -> float | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at
