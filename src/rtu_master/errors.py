"""Exception taxonomy for rtu-master: transport, per-transaction and configuration errors."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import ExceptionCode


class RtuMasterError(Exception):
    """Base exception for rtu-master."""

    pass


class TransportError(RtuMasterError):
    """Raised when the serial transport cannot be opened or written. Fatal to the connection."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class TransactionError(RtuMasterError):
    """Base for failures local to one request/response exchange."""

    pass


class TransactionTimeout(TransactionError):
    """No delimited frame arrived within the response timeout."""

    def __init__(self, timeout: float, message: str | None = None) -> None:
        self.timeout = timeout
        super().__init__(message or "Response timeout")


class CrcInvalid(TransactionError):
    """Received frame failed the CRC-16 check."""

    def __init__(self, frame: bytes, message: str | None = None) -> None:
        self.frame = frame
        super().__init__(message or "CRC validation failed")


class ProtocolException(TransactionError):
    """Device answered with a Modbus exception response."""

    def __init__(self, function_code: int, code: int, exception: ExceptionCode | None) -> None:
        self.function_code = function_code
        self.code = code
        self.exception = exception
        if exception is not None:
            message = exception.description
        else:
            message = f"Unknown exception 0x{code:02X}"
        super().__init__(message)


class UnexpectedFunctionCode(TransactionError):
    """Response function code does not match the request."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"Unexpected function code: 0x{received:02X} (expected 0x{expected:02X})")


class BusyError(TransactionError):
    """A transaction is already in flight and the caller asked not to wait."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Bus busy: a transaction is already pending")


class TransactionCancelled(TransactionError):
    """The connection was closed while the transaction was pending or queued."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Transaction cancelled: connection closed")


class InvalidAddressError(RtuMasterError):
    """Raised when a register reference string is malformed."""

    def __init__(self, ref: str, message: str | None = None) -> None:
        self.ref = ref
        self._msg = message or f"Invalid register reference: {ref!r}"
        super().__init__(self._msg)


class ReadOnlyRegisterError(RtuMasterError):
    """Raised on a write to a discrete input or input register."""

    def __init__(self, space: str, offset: int) -> None:
        self.space = space
        self.offset = offset
        super().__init__(f"Register space {space} is read-only (offset {offset})")


class ConfigError(RtuMasterError):
    """Raised when a topology document is malformed or inconsistent."""

    pass


class UnknownItemError(ConfigError):
    """Raised when a connection, slave, group or register id is not in the topology."""

    def __init__(self, kind: str, item_id: str) -> None:
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"Unknown {kind}: {item_id!r}")
