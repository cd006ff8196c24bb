"""rtu-master: Modbus RTU master over RS-485 with a serialized transaction engine and poll scheduler."""

__version__ = "0.1.0"

from .codec import crc16, convert_address, parse_read_response, parse_write_response, validate_crc
from .config import MasterSettings, Topology, load_topology
from .coordinator import TransactionCoordinator
from .delimiter import FrameDelimiter
from .errors import (
    BusyError,
    ConfigError,
    CrcInvalid,
    InvalidAddressError,
    ProtocolException,
    ReadOnlyRegisterError,
    RtuMasterError,
    TransactionCancelled,
    TransactionError,
    TransactionTimeout,
    TransportError,
    UnexpectedFunctionCode,
    UnknownItemError,
)
from .master import ConnectionTestResult, GroupReadResult, RtuMaster
from .normalize import parse_register_ref
from .scheduler import PollJob, PollScheduler, plan_reads
from .traffic import TrafficLog
from .transport import SerialTransport, Transport
from .types import (
    ExceptionCode,
    FunctionCode,
    ReadRequest,
    Register,
    RegisterAddress,
    RegisterGroup,
    RegisterSpace,
    SerialSettings,
)

__all__ = [
    "__version__",
    "crc16",
    "convert_address",
    "parse_read_response",
    "parse_write_response",
    "validate_crc",
    "MasterSettings",
    "Topology",
    "load_topology",
    "TransactionCoordinator",
    "FrameDelimiter",
    "BusyError",
    "ConfigError",
    "CrcInvalid",
    "InvalidAddressError",
    "ProtocolException",
    "ReadOnlyRegisterError",
    "RtuMasterError",
    "TransactionCancelled",
    "TransactionError",
    "TransactionTimeout",
    "TransportError",
    "UnexpectedFunctionCode",
    "UnknownItemError",
    "ConnectionTestResult",
    "GroupReadResult",
    "RtuMaster",
    "parse_register_ref",
    "PollJob",
    "PollScheduler",
    "plan_reads",
    "TrafficLog",
    "SerialTransport",
    "Transport",
    "ExceptionCode",
    "FunctionCode",
    "ReadRequest",
    "Register",
    "RegisterAddress",
    "RegisterGroup",
    "RegisterSpace",
    "SerialSettings",
]
