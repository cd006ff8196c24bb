"""RtuMaster: operator-facing actions over one serial bus (test, read, write, poll, export)."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from . import codec
from .config import MasterSettings, Topology
from .coordinator import TransactionCoordinator
from .errors import (
    ProtocolException,
    ReadOnlyRegisterError,
    RtuMasterError,
    TransactionCancelled,
    TransactionError,
    TransportError,
)
from .scheduler import PollJob, PollScheduler, plan_reads
from .traffic import TrafficLog
from .transport import Transport
from .types import FunctionCode, ReadRequest, Register, RegisterAddress, RegisterGroup, RegisterSpace

logger = logging.getLogger(__name__)


@dataclass
class ConnectionTestResult:
    unit_id: int
    reachable: bool
    exception: ProtocolException | None = None

    @property
    def message(self) -> str:
        if self.exception is not None:
            return f"Device responded with exception ({self.exception}); device is reachable"
        return "Connection test successful"


@dataclass
class GroupReadResult:
    """Values read for one group; per-chunk failures do not abort the rest."""

    values: dict[str, int] = field(default_factory=dict)
    errors: list[tuple[ReadRequest, TransactionError]] = field(default_factory=list)
    requests: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors


class RtuMaster:
    """
    High-level master for one serial bus.

    Every exchange goes through a single TransactionCoordinator, so manual
    reads, writes, connection tests and scheduled polls never overlap on the
    wire. Optional ``topology`` enables the group-id based actions.
    """

    def __init__(
        self,
        transport: Transport,
        topology: Topology | None = None,
        settings: MasterSettings | None = None,
        traffic: TrafficLog | None = None,
    ) -> None:
        self._settings = settings or MasterSettings()
        self._topology = topology
        self.traffic = traffic if traffic is not None else TrafficLog(self._settings.traffic_capacity)
        self.coordinator = TransactionCoordinator(
            transport,
            timeout=self._settings.timeout,
            quiet_period=self._settings.quiet_period,
            traffic=self.traffic,
        )
        self.scheduler = PollScheduler(
            self._poll_group,
            on_result=self._on_poll_result,
            on_error=self._on_poll_error,
        )
        self.on_group_update: Callable[[RegisterGroup, GroupReadResult], None] | None = None
        self.on_poll_error: Callable[[RegisterGroup, BaseException], None] | None = None

    @property
    def topology(self) -> Topology:
        if self._topology is None:
            raise RtuMasterError("No topology loaded")
        return self._topology

    @property
    def settings(self) -> MasterSettings:
        return self._settings

    @property
    def connected(self) -> bool:
        return self.coordinator.is_open

    @property
    def message_count(self) -> int:
        """Frames sent plus frames received, exception and CRC-failed responses included."""
        return self.coordinator.frames_sent + self.coordinator.frames_received

    @property
    def error_count(self) -> int:
        return self.coordinator.failures

    async def connect(self) -> None:
        await self.coordinator.open()

    async def close(self) -> None:
        """Stop all polling, fail any pending transaction with TransactionCancelled, release the port."""
        self.scheduler.cancel_all()
        await self.coordinator.close()
        await self.scheduler.aclose()

    async def __aenter__(self) -> "RtuMaster":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def test_connection(self, unit_id: int) -> ConnectionTestResult:
        """Read one holding register at 0. An exception response still proves the device is there."""
        frame = codec.build_read_frame(unit_id, FunctionCode.READ_HOLDING_REGISTERS, 0, 1)
        try:
            await self.coordinator.execute(frame)
        except ProtocolException as e:
            return ConnectionTestResult(unit_id, True, e)
        return ConnectionTestResult(unit_id, True)

    async def _read_chunks(
        self,
        unit_id: int,
        registers: Iterable[Register],
        should_continue: Callable[[], bool] | None = None,
    ) -> GroupReadResult:
        result = GroupReadResult()
        for req in plan_reads(registers):
            if should_continue is not None and not should_continue():
                break
            frame = codec.build_read_frame(unit_id, req.function_code, req.start, req.quantity)
            result.requests += 1
            try:
                response = await self.coordinator.execute(frame)
                values = codec.parse_read_response(response, req.function_code, req.quantity)
            except TransactionCancelled:
                raise
            except TransactionError as e:
                result.errors.append((req, e))
                continue
            for reg in req.registers:
                index = reg.offset - req.start
                if index < len(values):
                    result.values[reg.id] = values[index]
        return result

    @staticmethod
    def _apply(registers: Iterable[Register], result: GroupReadResult) -> None:
        for reg in registers:
            if reg.id in result.values:
                reg.value = result.values[reg.id]

    async def read_registers(self, unit_id: int, registers: Sequence[Register]) -> GroupReadResult:
        """Read ad-hoc registers in as few requests as possible and store the values on them."""
        result = await self._read_chunks(unit_id, registers)
        self._apply(registers, result)
        return result

    async def read_group(self, group_id: str) -> GroupReadResult:
        group = self.topology.group(group_id)
        slave = self.topology.slave(group.slave_id)
        result = await self.read_registers(slave.unit_id, group.registers)
        if self.on_group_update is not None:
            self.on_group_update(group, result)
        return result

    async def write_register(self, unit_id: int, address: RegisterAddress, value: int | bool) -> None:
        """FC05 for coils, FC06 for holding registers."""
        function = address.space.write_function
        if function is None:
            raise ReadOnlyRegisterError(address.space.value, address.offset)
        frame = codec.build_write_single(unit_id, address.space, address.offset, value)
        response = await self.coordinator.execute(frame)
        codec.parse_write_response(response, function)

    async def write_register_by_id(self, register_id: str, value: int | bool) -> None:
        """Write a topology register and update its stored value on success."""
        reg = self.topology.register(register_id)
        slave = self.topology.slave_for_group(reg.group_id)
        await self.write_register(slave.unit_id, reg.address, value)
        reg.value = int(value)

    async def write_registers(self, unit_id: int, address: RegisterAddress, values: Sequence[int | bool]) -> None:
        """FC15 for coils, FC16 for holding registers, starting at ``address``."""
        function = address.space.write_multiple_function
        if function is None:
            raise ReadOnlyRegisterError(address.space.value, address.offset)
        if address.space == RegisterSpace.COIL:
            frame = codec.build_write_multiple_coils(unit_id, address.offset, values)
        else:
            frame = codec.build_write_multiple_registers(unit_id, address.offset, [int(v) for v in values])
        response = await self.coordinator.execute(frame)
        codec.parse_write_response(response, function)

    # -- polling ---------------------------------------------------------

    async def _poll_group(self, job: PollJob) -> GroupReadResult:
        slave = self.topology.slave(job.group.slave_id)
        # stop_polling takes effect before the next chunk goes out
        return await self._read_chunks(slave.unit_id, job.group.registers, lambda: not job.cancelled)

    def _on_poll_result(self, job: PollJob, result: GroupReadResult) -> None:
        self._apply(job.group.registers, result)
        if self.on_group_update is not None:
            self.on_group_update(job.group, result)

    def _on_poll_error(self, job: PollJob, error: BaseException) -> None:
        if isinstance(error, TransportError):
            logger.error("Connection lost while polling group %s: %s", job.group_id, error)
            self.scheduler.cancel_all()
        if self.on_poll_error is not None:
            self.on_poll_error(job.group, error)

    def start_polling(self, group_id: str) -> PollJob:
        if not self.connected:
            raise TransportError("Not connected")
        group = self.topology.group(group_id)
        return self.scheduler.schedule(PollJob.for_group(group))

    def stop_polling(self, group_id: str) -> bool:
        return self.scheduler.cancel(group_id)

    def export_traffic_log(self) -> dict[str, Any]:
        return self.traffic.export()
