"""Shared fakes: a simulated RTU slave and an in-memory transport that answers it."""

import asyncio
import struct
from typing import Callable, Optional

import pytest

from rtu_master.codec import append_crc, pack_bits, validate_crc
from rtu_master.errors import TransportError


class FakeDevice:
    """Answers RTU requests from in-memory tables the way a real slave would."""

    def __init__(self, unit_id: int = 1) -> None:
        self.unit_id = unit_id
        self.coils: dict[int, int] = {}
        self.discrete_inputs: dict[int, int] = {}
        self.input_registers: dict[int, int] = {}
        self.holding_registers: dict[int, int] = {}
        self.requests: list[bytes] = []
        # one-shot behaviours, consumed by the next request
        self.exception_code: Optional[int] = None
        self.silent = False
        self.corrupt = False
        self.wrong_function = False

    def handle(self, request: bytes) -> Optional[bytes]:
        self.requests.append(request)
        assert validate_crc(request), "master sent a frame with a bad CRC"
        if self.silent:
            self.silent = False
            return None
        unit, fc = request[0], request[1]
        if self.exception_code is not None:
            code, self.exception_code = self.exception_code, None
            return append_crc(bytes((unit, fc | 0x80, code)))

        if fc in (0x01, 0x02):
            start, qty = struct.unpack(">HH", request[2:6])
            table = self.coils if fc == 0x01 else self.discrete_inputs
            packed = pack_bits([table.get(start + i, 0) for i in range(qty)])
            body = bytes((unit, fc, len(packed))) + packed
        elif fc in (0x03, 0x04):
            start, qty = struct.unpack(">HH", request[2:6])
            table = self.holding_registers if fc == 0x03 else self.input_registers
            words = [table.get(start + i, 0) for i in range(qty)]
            body = bytes((unit, fc, qty * 2)) + struct.pack(f">{qty}H", *words)
        elif fc == 0x05:
            addr, value = struct.unpack(">HH", request[2:6])
            self.coils[addr] = 1 if value == 0xFF00 else 0
            body = request[:6]
        elif fc == 0x06:
            addr, value = struct.unpack(">HH", request[2:6])
            self.holding_registers[addr] = value
            body = request[:6]
        elif fc == 0x0F:
            start, qty = struct.unpack(">HH", request[2:6])
            data = request[7:-2]
            for i in range(qty):
                self.coils[start + i] = (data[i // 8] >> (i % 8)) & 1
            body = request[:6]
        elif fc == 0x10:
            start, qty = struct.unpack(">HH", request[2:6])
            for i in range(qty):
                (self.holding_registers[start + i],) = struct.unpack(">H", request[7 + 2 * i : 9 + 2 * i])
            body = request[:6]
        else:
            return append_crc(bytes((unit, fc | 0x80, 0x01)))

        if self.wrong_function:
            self.wrong_function = False
            body = body[:1] + bytes(((body[1] % 4) + 1,)) + body[2:]
        frame = append_crc(body)
        if self.corrupt:
            self.corrupt = False
            frame = frame[:-1] + bytes((frame[-1] ^ 0x01,))
        return frame


class FakeTransport:
    """
    In-memory link to a FakeDevice.

    Responses are delivered from the event loop after ``delay`` seconds,
    optionally split into ``chunks`` pieces separated by ``chunk_gap`` (kept
    below the quiet period so the pieces belong to one frame).
    """

    def __init__(
        self,
        device: Optional[FakeDevice] = None,
        delay: float = 0.005,
        chunks: int = 1,
        chunk_gap: float = 0.005,
    ) -> None:
        self.device = device or FakeDevice()
        self.delay = delay
        self.chunks = chunks
        self.chunk_gap = chunk_gap
        self.writes: list[bytes] = []
        self.fail_open = False
        self.fail_writes = False
        self.opened = 0
        self.closed = 0
        self.overlaps = 0
        self._open = False
        self._outstanding = False
        self._receiver: Optional[Callable[[bytes], None]] = None

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        if self.fail_open:
            raise TransportError("Failed to open serial port fake: no such device")
        self._open = True
        self.opened += 1

    async def close(self) -> None:
        self._open = False
        self.closed += 1

    def set_receiver(self, receiver: Optional[Callable[[bytes], None]]) -> None:
        self._receiver = receiver

    async def write(self, data: bytes) -> None:
        if self.fail_writes or not self._open:
            raise TransportError("Write to fake failed: device gone")
        if self._outstanding:
            self.overlaps += 1
        self.writes.append(bytes(data))
        response = self.device.handle(bytes(data))
        if response is None:
            return
        self._outstanding = True
        self._schedule(response)

    def _schedule(self, response: bytes) -> None:
        loop = asyncio.get_running_loop()
        size = max(1, -(-len(response) // self.chunks))
        pieces = [response[i : i + size] for i in range(0, len(response), size)]
        for n, piece in enumerate(pieces):
            last = n == len(pieces) - 1
            loop.call_later(self.delay + n * self.chunk_gap, self._deliver, piece, last)

    def _deliver(self, data: bytes, last: bool = False) -> None:
        if last:
            self._outstanding = False
        if self._receiver is not None and self._open:
            self._receiver(data)

    def inject(self, data: bytes) -> None:
        """Push bytes onto the line as if another device had sent them."""
        self._deliver(data)


@pytest.fixture
def device() -> FakeDevice:
    dev = FakeDevice(unit_id=1)
    dev.holding_registers.update({0: 0x1234, 1: 0x5678, 2: 0x00FF, 10: 42, 200: 7})
    dev.input_registers.update({0: 100, 5: 0xFFFF})
    dev.coils.update({0: 1, 2: 1, 9: 1})
    dev.discrete_inputs.update({3: 1})
    return dev


@pytest.fixture
def transport(device: FakeDevice) -> FakeTransport:
    return FakeTransport(device)


@pytest.fixture
def make_transport(device: FakeDevice) -> Callable[..., FakeTransport]:
    """Factory for transports with custom delivery timing, all wired to ``device``."""

    def factory(**kwargs: float) -> FakeTransport:
        return FakeTransport(device, **kwargs)  # type: ignore[arg-type]

    return factory
