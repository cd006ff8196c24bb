"""Byte-stream transport contract and a pyserial implementation for RS-485 adapters."""

import asyncio
import logging
import threading
from typing import Callable, Optional, Protocol

import serial

from .errors import TransportError
from .types import SerialSettings

logger = logging.getLogger(__name__)

Receiver = Callable[[bytes], None]

_PARITY = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
}


class Transport(Protocol):
    """What the coordinator needs from a link: write bytes, receive bytes asynchronously."""

    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def write(self, data: bytes) -> None: ...

    def set_receiver(self, receiver: Optional[Receiver]) -> None: ...

    async def close(self) -> None: ...


class SerialTransport:
    """
    pyserial port driven from asyncio.

    A daemon thread blocks on ``read`` and hands each chunk to the event loop
    with ``call_soon_threadsafe``; the receiver therefore always runs on the
    loop thread. Writes run in the default executor.
    """

    def __init__(self, settings: SerialSettings, read_timeout: float = 0.05) -> None:
        self._settings = settings
        self._read_timeout = read_timeout
        self._serial: serial.Serial | None = None
        self._receiver: Receiver | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reader: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def settings(self) -> SerialSettings:
        return self._settings

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def set_receiver(self, receiver: Optional[Receiver]) -> None:
        self._receiver = receiver

    async def open(self) -> None:
        if self.is_open:
            return
        s = self._settings
        try:
            self._serial = serial.Serial(
                port=s.port,
                baudrate=s.baudrate,
                bytesize=s.bytesize,
                parity=_PARITY[s.parity],
                stopbits=s.stopbits,
                timeout=self._read_timeout,
            )
        except (serial.SerialException, ValueError) as e:
            raise TransportError(f"Failed to open serial port {s.port}: {e}", cause=e) from e
        self._loop = asyncio.get_running_loop()
        self._stop.clear()
        self._reader = threading.Thread(target=self._read_loop, name=f"rtu-reader-{s.port}", daemon=True)
        self._reader.start()
        logger.info("Opened %s at %d baud (%s, %d data, %d stop)", s.port, s.baudrate, s.parity, s.bytesize, s.stopbits)

    async def write(self, data: bytes) -> None:
        port = self._serial
        if port is None or not port.is_open:
            raise TransportError("Not connected")
        try:
            await asyncio.to_thread(self._write_blocking, port, data)
        except serial.SerialException as e:
            raise TransportError(f"Write to {self._settings.port} failed: {e}", cause=e) from e

    @staticmethod
    def _write_blocking(port: serial.Serial, data: bytes) -> None:
        port.write(data)
        port.flush()

    def _read_loop(self) -> None:
        port = self._serial
        loop = self._loop
        if port is None or loop is None:
            raise TransportError("Not connected")
        while not self._stop.is_set():
            try:
                data = port.read(port.in_waiting or 1)
            except (serial.SerialException, OSError, TypeError) as e:
                if not self._stop.is_set():
                    logger.error("Read error on %s: %s", self._settings.port, e)
                break
            if data:
                try:
                    loop.call_soon_threadsafe(self._deliver, data)
                except RuntimeError:
                    break  # loop closed

    def _deliver(self, data: bytes) -> None:
        if self._receiver is not None:
            self._receiver(data)

    async def close(self) -> None:
        self._stop.set()
        port = self._serial
        if port is not None:
            try:
                if hasattr(port, "cancel_read"):
                    port.cancel_read()
            except (serial.SerialException, OSError) as e:
                logger.debug("cancel_read failed on %s: %s", self._settings.port, e)
        if self._reader is not None:
            await asyncio.to_thread(self._reader.join, 1.0)
            self._reader = None
        if port is not None:
            try:
                port.close()
            except (serial.SerialException, OSError) as e:
                logger.warning("Error closing serial port %s: %s", self._settings.port, e)
            self._serial = None
        self._receiver = None
