"""TransactionCoordinator: exactly one outstanding Modbus RTU request per bus."""

import asyncio
import logging

from . import codec
from .delimiter import DEFAULT_QUIET_PERIOD, FrameDelimiter
from .errors import BusyError, TransactionCancelled, TransactionError, TransactionTimeout, TransportError
from .traffic import TrafficLog
from .transport import Transport
from .types import Transaction

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 2.0


class TransactionCoordinator:
    """
    Sole owner of a transport's write and receive paths.

    Requests are serialized by a FIFO lock. The next frame delimited after a
    send is, by construction, the response to that send; correlation is
    positional and is only sound because no second request can be on the wire.
    The response timeout is fixed for the lifetime of the coordinator. Nothing
    is retried.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        quiet_period: float = DEFAULT_QUIET_PERIOD,
        traffic: TrafficLog | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")
        self._transport = transport
        self._timeout = timeout
        self._quiet_period = quiet_period
        self._traffic = traffic if traffic is not None else TrafficLog()
        self._lock = asyncio.Lock()
        self._delimiter: FrameDelimiter | None = None
        self._pending: tuple[Transaction, asyncio.Future[bytes]] | None = None
        self._open = False
        # bumped on close so queued callers know their connection is gone
        self._generation = 0
        self._queued = 0
        self.last_transaction: Transaction | None = None
        self.frames_sent = 0
        self.frames_received = 0
        self.failures = 0

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def traffic(self) -> TrafficLog:
        return self._traffic

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def queued(self) -> int:
        """Callers waiting behind the in-flight transaction."""
        return self._queued

    async def open(self) -> None:
        """Open the transport and route its bytes through the frame delimiter."""
        if self._open:
            return
        self._delimiter = FrameDelimiter(
            self._on_frame,
            quiet_period=self._quiet_period,
            loop=asyncio.get_running_loop(),
        )
        self._transport.set_receiver(self._delimiter.feed)
        try:
            await self._transport.open()
        except TransportError as e:
            self._transport.set_receiver(None)
            self._traffic.log_error(str(e))
            raise
        self._open = True
        logger.debug("Coordinator open (timeout=%.3fs, quiet=%.3fs)", self._timeout, self._quiet_period)

    async def close(self) -> None:
        """Fail pending and queued transactions with TransactionCancelled and release the transport."""
        if not self._open:
            return
        self._open = False
        self._generation += 1
        if self._pending is not None:
            _txn, future = self._pending
            if not future.done():
                future.set_exception(TransactionCancelled())
        if self._delimiter is not None:
            self._delimiter.reset()
        self._transport.set_receiver(None)
        try:
            await self._transport.close()
        finally:
            logger.debug("Coordinator closed")

    async def execute(self, request: bytes, *, wait: bool = True) -> bytes:
        """
        Send one request frame and return the validated response frame.

        With ``wait=False`` a call made while another transaction is in flight
        or queued fails at once with BusyError; otherwise callers queue in
        submission order. Raises TransactionTimeout, CrcInvalid,
        ProtocolException, UnexpectedFunctionCode, TransactionCancelled or
        TransportError. A failed write closes the coordinator.
        """
        if not self._open:
            raise TransportError("Not connected")
        if len(request) < 4:
            raise ValueError(f"request frame too short: {len(request)} byte(s)")
        if not wait and (self._lock.locked() or self._queued):
            raise BusyError()

        generation = self._generation
        self._queued += 1
        try:
            await self._lock.acquire()
        finally:
            self._queued -= 1
        try:
            if generation != self._generation or not self._open:
                raise TransactionCancelled()
            return await self._transact(bytes(request), generation)
        finally:
            self._lock.release()

    async def _transact(self, request: bytes, generation: int) -> bytes:
        if self._delimiter is None:
            raise TransportError("Not connected")
        loop = asyncio.get_running_loop()
        # stale bytes from an earlier exchange must not become this response
        self._delimiter.reset()
        txn = Transaction(request)
        future: asyncio.Future[bytes] = loop.create_future()
        self._pending = (txn, future)
        self.last_transaction = txn
        response: bytes | None = None

        self._traffic.log_tx(request)
        logger.debug("TX %s", codec.format_hex(request))
        try:
            try:
                await self._transport.write(request)
            except TransportError:
                if generation != self._generation:
                    raise TransactionCancelled() from None
                raise
            self.frames_sent += 1
            try:
                response = await asyncio.wait_for(future, self._timeout)
            except asyncio.TimeoutError:
                self._delimiter.reset()
                raise TransactionTimeout(self._timeout) from None
            self.frames_received += 1
            logger.debug("RX %s", codec.format_hex(response))
            self._traffic.log_rx(response)
            codec.check_response(response, request[1])
        except (TransactionError, TransportError) as e:
            self.failures += 1
            txn.fail(e, response)
            self._traffic.log_error(str(e))
            logger.warning("Transaction 0x%02X to unit %d failed: %s", request[1], request[0], e)
            if isinstance(e, TransportError):
                # the port is unusable; queued callers see the generation change
                self._pending = None
                await self.close()
            raise
        except asyncio.CancelledError:
            txn.fail(TransactionCancelled("Transaction task cancelled"), response)
            raise
        finally:
            self._pending = None
            if future.done() and not future.cancelled():
                future.exception()  # mark retrieved

        txn.complete(response)
        return response

    def _on_frame(self, frame: bytes) -> None:
        pending = self._pending
        if pending is None or pending[1].done():
            logger.warning("Discarding unsolicited frame: %s", codec.format_hex(frame))
            self._traffic.log_rx(frame, error="unsolicited frame discarded")
            return
        pending[1].set_result(frame)
