"""FrameDelimiter: split a delimiter-less RTU byte stream into candidate frames by line silence."""

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_QUIET_PERIOD = 0.05


class FrameDelimiter:
    """
    Accumulate incoming bytes and emit the whole buffer as one candidate frame
    once no byte has arrived for ``quiet_period`` seconds.

    The buffer is never inspected while accumulating; whatever arrived before
    the silence is handed to ``on_frame`` as-is, short or not. Must be fed
    from the event loop thread.
    """

    def __init__(
        self,
        on_frame: Callable[[bytes], None],
        quiet_period: float = DEFAULT_QUIET_PERIOD,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if quiet_period <= 0:
            raise ValueError(f"quiet_period must be > 0, got {quiet_period}")
        self._on_frame = on_frame
        self._quiet_period = quiet_period
        self._loop = loop
        self._buffer = bytearray()
        self._timer: asyncio.TimerHandle | None = None

    @property
    def quiet_period(self) -> float:
        return self._quiet_period

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> None:
        """Append a received chunk and restart the quiet-period timer."""
        if not data:
            return
        self._buffer.extend(data)
        if self._timer is not None:
            self._timer.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self._quiet_period, self._flush)

    def reset(self) -> None:
        """Drop buffered bytes and any armed timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._buffer:
            logger.debug("Discarding %d residual byte(s)", len(self._buffer))
        self._buffer.clear()

    def _flush(self) -> None:
        self._timer = None
        frame = bytes(self._buffer)
        self._buffer.clear()
        if frame:
            self._on_frame(frame)
