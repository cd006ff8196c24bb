"""PollScheduler: read-chunk planning and one independent periodic timer per register group."""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from .codec import MAX_REGISTERS_PER_READ
from .errors import RtuMasterError, TransactionCancelled
from .types import ReadRequest, Register, RegisterGroup, RegisterSpace

logger = logging.getLogger(__name__)

_SPACE_ORDER = list(RegisterSpace)


def plan_reads(registers: Iterable[Register], max_span: int = MAX_REGISTERS_PER_READ) -> list[ReadRequest]:
    """
    Coalesce registers into the fewest read requests.

    Registers are grouped by space and sorted by offset, then merged greedily
    while ``offset - start < max_span``. A request may span unused addresses
    between two registers of interest. Returns requests ordered by space, then
    start offset.
    """
    if max_span <= 0:
        raise ValueError(f"max_span must be > 0, got {max_span}")
    by_space: dict[RegisterSpace, list[Register]] = defaultdict(list)
    for reg in registers:
        by_space[reg.space].append(reg)

    requests: list[ReadRequest] = []
    for space in sorted(by_space, key=_SPACE_ORDER.index):
        regs = sorted(by_space[space], key=lambda r: r.offset)
        i = 0
        while i < len(regs):
            start = regs[i].offset
            end = i
            while end + 1 < len(regs) and regs[end + 1].offset - start < max_span:
                end += 1
            quantity = regs[end].offset - start + 1
            requests.append(ReadRequest(space, start, quantity, tuple(regs[i : end + 1])))
            i = end + 1
    return requests


@dataclass(eq=False)
class PollJob:
    """A register group polled every ``period`` seconds; at most one read in flight."""

    group: RegisterGroup
    period: float
    ticks: int = 0
    dropped: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: bool = False
    _timer: asyncio.Task | None = field(default=None, repr=False)
    _in_flight: asyncio.Task | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.period <= 0:
            raise ValueError(f"period must be > 0, got {self.period}")

    @classmethod
    def for_group(cls, group: RegisterGroup) -> "PollJob":
        return cls(group=group, period=group.poll_period)

    @property
    def group_id(self) -> str:
        return self.group.id

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()


PollFunc = Callable[[PollJob], Awaitable[Any]]
ResultFunc = Callable[[PollJob, Any], None]
ErrorFunc = Callable[[PollJob, BaseException], None]


class PollScheduler:
    """
    Owns a collection of PollJobs, each with its own timer task.

    A tick that fires while the job's previous read is still in flight is
    dropped and logged, never queued. Bus exclusivity across jobs is left to
    the coordinator behind ``poll``.
    """

    def __init__(
        self,
        poll: PollFunc,
        on_result: ResultFunc | None = None,
        on_error: ErrorFunc | None = None,
    ) -> None:
        self._poll = poll
        self._on_result = on_result
        self._on_error = on_error
        self._jobs: dict[str, PollJob] = {}
        self._retired: set[asyncio.Task] = set()

    @property
    def jobs(self) -> list[PollJob]:
        return list(self._jobs.values())

    def get(self, group_id: str) -> PollJob | None:
        return self._jobs.get(group_id)

    def is_polling(self, group_id: str) -> bool:
        job = self._jobs.get(group_id)
        return job is not None and job.running

    def schedule(self, job: PollJob) -> PollJob:
        """Start ticking ``job``; an existing job for the same group is cancelled first."""
        self.cancel(job.group_id)
        job.cancelled = False
        job._timer = asyncio.create_task(self._tick_loop(job), name=f"poll-{job.group_id}")
        self._jobs[job.group_id] = job
        logger.info("Polling group %s every %.3fs", job.group_id, job.period)
        return job

    def cancel(self, group_id: str) -> bool:
        """Stop the job's timer and mark it cancelled; a late result from an in-flight read is discarded."""
        job = self._jobs.pop(group_id, None)
        if job is None:
            return False
        job.cancelled = True
        if job._timer is not None:
            job._timer.cancel()
            self._retire(job._timer)
        if job._in_flight is not None and not job._in_flight.done():
            self._retire(job._in_flight)
        logger.info("Polling stopped for group %s", group_id)
        return True

    def _retire(self, task: asyncio.Task) -> None:
        self._retired.add(task)
        task.add_done_callback(self._retired.discard)

    def cancel_all(self) -> None:
        for group_id in list(self._jobs):
            self.cancel(group_id)

    async def aclose(self) -> None:
        """Cancel every job and wait for timers and in-flight reads to settle."""
        self.cancel_all()
        tasks = list(self._retired)
        self._retired.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _tick_loop(self, job: PollJob) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + job.period
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            next_tick += job.period
            # fell behind by whole periods: skip them instead of bursting
            now = loop.time()
            if next_tick <= now:
                next_tick = now + job.period
            self._tick(job)

    def _tick(self, job: PollJob) -> None:
        job.ticks += 1
        if job.in_flight:
            job.dropped += 1
            logger.warning(
                "Poll tick dropped for group %s: previous read still in flight (%d dropped)",
                job.group_id,
                job.dropped,
            )
            return
        job._in_flight = asyncio.create_task(self._run_once(job), name=f"poll-read-{job.group_id}")

    async def _run_once(self, job: PollJob) -> None:
        try:
            result = await self._poll(job)
        except TransactionCancelled:
            logger.debug("Poll for group %s cancelled", job.group_id)
            return
        except RtuMasterError as e:
            job.failed += 1
            if job.cancelled:
                return
            logger.warning("Poll for group %s failed: %s", job.group_id, e)
            if self._on_error is not None:
                self._on_error(job, e)
            return
        if job.cancelled:
            logger.debug("Discarding result for cancelled group %s", job.group_id)
            return
        job.completed += 1
        if self._on_result is not None:
            self._on_result(job, result)
