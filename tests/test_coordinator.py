"""Tests for the transaction coordinator against a simulated slave."""

import asyncio
from typing import Any

import pytest

from rtu_master.codec import build_read_frame, build_write_single_register
from rtu_master.coordinator import TransactionCoordinator
from rtu_master.errors import (
    BusyError,
    CrcInvalid,
    ProtocolException,
    TransactionCancelled,
    TransactionTimeout,
    TransportError,
    UnexpectedFunctionCode,
)
from rtu_master.traffic import Direction, TrafficLog
from rtu_master.types import TransactionState

QUIET = 0.02
TIMEOUT = 0.3

READ_HR0 = build_read_frame(1, 0x03, 0, 2)


def make_coordinator(transport: Any) -> TransactionCoordinator:
    return TransactionCoordinator(transport, timeout=TIMEOUT, quiet_period=QUIET, traffic=TrafficLog())


def test_execute_returns_validated_response(transport: Any) -> None:
    async def run() -> tuple[bytes, TransactionCoordinator]:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            return await coord.execute(READ_HR0), coord
        finally:
            await coord.close()

    response, coord = asyncio.run(run())
    assert response[:7] == bytes([0x01, 0x03, 0x04, 0x12, 0x34, 0x56, 0x78])
    assert [e.direction for e in coord.traffic.entries] == [Direction.TX, Direction.RX]
    assert coord.last_transaction is not None
    assert coord.last_transaction.state == TransactionState.COMPLETED
    assert transport.closed == 1


def test_response_split_across_reads(make_transport: Any) -> None:
    transport = make_transport(chunks=3, chunk_gap=QUIET / 4)

    async def run() -> bytes:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            return await coord.execute(READ_HR0)
        finally:
            await coord.close()

    assert asyncio.run(run())[3:7] == bytes([0x12, 0x34, 0x56, 0x78])


def test_concurrent_callers_are_serialized(transport: Any) -> None:
    frames = [build_read_frame(1, 0x03, i, 1) for i in range(5)]

    async def run() -> list[bytes]:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            return await asyncio.gather(*(coord.execute(f) for f in frames))
        finally:
            await coord.close()

    responses = asyncio.run(run())
    assert len(responses) == 5
    assert transport.overlaps == 0
    # FIFO: wire order equals submission order
    assert transport.writes == frames


def test_busy_when_not_waiting(transport: Any) -> None:
    async def run() -> None:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            first = asyncio.create_task(coord.execute(READ_HR0))
            await asyncio.sleep(0)
            assert coord.busy
            with pytest.raises(BusyError):
                await coord.execute(READ_HR0, wait=False)
            await first
            # idle again: no-wait call goes through
            await coord.execute(READ_HR0, wait=False)
        finally:
            await coord.close()

    asyncio.run(run())
    assert len(transport.writes) == 2


def test_busy_while_callers_are_queued(transport: Any) -> None:
    async def run() -> None:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            first = asyncio.create_task(coord.execute(READ_HR0))
            second = asyncio.create_task(coord.execute(READ_HR0))
            await asyncio.sleep(0)
            assert coord.queued == 1
            await first
            with pytest.raises(BusyError):
                await coord.execute(READ_HR0, wait=False)
            await second
        finally:
            await coord.close()

    asyncio.run(run())
    assert len(transport.writes) == 2


def test_timeout_then_recovery(transport: Any) -> None:
    transport.device.silent = True

    async def run() -> TransactionCoordinator:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            with pytest.raises(TransactionTimeout, match="Response timeout"):
                await coord.execute(READ_HR0)
            failed = coord.last_transaction
            assert failed is not None and failed.state == TransactionState.FAILED
            await coord.execute(READ_HR0)
        finally:
            await coord.close()
        return coord

    coord = asyncio.run(run())
    errors = [e for e in coord.traffic.entries if e.direction == Direction.ERROR]
    assert len(errors) == 1
    assert errors[0].error == "Response timeout"


def test_crc_failure(transport: Any) -> None:
    transport.device.corrupt = True

    async def run() -> None:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            with pytest.raises(CrcInvalid):
                await coord.execute(READ_HR0)
            assert coord.last_transaction is not None
            assert coord.last_transaction.response is not None
        finally:
            await coord.close()

    asyncio.run(run())


def test_exception_response(transport: Any) -> None:
    transport.device.exception_code = 0x02

    async def run() -> None:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            with pytest.raises(ProtocolException, match="Illegal Data Address"):
                await coord.execute(READ_HR0)
        finally:
            await coord.close()

    asyncio.run(run())


def test_unexpected_function_code(transport: Any) -> None:
    transport.device.wrong_function = True

    async def run() -> None:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            with pytest.raises(UnexpectedFunctionCode):
                await coord.execute(READ_HR0)
        finally:
            await coord.close()

    asyncio.run(run())


def test_unsolicited_frame_is_discarded(transport: Any) -> None:
    async def run() -> TransactionCoordinator:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            transport.inject(b"\x07\x07\x07")
            await asyncio.sleep(QUIET * 3)
            await coord.execute(READ_HR0)
        finally:
            await coord.close()
        return coord

    coord = asyncio.run(run())
    first = coord.traffic.entries[0]
    assert first.direction == Direction.RX
    assert first.data == "07 07 07"
    assert first.error == "unsolicited frame discarded"


def test_late_response_after_timeout_is_discarded(make_transport: Any) -> None:
    transport = make_transport(delay=TIMEOUT + 0.05)

    async def run() -> TransactionCoordinator:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            with pytest.raises(TransactionTimeout):
                await coord.execute(READ_HR0)
            await asyncio.sleep(0.15)
        finally:
            await coord.close()
        return coord

    coord = asyncio.run(run())
    assert coord.traffic.entries[-1].error == "unsolicited frame discarded"


def test_residual_bytes_cleared_before_send(transport: Any) -> None:
    async def run() -> bytes:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            transport.inject(b"\xFF\xFE")
            return await coord.execute(READ_HR0)
        finally:
            await coord.close()

    assert asyncio.run(run())[0:2] == b"\x01\x03"


def test_close_cancels_pending_and_queued(transport: Any) -> None:
    transport.device.silent = True

    async def run() -> tuple[list[Any], TransactionCoordinator]:
        coord = make_coordinator(transport)
        await coord.open()
        pending = asyncio.create_task(coord.execute(READ_HR0))
        queued = asyncio.create_task(coord.execute(build_write_single_register(1, 0, 5)))
        await asyncio.sleep(0.02)
        assert coord.queued == 1
        await coord.close()
        results = await asyncio.gather(pending, queued, return_exceptions=True)
        return results, coord

    results, coord = asyncio.run(run())
    assert all(isinstance(r, TransactionCancelled) for r in results)
    # the queued write never reached the wire
    assert len(transport.writes) == 1
    assert not coord.is_open


def test_execute_requires_open(transport: Any) -> None:
    async def run() -> None:
        coord = make_coordinator(transport)
        with pytest.raises(TransportError, match="Not connected"):
            await coord.execute(READ_HR0)
        await coord.open()
        await coord.close()
        with pytest.raises(TransportError, match="Not connected"):
            await coord.execute(READ_HR0)

    asyncio.run(run())


def test_short_request_rejected(transport: Any) -> None:
    async def run() -> None:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            with pytest.raises(ValueError):
                await coord.execute(b"\x01\x03")
        finally:
            await coord.close()

    asyncio.run(run())


def test_write_failure_is_transport_error(transport: Any) -> None:
    async def run() -> TransactionCoordinator:
        coord = make_coordinator(transport)
        await coord.open()
        transport.fail_writes = True
        try:
            with pytest.raises(TransportError):
                await coord.execute(READ_HR0)
        finally:
            await coord.close()
        return coord

    coord = asyncio.run(run())
    assert coord.traffic.entries[-1].direction == Direction.ERROR
    assert not coord.is_open
    assert transport.closed == 1
    assert coord.failures == 1
    assert coord.frames_sent == 0


def test_open_failure_propagates(transport: Any) -> None:
    transport.fail_open = True

    async def run() -> TransactionCoordinator:
        coord = make_coordinator(transport)
        with pytest.raises(TransportError, match="no such device"):
            await coord.open()
        return coord

    coord = asyncio.run(run())
    assert not coord.is_open
    assert coord.traffic.entries[-1].direction == Direction.ERROR


def test_timeout_must_be_positive(transport: Any) -> None:
    with pytest.raises(ValueError):
        TransactionCoordinator(transport, timeout=0)


def test_write_failure_cancels_queued_callers(transport: Any) -> None:
    async def run() -> list[Any]:
        coord = make_coordinator(transport)
        await coord.open()
        calls = [asyncio.create_task(coord.execute(build_read_frame(1, 0x03, i, 1))) for i in range(3)]
        await asyncio.sleep(0)
        assert coord.queued == 2
        # the in-flight read completes, the next write hits a dead port
        transport.fail_writes = True
        results = await asyncio.gather(*calls, return_exceptions=True)
        with pytest.raises(TransportError, match="Not connected"):
            await coord.execute(READ_HR0)
        return results

    results = asyncio.run(run())
    assert isinstance(results[0], bytes)
    assert isinstance(results[1], TransportError)
    assert isinstance(results[2], TransactionCancelled)
    assert transport.writes == [build_read_frame(1, 0x03, 0, 1)]
    assert transport.closed == 1


def test_frame_counters(transport: Any) -> None:
    async def run() -> TransactionCoordinator:
        coord = make_coordinator(transport)
        await coord.open()
        try:
            await coord.execute(READ_HR0)
            transport.device.corrupt = True
            with pytest.raises(CrcInvalid):
                await coord.execute(READ_HR0)
            transport.device.silent = True
            with pytest.raises(TransactionTimeout):
                await coord.execute(READ_HR0)
        finally:
            await coord.close()
        return coord

    coord = asyncio.run(run())
    assert coord.frames_sent == 3
    assert coord.frames_received == 2
    assert coord.failures == 2


def test_transact_without_open_is_not_connected(transport: Any) -> None:
    coord = make_coordinator(transport)
    with pytest.raises(TransportError, match="Not connected"):
        asyncio.run(coord._transact(READ_HR0, 0))
