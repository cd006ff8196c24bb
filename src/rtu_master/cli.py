#!/usr/bin/env python3
"""Command line front end for rtu-master using Typer."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .codec import append_crc, crc16, format_hex, validate_crc
from .config import MasterSettings, Topology, load_topology
from .errors import ConfigError, InvalidAddressError, RtuMasterError
from .interpret import (
    WordOrder,
    from_signed16,
    to_ascii,
    to_binary_string,
    to_float32,
    to_float64,
    to_hex_string,
    to_long32,
    to_signed16,
)
from .master import GroupReadResult, RtuMaster
from .normalize import parse_register_ref
from .traffic import TrafficEntry
from .transport import SerialTransport
from .types import Connection, Register, RegisterAddress, RegisterGroup, RegisterSpace, SerialSettings, Slave

app = typer.Typer(
    name="rtumaster",
    help="Modbus RTU master for RS-485 field devices.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

PortOption = Annotated[
    Optional[str],
    typer.Option("--port", "-p", help="Serial device (e.g. /dev/ttyUSB0, COM3)", envvar="RTU_MASTER_PORT"),
]
BaudrateOption = Annotated[
    int,
    typer.Option("--baudrate", "-b", help="Baud rate", envvar="RTU_MASTER_BAUDRATE"),
]
ParityOption = Annotated[
    str,
    typer.Option("--parity", help="Parity: none, even, odd", envvar="RTU_MASTER_PARITY"),
]
BytesizeOption = Annotated[
    int,
    typer.Option("--bytesize", help="Data bits (7 or 8)", envvar="RTU_MASTER_BYTESIZE"),
]
StopbitsOption = Annotated[
    int,
    typer.Option("--stopbits", help="Stop bits (1 or 2)", envvar="RTU_MASTER_STOPBITS"),
]
UnitIdOption = Annotated[
    int,
    typer.Option("--unit-id", "-u", help="Modbus unit ID (1-247)", envvar="RTU_MASTER_UNIT_ID"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Response timeout in seconds", envvar="RTU_MASTER_TIMEOUT"),
]
QuietOption = Annotated[
    float,
    typer.Option(
        "--quiet-period",
        help="Line silence in seconds that ends a response frame",
        envvar="RTU_MASTER_QUIET_PERIOD",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]
SignedOption = Annotated[
    bool,
    typer.Option("--signed", help="Interpret register values as signed 16-bit integers"),
]
TraceOption = Annotated[
    bool,
    typer.Option("--trace", help="Echo every TX/RX frame and error to stderr"),
]
TrafficOutOption = Annotated[
    Optional[Path],
    typer.Option("--traffic-out", help="Write the traffic log as JSON to this file on exit"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_master(
    port: Optional[str],
    baudrate: int,
    parity: str,
    bytesize: int,
    stopbits: int,
    timeout: float,
    quiet_period: float,
    topology: Topology | None = None,
) -> RtuMaster:
    """Create an RtuMaster on a serial transport; exits with 2 on bad parameters."""
    if not port:
        typer.echo("Error: --port is required for this command", err=True)
        raise typer.Exit(2)
    try:
        serial_settings = SerialSettings(port=port, baudrate=baudrate, parity=parity, bytesize=bytesize, stopbits=stopbits)
        settings = MasterSettings(timeout=timeout, quiet_period=quiet_period)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    return RtuMaster(SerialTransport(serial_settings), topology=topology, settings=settings)


def attach_traffic_output(master: RtuMaster, trace: bool) -> None:
    if not trace:
        return

    def echo(entry: TrafficEntry) -> None:
        ts = entry.timestamp.strftime("%H:%M:%S.%f")[:-3]
        typer.echo(f"{ts} {entry.direction.value:<5} {entry.data}", err=True)

    master.traffic.on_entry = echo


def write_traffic(master: RtuMaster, traffic_out: Optional[Path]) -> None:
    if traffic_out is not None:
        traffic_out.write_text(master.traffic.export_json(), encoding="utf-8")


def parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    v = value.lower().strip()
    if v in ("true", "1", "on", "yes"):
        return True
    if v in ("false", "0", "off", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def parse_int(value: str, signed: bool = False) -> int:
    """Parse integer value from string, supporting hex and validation."""
    v = value.strip()
    if v.lower().startswith("0x"):
        num = int(v, 16)
    else:
        num = int(v)

    if signed:
        if not (-32768 <= num <= 32767):
            raise ValueError(f"Signed 16-bit integer out of range: {num}")
    else:
        if not (0 <= num <= 65535):
            raise ValueError(f"Unsigned 16-bit integer out of range: {num}")

    return num


def format_value(value: bool | int, signed: bool = False) -> str:
    """Format value for display."""
    if isinstance(value, bool):
        return str(value).lower()
    if signed:
        return str(to_signed16(value))
    return str(value)


def display_value(register: Register, signed: bool) -> bool | int:
    if register.space.is_bit:
        return bool(register.value)
    return to_signed16(register.value) if signed else register.value


def registers_from_refs(refs: list[str]) -> list[Register]:
    """One Register per reference; the reference string doubles as id and alias."""
    registers: list[Register] = []
    for ref in refs:
        address = parse_register_ref(ref)
        registers.append(Register(id=ref, address=address, alias=ref))
    return registers


def report_read_errors(result: GroupReadResult) -> None:
    for req, err in result.errors:
        typer.echo(
            f"Error: {req.space.value} {req.start}..{req.start + req.quantity - 1}: {err}",
            err=True,
        )


def _exit_for(e: BaseException, verbose: bool) -> typer.Exit:
    if isinstance(e, (InvalidAddressError, ConfigError)):
        typer.echo(f"Error: {e}", err=True)
        return typer.Exit(2)
    if isinstance(e, RtuMasterError):
        typer.echo(f"Error: Modbus/transport error: {e}", err=True)
        return typer.Exit(3)
    typer.echo(f"Error: Unexpected error: {e}", err=True)
    if verbose:
        import traceback
        traceback.print_exc()
    return typer.Exit(4)


# ============================================================================
# Commands
# ============================================================================


@app.command()
def ping(
    port: PortOption = None,
    baudrate: BaudrateOption = 9600,
    parity: ParityOption = "none",
    bytesize: BytesizeOption = 8,
    stopbits: StopbitsOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    quiet_period: QuietOption = 0.05,
    verbose: VerboseOption = False,
    trace: TraceOption = False,
) -> None:
    """
    Test that a unit answers on the bus.

    Reads 1 holding register at offset 0. An exception response still counts
    as reachable.
    """
    setup_logging(verbose)
    master = create_master(port, baudrate, parity, bytesize, stopbits, timeout, quiet_period)
    attach_traffic_output(master, trace)

    async def run() -> None:
        async with master:
            result = await master.test_connection(unit_id)
        if result.exception is not None:
            typer.echo(f"OK: unit {unit_id} reachable on {port} (exception: {result.exception})")
        else:
            typer.echo(f"OK: unit {unit_id} reachable on {port}")

    try:
        asyncio.run(run())
    except typer.Exit:
        raise
    except Exception as e:
        raise _exit_for(e, verbose)


@app.command()
def info(
    port: PortOption = None,
    baudrate: BaudrateOption = 9600,
    parity: ParityOption = "none",
    bytesize: BytesizeOption = 8,
    stopbits: StopbitsOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    quiet_period: QuietOption = 0.05,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show package version and line settings, and optionally test connectivity.

    Without --port: shows local metadata only.
    With --port: also tests the unit.
    """
    setup_logging(verbose)

    info_data: dict[str, Any] = {
        "version": __version__,
        "timeout": timeout,
        "quiet_period": quiet_period,
    }

    if port:
        master = create_master(port, baudrate, parity, bytesize, stopbits, timeout, quiet_period)

        async def run() -> None:
            async with master:
                await master.test_connection(unit_id)

        try:
            asyncio.run(run())
            status = {"status": "connected"}
        except RtuMasterError as e:
            status = {"status": "failed", "error": str(e)}
        except Exception as e:
            status = {"status": "error", "error": str(e)}
        info_data["connectivity"] = {**status, "port": port, "unit_id": unit_id}

    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"rtu-master version: {info_data['version']}")
        typer.echo(f"Timeout: {timeout}s, quiet period: {quiet_period}s")
        if "connectivity" in info_data:
            conn = info_data["connectivity"]
            if conn["status"] == "connected":
                typer.echo(f"Connectivity: OK ({port}, unit {unit_id})")
            elif conn["status"] == "failed":
                typer.echo(f"Connectivity: FAILED ({port}): {conn['error']}")
            else:
                typer.echo(f"Connectivity: ERROR - {conn.get('error', 'unknown')}")


@app.command()
def read(
    refs: Annotated[list[str], typer.Argument(help="Registers to read (e.g. 40001, 4x:0, coil:12, ir:0x10)")],
    port: PortOption = None,
    baudrate: BaudrateOption = 9600,
    parity: ParityOption = "none",
    bytesize: BytesizeOption = 8,
    stopbits: StopbitsOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    quiet_period: QuietOption = 0.05,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
    signed: SignedOption = False,
    as_float: Annotated[bool, typer.Option("--float", help="Read each reference and the next as a 32-bit float")] = False,
    order: Annotated[str, typer.Option("--order", help="Word/byte order for --float: ABCD, CDAB, BADC, DCBA")] = "ABCD",
    trace: TraceOption = False,
    traffic_out: TrafficOutOption = None,
) -> None:
    """
    Read registers once, coalescing them into as few requests as possible.

    Prints name=value lines, or a JSON object with --json.
    """
    setup_logging(verbose)

    try:
        word_order = WordOrder(order.upper())
        registers = registers_from_refs(refs)
        extra: dict[str, Register] = {}
        if as_float:
            for reg in registers:
                if reg.space.is_bit:
                    raise InvalidAddressError(reg.id, f"--float needs a register, not {reg.space.value}")
                nxt = RegisterAddress(reg.space, reg.offset + 1)
                extra[reg.id] = Register(id=f"{reg.id}+1", address=nxt)
    except (InvalidAddressError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    master = create_master(port, baudrate, parity, bytesize, stopbits, timeout, quiet_period)
    attach_traffic_output(master, trace)

    async def run() -> GroupReadResult:
        try:
            async with master:
                return await master.read_registers(unit_id, registers + list(extra.values()))
        finally:
            write_traffic(master, traffic_out)

    try:
        result = asyncio.run(run())
    except typer.Exit:
        raise
    except Exception as e:
        raise _exit_for(e, verbose)

    values: dict[str, Any] = {}
    for reg in registers:
        if reg.id not in result.values:
            continue
        if as_float:
            low = extra[reg.id]
            if low.id not in result.values:
                continue
            values[reg.id] = to_float32(reg.value, low.value, word_order)
        else:
            values[reg.id] = display_value(reg, signed)

    if json_output:
        typer.echo(json.dumps(values))
    else:
        for name, value in values.items():
            typer.echo(f"{name}={value:.6g}" if as_float else f"{name}={format_value(value, False)}")

    if result.errors:
        report_read_errors(result)
        raise typer.Exit(3)


@app.command()
def write(
    ref: Annotated[str, typer.Argument(help="Coil or holding register to write (e.g. 40001, coil:5)")],
    values: Annotated[list[str], typer.Argument(help="Value(s); several values use a multiple-write request")],
    port: PortOption = None,
    baudrate: BaudrateOption = 9600,
    parity: ParityOption = "none",
    bytesize: BytesizeOption = 8,
    stopbits: StopbitsOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    quiet_period: QuietOption = 0.05,
    verbose: VerboseOption = False,
    signed: SignedOption = False,
    trace: TraceOption = False,
) -> None:
    """
    Write one or more consecutive coils or holding registers.

    Coils accept true/false, 1/0, on/off, yes/no. Registers accept decimal or
    0x hex; --signed allows -32768..32767.
    """
    setup_logging(verbose)

    try:
        address = parse_register_ref(ref)
        if not address.space.writable:
            raise ValueError(f"Register space {address.space.value} is read-only")
        parsed: list[int | bool] = []
        for raw in values:
            if address.space == RegisterSpace.COIL:
                parsed.append(parse_bool(raw))
            else:
                parsed.append(from_signed16(parse_int(raw, signed)))
    except (InvalidAddressError, ValueError) as e:
        typer.echo(f"Error: Invalid value: {e}", err=True)
        raise typer.Exit(2)

    master = create_master(port, baudrate, parity, bytesize, stopbits, timeout, quiet_period)
    attach_traffic_output(master, trace)

    async def run() -> None:
        async with master:
            if len(parsed) == 1:
                await master.write_register(unit_id, address, parsed[0])
            else:
                await master.write_registers(unit_id, address, parsed)

    try:
        asyncio.run(run())
    except typer.Exit:
        raise
    except Exception as e:
        raise _exit_for(e, verbose)
    typer.echo(f"OK: Wrote {ref} = {' '.join(values)}")


def _adhoc_topology(refs: list[str], port: str, unit_id: int, interval_ms: int) -> Topology:
    topo = Topology()
    topo.add_connection(Connection(id="cli", serial=SerialSettings(port=port)))
    topo.add_slave(Slave(id="cli", connection_id="cli", unit_id=unit_id))
    topo.add_group(RegisterGroup(id="cli", slave_id="cli", name="command line", poll_interval_ms=interval_ms))
    for reg in registers_from_refs(refs):
        reg.group_id = "cli"
        topo.add_register(reg)
    return topo


@app.command()
def poll(
    refs: Annotated[Optional[list[str]], typer.Argument(help="Registers to poll (ignored with --config)")] = None,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", envvar="RTU_MASTER_CONFIG", help="Topology JSON document"),
    ] = None,
    groups: Annotated[
        Optional[list[str]],
        typer.Option("--group", "-g", help="Register group id from --config (repeatable; default all)"),
    ] = None,
    port: PortOption = None,
    baudrate: BaudrateOption = 9600,
    parity: ParityOption = "none",
    bytesize: BytesizeOption = 8,
    stopbits: StopbitsOption = 1,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 2.0,
    quiet_period: QuietOption = 0.05,
    verbose: VerboseOption = False,
    signed: SignedOption = False,
    interval: Annotated[float, typer.Option("--interval", "-i", help="Polling interval in seconds (ad-hoc refs)")] = 1.0,
    count: Annotated[int, typer.Option("--count", "-n", help="Stop after this many group updates (0: run until Ctrl+C)")] = 0,
    once: Annotated[bool, typer.Option("--once", help="Read every group once and exit")] = False,
    format: Annotated[str, typer.Option("--format", "-f", help="Output format: text, json, csv")] = "text",
    trace: TraceOption = False,
    traffic_out: TrafficOutOption = None,
) -> None:
    """
    Poll register groups periodically, each on its own timer.

    Ad-hoc: rtumaster poll 40001 40002 --port /dev/ttyUSB0 --interval 0.5
    From a topology: rtumaster poll --config plant.json --group g1 --group g2

    A tick that fires while the group's previous read is still on the wire is
    dropped, not queued. Output per update: text (timestamp name=value ...),
    json (NDJSON) or csv.
    """
    setup_logging(verbose)

    if format not in ("text", "json", "csv"):
        typer.echo(f"Error: Invalid format '{format}'. Must be text, json, or csv.", err=True)
        raise typer.Exit(2)
    if interval <= 0:
        typer.echo(f"Error: Interval must be positive, got {interval}", err=True)
        raise typer.Exit(2)
    if count < 0:
        typer.echo(f"Error: Count must not be negative, got {count}", err=True)
        raise typer.Exit(2)

    try:
        if config is not None:
            topology = load_topology(config)
            group_ids = list(groups) if groups else [g.id for g in topology.groups]
            if not group_ids:
                raise ConfigError(f"No register groups in {config}")
            selected = [topology.group(gid) for gid in group_ids]
            connections = {topology.connection_for_group(gid).id for gid in group_ids}
            if len(connections) > 1:
                raise ConfigError("Selected groups span more than one connection; poll one bus at a time")
            line = topology.connection_for_group(group_ids[0]).serial
            if not port:
                port, baudrate, parity = line.port, line.baudrate, line.parity
                bytesize, stopbits = line.bytesize, line.stopbits
        else:
            if not refs:
                typer.echo("Error: At least one register is required for poll", err=True)
                raise typer.Exit(2)
            topology = _adhoc_topology(refs, port or "", unit_id, max(1, int(interval * 1000)))
            group_ids = ["cli"]
            selected = [topology.group("cli")]
    except (InvalidAddressError, ConfigError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    labels = [reg.label for group in selected for reg in group.registers]
    master = create_master(port, baudrate, parity, bytesize, stopbits, timeout, quiet_period, topology=topology)
    attach_traffic_output(master, trace)

    if format == "csv":
        typer.echo("timestamp,group," + ",".join(labels))

    def emit(group: RegisterGroup, result: GroupReadResult) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        shown = {reg.label: display_value(reg, signed) for reg in group.registers if reg.id in result.values}
        if format == "text":
            pairs = " ".join(f"{name}={format_value(v)}" for name, v in shown.items())
            typer.echo(f"{timestamp} {group.name} {pairs}")
        elif format == "json":
            typer.echo(json.dumps({"timestamp": timestamp, "group": group.id, "values": shown}))
        else:
            cells = [format_value(shown[name]) if name in shown else "" for name in labels]
            typer.echo(f"{timestamp},{group.id}," + ",".join(cells))
        report_read_errors(result)

    async def run() -> None:
        done = asyncio.Event()
        updates = 0
        failure: list[BaseException] = []

        def on_update(group: RegisterGroup, result: GroupReadResult) -> None:
            nonlocal updates
            emit(group, result)
            updates += 1
            if count and updates >= count:
                done.set()

        def on_error(group: RegisterGroup, error: BaseException) -> None:
            typer.echo(f"Error: group {group.id}: {error}", err=True)
            failure.append(error)
            done.set()

        master.on_group_update = on_update
        master.on_poll_error = on_error
        try:
            async with master:
                if once:
                    for gid in group_ids:
                        await master.read_group(gid)
                    return
                for gid in group_ids:
                    master.start_polling(gid)
                await done.wait()
        finally:
            write_traffic(master, traffic_out)
        if failure:
            raise failure[0]

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except typer.Exit:
        raise
    except Exception as e:
        raise _exit_for(e, verbose)


@app.command()
def crc(
    data: Annotated[list[str], typer.Argument(help="Frame bytes in hex (e.g. 01 03 00 00 00 0A or 010300)")],
    check: Annotated[bool, typer.Option("--check", help="Treat the input as a full frame and validate its CRC")] = False,
) -> None:
    """
    Compute or check a Modbus CRC-16 offline. Does not open a port.
    """
    try:
        frame = bytes.fromhex("".join(data))
    except ValueError as e:
        typer.echo(f"Error: Invalid hex input: {e}", err=True)
        raise typer.Exit(2)

    if check:
        if validate_crc(frame):
            typer.echo(f"OK: {format_hex(frame)}")
            return
        typer.echo(f"INVALID: {format_hex(frame)}", err=True)
        raise typer.Exit(1)

    value = crc16(frame)
    typer.echo(f"CRC:   {to_hex_string(value)}")
    typer.echo(f"Frame: {format_hex(append_crc(frame))}")


@app.command()
def decode(
    values: Annotated[list[str], typer.Argument(help="Raw register values, decimal or 0x hex")],
    json_output: JsonOption = False,
) -> None:
    """
    Show signed/hex/binary, 32-bit long and float (all word orders), 64-bit
    double and ASCII views of raw register values. Does not open a port.
    """
    try:
        regs = [parse_int(v) for v in values]
    except ValueError as e:
        typer.echo(f"Error: Invalid value: {e}", err=True)
        raise typer.Exit(2)

    out: dict[str, Any] = {
        "registers": [
            {
                "unsigned": r,
                "signed": to_signed16(r),
                "hex": to_hex_string(r),
                "binary": to_binary_string(r),
            }
            for r in regs
        ],
        "ascii": to_ascii(regs),
    }
    if len(regs) >= 2:
        out["long32"] = {o.value: to_long32(regs[0], regs[1], o) for o in WordOrder}
        out["float32"] = {o.value: to_float32(regs[0], regs[1], o) for o in WordOrder}
    if len(regs) >= 4:
        out["float64"] = {
            "big": to_float64(*regs[:4], big_endian=True),
            "little": to_float64(*regs[:4], big_endian=False),
        }

    if json_output:
        typer.echo(json.dumps(out, indent=2))
        return
    for i, r in enumerate(out["registers"]):
        typer.echo(f"[{i}] {r['unsigned']:>5}  signed {r['signed']:>6}  {r['hex']}  {r['binary']}")
    for key in ("long32", "float32"):
        if key in out:
            typer.echo(f"{key}: " + "  ".join(f"{k}={v:.7g}" if key == "float32" else f"{k}={v}" for k, v in out[key].items()))
    if "float64" in out:
        typer.echo(f"float64: big={out['float64']['big']:.10g}  little={out['float64']['little']:.10g}")
    typer.echo(f"ascii: {out['ascii']!r}")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"rtu-master {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """rtumaster - Modbus RTU master for RS-485 field devices."""
    pass


if __name__ == "__main__":
    app()
