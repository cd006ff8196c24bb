#!/usr/bin/env python3
"""Example: poll every register group of a topology file on its own interval; Ctrl+C to stop."""

import asyncio
import sys

from rtu_master import RtuMaster, SerialTransport, load_topology
from rtu_master.errors import ConfigError, RtuMasterError
from rtu_master.master import GroupReadResult
from rtu_master.types import RegisterGroup


def show(group: RegisterGroup, result: GroupReadResult) -> None:
    values = " ".join(f"{reg.label}={reg.value}" for reg in group.registers if reg.id in result.values)
    print(f"[{group.name}] {values}")
    for request, error in result.errors:
        print(f"[{group.name}] {request.space.value} @ {request.start}: {error}", file=sys.stderr)


async def run(path: str) -> None:
    topology = load_topology(path)
    connection = topology.connections[0]
    master = RtuMaster(SerialTransport(connection.serial), topology=topology)
    master.on_group_update = show
    master.on_poll_error = lambda group, e: print(f"[{group.name}] poll failed: {e}", file=sys.stderr)

    async with master:
        for slave in topology.slaves_for_connection(connection.id):
            for group in topology.groups_for_slave(slave.id):
                print(f"Polling {group.name} on unit {slave.unit_id} every {group.poll_interval_ms} ms")
                master.start_polling(group.id)
        await asyncio.Event().wait()


def main() -> None:
    path = sys.argv[1] if len(sys.argv) > 1 else "plant.json"
    try:
        asyncio.run(run(path))
    except KeyboardInterrupt:
        print("\nStopped.")
    except ConfigError as e:
        print(f"Topology error: {e}", file=sys.stderr)
        sys.exit(1)
    except RtuMasterError as e:
        print(f"Modbus/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
