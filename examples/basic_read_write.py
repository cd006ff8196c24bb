#!/usr/bin/env python3
"""Example: open an RS-485 adapter, test a slave, read a few registers and write one."""

import asyncio
import sys

from rtu_master import RtuMaster, SerialTransport, parse_register_ref
from rtu_master.errors import InvalidAddressError, ProtocolException, RtuMasterError, TransportError
from rtu_master.interpret import to_float32
from rtu_master.types import Register, SerialSettings


async def run() -> None:
    settings = SerialSettings(port="/dev/ttyUSB0", baudrate=9600, parity="none")  # change to your adapter
    unit_id = 1

    async with RtuMaster(SerialTransport(settings)) as master:
        result = await master.test_connection(unit_id)
        print(result.message)

        # 40001/40002 and 40011 fit in one request; 30001 needs its own
        registers = [Register(id=ref, address=parse_register_ref(ref)) for ref in ("40001", "40002", "40011", "30001")]
        read = await master.read_registers(unit_id, registers)
        for reg in registers:
            print(f"{reg.id} = {reg.value}")
        for request, error in read.errors:
            print(f"{request.space.value} @ {request.start}: {error}", file=sys.stderr)

        print(f"40001..40002 as float = {to_float32(registers[0].value, registers[1].value):.3f}")

        # Write a holding register (example; uncomment if your device allows)
        # await master.write_register(unit_id, parse_register_ref("40011"), 1234)

        print(master.traffic.export_json())


def main() -> None:
    try:
        asyncio.run(run())
    except InvalidAddressError as e:
        print(f"Invalid register: {e}", file=sys.stderr)
        sys.exit(1)
    except ProtocolException as e:
        print(f"Device exception: {e}", file=sys.stderr)
        sys.exit(1)
    except TransportError as e:
        print(f"Serial port error: {e}", file=sys.stderr)
        sys.exit(1)
    except RtuMasterError as e:
        print(f"Modbus error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
