"""Runtime settings and the versioned topology document (connections, slaves, groups, registers)."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .coordinator import DEFAULT_TIMEOUT
from .delimiter import DEFAULT_QUIET_PERIOD
from .errors import ConfigError, UnknownItemError
from .traffic import DEFAULT_MAX_ENTRIES
from .types import Connection, Register, RegisterAddress, RegisterGroup, RegisterSpace, SerialSettings, Slave

logger = logging.getLogger(__name__)

TOPOLOGY_VERSION = "1.0"


@dataclass(frozen=True)
class MasterSettings:
    """Fixed at connect time."""

    timeout: float = DEFAULT_TIMEOUT
    quiet_period: float = DEFAULT_QUIET_PERIOD
    traffic_capacity: int = DEFAULT_MAX_ENTRIES

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.quiet_period <= 0:
            raise ValueError(f"quiet_period must be > 0, got {self.quiet_period}")
        if self.quiet_period >= self.timeout:
            raise ValueError("quiet_period must be shorter than timeout")
        if self.traffic_capacity <= 0:
            raise ValueError(f"traffic_capacity must be > 0, got {self.traffic_capacity}")


def _require(raw: dict[str, Any], key: str, kind: str) -> Any:
    if key not in raw:
        raise ConfigError(f"{kind} entry missing {key!r}: {raw!r}")
    return raw[key]


def _parse_connection(raw: dict[str, Any]) -> Connection:
    conn_id = str(_require(raw, "id", "connection"))
    try:
        serial = SerialSettings(
            port=str(raw.get("port") or raw.get("portName") or ""),
            baudrate=int(raw.get("baudRate", 9600)),
            parity=str(raw.get("parity", "none")),
            bytesize=int(raw.get("dataBits", 8)),
            stopbits=int(raw.get("stopBits", 1)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid serial settings for connection {conn_id!r}: {e}") from e
    return Connection(id=conn_id, serial=serial, name=str(raw.get("portName") or raw.get("name") or "Serial Port"))


def _parse_slave(raw: dict[str, Any]) -> Slave:
    slave_id = str(_require(raw, "id", "slave"))
    try:
        return Slave(
            id=slave_id,
            connection_id=str(_require(raw, "connectionId", "slave")),
            unit_id=int(_require(raw, "slaveId", "slave")),
            alias=str(raw.get("alias") or ""),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid slave {slave_id!r}: {e}") from e


def _parse_group(raw: dict[str, Any]) -> RegisterGroup:
    group_id = str(_require(raw, "id", "register group"))
    try:
        return RegisterGroup(
            id=group_id,
            slave_id=str(_require(raw, "slaveId", "register group")),
            name=str(raw.get("name") or "Register Group"),
            poll_interval_ms=int(raw.get("pollingInterval", 1000)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid register group {group_id!r}: {e}") from e


def _parse_register(raw: dict[str, Any]) -> Register:
    reg_id = str(_require(raw, "id", "register"))
    try:
        space = RegisterSpace.parse(str(raw.get("type", "4x")))
        address = RegisterAddress(space, int(raw.get("address", 0)))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid register {reg_id!r}: {e}") from e
    return Register(
        id=reg_id,
        address=address,
        group_id=str(_require(raw, "groupId", "register")),
        alias=str(raw.get("alias") or ""),
        comment=str(raw.get("comment") or ""),
    )


class Topology:
    """
    In-memory device tree: connections -> slaves -> register groups -> registers.

    Only topology is held here. Register values live on the Register objects
    and are never written back to the document.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._slaves: dict[str, Slave] = {}
        self._groups: dict[str, RegisterGroup] = {}
        self._registers: dict[str, Register] = {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Topology":
        if not isinstance(data, dict):
            raise ConfigError("Topology document must be a JSON object")
        version = data.get("version")
        if version != TOPOLOGY_VERSION:
            raise ConfigError(f"Unsupported topology version: {version!r}")

        topo = cls()
        for entry in data.get("connections") or []:
            topo.add_connection(_parse_connection(entry))
        for entry in data.get("slaves") or []:
            topo.add_slave(_parse_slave(entry))
        for entry in data.get("registerGroups") or []:
            topo.add_group(_parse_group(entry))
        for entry in data.get("registers") or []:
            topo.add_register(_parse_register(entry))

        logger.debug(
            "Topology loaded: %d connection(s), %d slave(s), %d group(s), %d register(s)",
            len(topo._connections),
            len(topo._slaves),
            len(topo._groups),
            len(topo._registers),
        )
        return topo

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": TOPOLOGY_VERSION,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "connections": [
                {
                    "id": c.id,
                    "port": c.serial.port,
                    "portName": c.name,
                    "baudRate": c.serial.baudrate,
                    "parity": c.serial.parity,
                    "dataBits": c.serial.bytesize,
                    "stopBits": c.serial.stopbits,
                }
                for c in self._connections.values()
            ],
            "slaves": [
                {"id": s.id, "connectionId": s.connection_id, "slaveId": s.unit_id, "alias": s.alias}
                for s in self._slaves.values()
            ],
            "registerGroups": [
                {"id": g.id, "slaveId": g.slave_id, "name": g.name, "pollingInterval": g.poll_interval_ms}
                for g in self._groups.values()
            ],
            "registers": [
                {
                    "id": r.id,
                    "groupId": r.group_id,
                    "type": r.space.prefix,
                    "address": r.offset,
                    "alias": r.alias,
                    "comment": r.comment,
                }
                for r in self._registers.values()
            ],
        }

    # -- building --------------------------------------------------------

    def add_connection(self, connection: Connection) -> Connection:
        if connection.id in self._connections:
            raise ConfigError(f"Duplicate connection id: {connection.id}")
        self._connections[connection.id] = connection
        return connection

    def add_slave(self, slave: Slave) -> Slave:
        if slave.id in self._slaves:
            raise ConfigError(f"Duplicate slave id: {slave.id}")
        if slave.connection_id not in self._connections:
            raise ConfigError(f"Slave {slave.id} references unknown connection {slave.connection_id}")
        self._slaves[slave.id] = slave
        return slave

    def add_group(self, group: RegisterGroup) -> RegisterGroup:
        if group.id in self._groups:
            raise ConfigError(f"Duplicate register group id: {group.id}")
        if group.slave_id not in self._slaves:
            raise ConfigError(f"Register group {group.id} references unknown slave {group.slave_id}")
        self._groups[group.id] = group
        return group

    def add_register(self, register: Register) -> Register:
        if register.id in self._registers:
            raise ConfigError(f"Duplicate register id: {register.id}")
        group = self._groups.get(register.group_id)
        if group is None:
            raise ConfigError(f"Register {register.id} references unknown group {register.group_id}")
        self._registers[register.id] = register
        group.registers.append(register)
        return register

    # -- lookups ---------------------------------------------------------

    def connection(self, connection_id: str) -> Connection:
        if connection_id not in self._connections:
            raise UnknownItemError("connection", connection_id)
        return self._connections[connection_id]

    def slave(self, slave_id: str) -> Slave:
        if slave_id not in self._slaves:
            raise UnknownItemError("slave", slave_id)
        return self._slaves[slave_id]

    def group(self, group_id: str) -> RegisterGroup:
        if group_id not in self._groups:
            raise UnknownItemError("register group", group_id)
        return self._groups[group_id]

    def register(self, register_id: str) -> Register:
        if register_id not in self._registers:
            raise UnknownItemError("register", register_id)
        return self._registers[register_id]

    @property
    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    @property
    def groups(self) -> list[RegisterGroup]:
        return list(self._groups.values())

    def slaves_for_connection(self, connection_id: str) -> list[Slave]:
        return [s for s in self._slaves.values() if s.connection_id == connection_id]

    def groups_for_slave(self, slave_id: str) -> list[RegisterGroup]:
        return [g for g in self._groups.values() if g.slave_id == slave_id]

    def slave_for_group(self, group_id: str) -> Slave:
        return self.slave(self.group(group_id).slave_id)

    def connection_for_group(self, group_id: str) -> Connection:
        return self.connection(self.slave_for_group(group_id).connection_id)


def load_topology(path: Path | str) -> Topology:
    """Read a topology JSON document from disk."""
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Topology file not found: {p}") from None
    except json.JSONDecodeError as e:
        raise ConfigError(f"Topology file {p} is not valid JSON: {e}") from e
    return Topology.from_dict(data)


def save_topology(topology: Topology, path: Path | str) -> None:
    Path(path).write_text(json.dumps(topology.to_dict(), indent=2), encoding="utf-8")
