"""Tests for MasterSettings and topology loading, lookup and export."""

import json
from pathlib import Path
from typing import Any

import pytest

from rtu_master.config import MasterSettings, Topology, load_topology, save_topology
from rtu_master.errors import ConfigError, UnknownItemError
from rtu_master.types import RegisterAddress, RegisterSpace


@pytest.fixture
def document() -> dict[str, Any]:
    return {
        "version": "1.0",
        "connections": [
            {
                "id": "c1",
                "port": "/dev/ttyUSB0",
                "portName": "Boiler bus",
                "baudRate": 19200,
                "parity": "even",
                "dataBits": 8,
                "stopBits": 1,
            }
        ],
        "slaves": [{"id": "s1", "connectionId": "c1", "slaveId": 5, "alias": "Boiler"}],
        "registerGroups": [{"id": "g1", "slaveId": "s1", "name": "Temps", "pollingInterval": 500}],
        "registers": [
            {"id": "r1", "groupId": "g1", "type": "4x", "address": 0, "alias": "supply", "comment": "degC x10"},
            {"id": "r2", "groupId": "g1", "type": "3x", "address": 7},
            {"id": "r3", "groupId": "g1", "type": "coil", "address": 2},
        ],
    }


def test_from_dict(document: dict[str, Any]) -> None:
    topo = Topology.from_dict(document)
    conn = topo.connection("c1")
    assert conn.name == "Boiler bus"
    assert conn.serial.port == "/dev/ttyUSB0"
    assert conn.serial.baudrate == 19200
    assert conn.serial.parity == "even"
    slave = topo.slave("s1")
    assert slave.unit_id == 5
    assert slave.alias == "Boiler"
    group = topo.group("g1")
    assert group.poll_period == 0.5
    assert [r.id for r in group.registers] == ["r1", "r2", "r3"]
    assert topo.register("r2").address == RegisterAddress(RegisterSpace.INPUT_REGISTER, 7)
    assert topo.register("r3").space == RegisterSpace.COIL
    assert topo.register("r1").label == "supply"
    assert topo.register("r2").label == "3x:7"


def test_relationship_lookups(document: dict[str, Any]) -> None:
    topo = Topology.from_dict(document)
    assert [s.id for s in topo.slaves_for_connection("c1")] == ["s1"]
    assert [g.id for g in topo.groups_for_slave("s1")] == ["g1"]
    assert topo.slave_for_group("g1").unit_id == 5
    assert topo.connection_for_group("g1").id == "c1"


def test_unknown_ids(document: dict[str, Any]) -> None:
    topo = Topology.from_dict(document)
    with pytest.raises(UnknownItemError) as exc_info:
        topo.group("nope")
    assert exc_info.value.kind == "register group"
    assert exc_info.value.item_id == "nope"
    with pytest.raises(UnknownItemError):
        topo.register("nope")


def test_round_trip_through_file(document: dict[str, Any], tmp_path: Path) -> None:
    path = tmp_path / "plant.json"
    save_topology(Topology.from_dict(document), path)
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["version"] == "1.0"
    assert "exportedAt" in saved
    assert saved["connections"][0]["portName"] == "Boiler bus"
    assert saved["registers"][2]["type"] == "0x"
    reloaded = load_topology(path)
    assert reloaded.register("r1").comment == "degC x10"


@pytest.mark.parametrize(
    ("mutate", "message"),
    [
        (lambda d: d.update(version="2.0"), "Unsupported topology version"),
        (lambda d: d["slaves"][0].update(connectionId="c9"), "unknown connection"),
        (lambda d: d["registers"][0].update(groupId="g9"), "unknown group"),
        (lambda d: d["registers"][1].update(id="r1"), "Duplicate register id"),
        (lambda d: d["registers"][0].update(type="9x"), "Invalid register"),
        (lambda d: d["slaves"][0].update(slaveId=0), "Invalid slave"),
        (lambda d: d["connections"][0].update(parity="mark"), "Invalid serial settings"),
        (lambda d: d["registerGroups"][0].pop("slaveId"), "missing 'slaveId'"),
    ],
)
def test_invalid_documents(document: dict[str, Any], mutate: Any, message: str) -> None:
    mutate(document)
    with pytest.raises(ConfigError, match=message):
        Topology.from_dict(document)


def test_load_missing_and_malformed(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_topology(tmp_path / "missing.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError, match="not valid JSON"):
        load_topology(bad)


def test_master_settings_validation() -> None:
    settings = MasterSettings()
    assert settings.timeout == 2.0
    assert settings.quiet_period == 0.05
    assert settings.traffic_capacity == 1000
    with pytest.raises(ValueError):
        MasterSettings(timeout=0)
    with pytest.raises(ValueError):
        MasterSettings(timeout=0.05, quiet_period=0.05)
    with pytest.raises(ValueError):
        MasterSettings(traffic_capacity=0)
