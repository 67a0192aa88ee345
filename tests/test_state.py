import os
import stat

import pytest

from nmobfs.lib import LoggerConfig
from nmobfs.policy import Technique
from nmobfs.state import KeyValueStateFile, YamlStateFile, ManagedInterface, PersistenceError
from nmobfs.state import discard, interfaces_in, open_state, split_key

LoggerConfig(True, False)

records = {
    "bridge_nm-a": "br0",
    "vlan_nm-a": "200",
    "last_vlan_nm-a": "1000",
    "mac_nm-a": "02:00:00:01:02:03",
    "last_mac_nm-a": "900",
    "vlan_nm-b": "100",
    "last_vlan_nm-b": "50",
}


def test_split_key():
    assert split_key("last_vlan_nm-a") == ("last_vlan", "nm-a")
    assert split_key("vlan_nm-a") == ("vlan", "nm-a")
    assert split_key("shaping_nm_x") == ("shaping", "nm_x")
    assert split_key("unknown_nm-a") is None
    assert split_key("vlan_") is None


def test_interface_from_records():
    iface = ManagedInterface.from_records("nm-a", records)
    assert iface.bridge == "br0"
    assert iface.current_vlan == 200
    assert iface.last_vlan_rotation == 1000
    assert iface.current_mac == "02:00:00:01:02:03"
    assert iface.last_rotation(Technique.MAC) == 900
    assert iface.timing_delay_ms is None


def test_missing_timestamps_default_to_epoch():
    iface = ManagedInterface.from_records("nm-new", records)
    assert iface.last_rotation(Technique.VLAN) == 0
    assert iface.last_rotation(Technique.MAC) == 0
    assert iface.to_records() == {}


def test_value_and_timestamp_written_together():
    iface = ManagedInterface("nm-c", bridge="br0")
    iface.record(Technique.VLAN, 300, 0)
    iface.record(Technique.SHAPING, 75000, 0)
    assert iface.to_records() == {
        "bridge_nm-c": "br0",
        "vlan_nm-c": "300",
        "last_vlan_nm-c": "0",
        "shaping_nm-c": "75000",
    }


def test_discard_removes_whole_group():
    remaining = discard(records, "nm-a")
    assert remaining == {"vlan_nm-b": "100", "last_vlan_nm-b": "50"}
    assert interfaces_in(records) == ["nm-a", "nm-b"]
    assert interfaces_in(remaining) == ["nm-b"]


def test_keyvalue_file(tmp_path):
    path = tmp_path / "state" / "obfuscation-state"
    store = KeyValueStateFile(str(path))
    assert store.load() == {}

    store.save(records)
    assert store.load() == records
    assert "vlan_nm-a=200\n" in path.read_text()
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_keyvalue_skips_malformed_lines(tmp_path):
    path = tmp_path / "obfuscation-state"
    path.write_text("# comment\nvlan_nm-a=100\ngarbage\n\nlast_vlan_nm-a=5\n")
    assert KeyValueStateFile(str(path)).load() == {"vlan_nm-a": "100", "last_vlan_nm-a": "5"}


def test_yaml_file(tmp_path):
    store = open_state(str(tmp_path / "state.yaml"), "yaml")
    assert isinstance(store, YamlStateFile)
    store.save(records)
    assert store.load() == records


def test_yaml_rejects_non_mapping(tmp_path):
    path = tmp_path / "state.yaml"
    path.write_text("- one\n- two\n")
    with pytest.raises(PersistenceError):
        YamlStateFile(str(path)).load()


def test_unreadable_state(tmp_path):
    with pytest.raises(PersistenceError):
        KeyValueStateFile(str(tmp_path)).load()


def test_unwritable_state(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    with pytest.raises(PersistenceError):
        KeyValueStateFile(str(blocker / "obfuscation-state")).save(records)
