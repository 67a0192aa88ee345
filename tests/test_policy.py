from io import StringIO

import attrs
import pytest

from nmobfs.datalib import parse_shell_vars
from nmobfs.lib import LoggerConfig
from nmobfs.policy import ConfigError, ObfuscationDisabled, RotationPolicy, Technique, load_policy

LoggerConfig(True, False)

enabled_config = """
# OVS Configuration for Netmaker Integration
BRIDGE_NAME=ovsbr0
NM_INTERFACE_PATTERN="nm-*"

export ENABLE_OBFUSCATION=true
VLAN_OBFUSCATION=true
VLAN_POOL="100,200,300:302"
VLAN_ROTATION_INTERVAL=600
MAC_RANDOMIZATION=yes
MAC_ROTATION_INTERVAL=3600
MAC_OUI_POOL='02:00:00,0A-00-00'
TIMING_OBFUSCATION=false
MAX_DELAY_MS=40
TRAFFIC_SHAPING=true
SHAPING_RATE_MBPS=50
"""


def test_load_enabled_config():
    policy = load_policy(StringIO(enabled_config))

    assert policy.bridge == "ovsbr0"
    assert policy.interface_pattern == "nm-*"
    assert policy.vlan_pool == (100, 200, 300, 301, 302)
    assert policy.vlan_interval == 600
    assert policy.mac_interval == 3600
    assert policy.mac_oui_pool == ("02:00:00", "0a:00:00")
    assert policy.max_delay_ms == 40
    assert policy.shaping_rate_mbps == 50
    assert policy.techniques == frozenset({Technique.VLAN, Technique.MAC, Technique.SHAPING})
    assert not policy.enabled(Technique.TIMING)


def test_defaults_apply_for_unset_keys():
    policy = load_policy(StringIO("ENABLE_OBFUSCATION=true\nVLAN_OBFUSCATION=true\n"))

    assert policy.vlan_pool == (100, 200, 300, 400, 500)
    assert policy.vlan_interval == 300
    assert policy.mac_interval == 1800
    assert policy.mac_oui_pool == ("02:00:00", "06:00:00", "0a:00:00", "0e:00:00")
    assert policy.bridge == "ovsbr0"
    assert policy.interface_pattern == "nm-"
    assert policy.state_file == "/var/lib/netmaker/obfuscation-state"
    assert policy.lock_file == "/var/run/netmaker-obfuscation.lock"


def test_absent_enable_flag_is_disabled():
    with pytest.raises(ObfuscationDisabled):
        load_policy(StringIO("BRIDGE_NAME=ovsbr0\n"))


def test_false_enable_flag_is_disabled():
    with pytest.raises(ObfuscationDisabled) as info:
        load_policy(StringIO("ENABLE_OBFUSCATION=false\nVLAN_OBFUSCATION=true\n"))
    assert isinstance(info.value, ConfigError)


def test_missing_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError) as info:
        load_policy(str(tmp_path / "ovs-config"))
    assert not isinstance(info.value, ObfuscationDisabled)


def test_load_from_path(tmp_path):
    path = tmp_path / "ovs-config"
    path.write_text(enabled_config)

    policy = load_policy(str(path))
    assert policy.vlan_interval == 600


@pytest.mark.parametrize(
    "line",
    [
        "VLAN_POOL=0,100",
        "VLAN_POOL=4095",
        "VLAN_POOL=abc",
        "VLAN_ROTATION_INTERVAL=0",
        "MAC_ROTATION_INTERVAL=-5",
        "MAC_OUI_POOL=zz:00:00",
        "MAC_OUI_POOL=01:00:5e",
        "ENABLE_OBFUSCATION=maybe",
        "OBFS_STATE_FORMAT=json",
    ],
)
def test_invalid_values(line):
    config = "ENABLE_OBFUSCATION=true\n" + line + "\n"
    if line.startswith("ENABLE_OBFUSCATION"):
        config = line + "\n"
    with pytest.raises(ConfigError):
        load_policy(StringIO(config))


def test_unbalanced_quote_is_config_error():
    with pytest.raises(ConfigError):
        load_policy(StringIO('ENABLE_OBFUSCATION=true\nBRIDGE_NAME="ovsbr0\n'))


def test_poll_interval_is_quarter_of_shortest_interval():
    assert RotationPolicy(vlan_interval=300, mac_interval=1800).poll_interval == 75
    assert RotationPolicy(vlan_interval=900, mac_interval=120).poll_interval == 30


def test_interface_pattern_is_a_regex():
    prefix = RotationPolicy(interface_pattern="nm-")
    assert prefix.matches("nm-mesh")
    assert not prefix.matches("eth0")

    anchored = RotationPolicy(interface_pattern="^nm-")
    assert anchored.matches("nm-mesh")
    assert not anchored.matches("vnm-mesh")

    wildcard = RotationPolicy(interface_pattern="nm-.*")
    assert wildcard.matches("nm-1")
    assert not wildcard.matches("netmaker")

    either = RotationPolicy(interface_pattern="^(nm|netmaker)-[0-9]+$")
    assert either.matches("netmaker-12")
    assert not either.matches("nm-mesh")


def test_invalid_interface_pattern_is_config_error():
    with pytest.raises(ConfigError):
        load_policy(StringIO("ENABLE_OBFUSCATION=true\nNM_INTERFACE_PATTERN='nm-['\n"))


def test_policy_is_immutable():
    policy = RotationPolicy()
    with pytest.raises(attrs.exceptions.FrozenInstanceError):
        policy.vlan_interval = 10


def test_settings_read_as_attributes():
    values = parse_shell_vars(StringIO("export BRIDGE_NAME=br7\nVLAN_POOL=''\n"))
    assert values.BRIDGE_NAME == "br7"
    assert values.VLAN_POOL == ""
    assert values.MAC_OUI_POOL is None


def test_poll_interval_ignores_disabled_techniques():
    policy = RotationPolicy(techniques=["vlan"], vlan_interval=900, mac_interval=120)
    assert policy.poll_interval == 30
