#!/usr/bin/env python3
''' rotation policy definition and the configuration loader '''

import re
from enum import Enum
from typing import Mapping, TextIO, Union

from attrs import define, field, validators
from loguru import logger
from munch import DefaultMunch

from .datalib import convert_bool, convert_vlan_pool, convert_oui_pool, emptyValuesTuple, parse_shell_vars

CONFIG_FILE = '/etc/netmaker/ovs-config'
STATE_FILE = '/var/lib/netmaker/obfuscation-state'
LOCK_FILE = '/var/run/netmaker-obfuscation.lock'

DEFAULT_VLAN_POOL = '100,200,300,400,500'
DEFAULT_OUI_POOL = '02:00:00,06:00:00,0a:00:00,0e:00:00'

class ConfigError(Exception):
    ''' policy could not be loaded '''
    pass

class ObfuscationDisabled(ConfigError):
    ''' ENABLE_OBFUSCATION is unset or false, nothing to do '''
    pass

class Technique(str, Enum):
    VLAN = 'vlan'
    MAC = 'mac'
    TIMING = 'timing'
    SHAPING = 'shaping'

# config flag for each technique
technique_flags = {
    Technique.VLAN:    'VLAN_OBFUSCATION',
    Technique.MAC:     'MAC_RANDOMIZATION',
    Technique.TIMING:  'TIMING_OBFUSCATION',
    Technique.SHAPING: 'TRAFFIC_SHAPING',
}

# config key -> RotationPolicy attribute
config_keys = {
    'VLAN_POOL':              'vlan_pool',
    'VLAN_ROTATION_INTERVAL': 'vlan_interval',
    'MAC_ROTATION_INTERVAL':  'mac_interval',
    'MAC_OUI_POOL':           'mac_oui_pool',
    'MAX_DELAY_MS':           'max_delay_ms',
    'SHAPING_RATE_MBPS':      'shaping_rate_mbps',
    'BRIDGE_NAME':            'bridge',
    'NM_INTERFACE_PATTERN':   'interface_pattern',
    'OBFS_STATE_FILE':        'state_file',
    'OBFS_STATE_FORMAT':      'state_format',
    'OBFS_LOCK_FILE':         'lock_file',
    'COMMAND_TIMEOUT':        'command_timeout',
}

def convert_techniques(arg) -> frozenset:
    return frozenset(Technique(x) for x in arg)

def validate_vlan_pool(instance, attribute, value):
    if not value:
        raise ValueError('vlan_pool must not be empty')
    for tag in value:
        if not 1 <= tag <= 4094:
            raise ValueError(f'VLAN tag out of range [1,4094]: {tag}')
        continue

def validate_oui_pool(instance, attribute, value):
    if not value:
        raise ValueError('mac_oui_pool must not be empty')
    for oui in value:
        if int(oui[:2], 16) & 0x01:
            raise ValueError(f'OUI prefix is multicast: {oui}')
        continue

def validate_pattern(instance, attribute, value):
    try:
        re.compile(value)
    except re.error as e:
        raise ValueError(f'invalid NM_INTERFACE_PATTERN {value!r}: {e}') from e

positive = validators.gt(0)

@define(frozen=True)
class RotationPolicy:
    ''' immutable obfuscation settings, loaded once per process '''
    vlan_pool:          tuple = field(default=DEFAULT_VLAN_POOL, converter=convert_vlan_pool,
                                      validator=validate_vlan_pool)
    vlan_interval:        int = field(default=300, converter=int, validator=positive)
    mac_interval:         int = field(default=1800, converter=int, validator=positive)
    mac_oui_pool:       tuple = field(default=DEFAULT_OUI_POOL, converter=convert_oui_pool,
                                      validator=validate_oui_pool)
    max_delay_ms:         int = field(default=50, converter=int, validator=positive)
    shaping_rate_mbps:    int = field(default=100, converter=int, validator=positive)
    techniques:     frozenset = field(default=frozenset(), converter=convert_techniques)
    bridge:               str = field(default='ovsbr0')
    interface_pattern:    str = field(default='nm-', validator=[validators.min_len(1), validate_pattern])
    state_file:           str = field(default=STATE_FILE)
    state_format:         str = field(default='keyvalue', validator=validators.in_(('keyvalue', 'yaml')))
    lock_file:            str = field(default=LOCK_FILE)
    command_timeout:    float = field(default=5.0, converter=float, validator=positive)

    def enabled(self, technique: Technique) -> bool:
        return technique in self.techniques

    @property
    def poll_interval(self) -> float:
        ''' check 4x more often than the fastest rotation '''
        return min(self.vlan_interval, self.mac_interval) / 4

    def matches(self, name: str) -> bool:
        ''' does the interface name contain a match for NM_INTERFACE_PATTERN (a regex) '''
        return re.search(self.interface_pattern, name) is not None

def policy_from_values(values: Mapping) -> RotationPolicy:
    ''' build the policy from raw KEY=value settings '''
    values = DefaultMunch.fromDict(dict(values))
    try:
        if not convert_bool(values.ENABLE_OBFUSCATION):
            raise ObfuscationDisabled('Obfuscation disabled in configuration')

        techniques = [ t for t, flag in technique_flags.items() if convert_bool(getattr(values, flag)) ]
        kwargs = { attr: getattr(values, key) for key, attr in config_keys.items()
                   if getattr(values, key) not in emptyValuesTuple }
        logger.trace(f'policy arguments: {kwargs} techniques: {techniques}')
        retval = RotationPolicy(techniques=techniques, **kwargs)
    except (ValueError, TypeError) as e:
        raise ConfigError(f'Invalid obfuscation configuration: {e}') from e

    if not retval.techniques:
        logger.warning('Obfuscation enabled, but no techniques are enabled.')
    return retval

def load_policy(source: Union[str, TextIO] = CONFIG_FILE) -> RotationPolicy:
    ''' load the policy from a config file path or an open file '''
    if isinstance(source, str):
        logger.debug(f'Load configuration: {source}')
        try:
            with open(source, 'r', encoding='utf-8') as cf:
                values = parse_shell_vars(cf)
        except OSError as e:
            raise ConfigError(f'Configuration file {source} not readable: {e}') from e
        except ValueError as e:
            raise ConfigError(f'Configuration file {source}: {e}') from e
    else:
        try:
            values = parse_shell_vars(source)
        except ValueError as e:
            raise ConfigError(f'Configuration: {e}') from e
        pass

    return policy_from_values(values)
