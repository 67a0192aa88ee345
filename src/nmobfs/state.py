#!/usr/bin/env python3
''' persisted obfuscation state

The on-disk record is flat: "<technique>_<interface>" -> value.  Stores only
read and write whole records; ManagedInterface maps one interface's group of
keys to and from the model.
'''

import os
import tempfile
from io import StringIO
from typing import Dict, List, Optional

from attrs import define, field
from loguru import logger
from natsort import natsorted
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .datalib import nonone
from .policy import Technique

class PersistenceError(Exception):
    ''' the state file could not be read or written '''
    pass

# key prefix -> ManagedInterface attribute; longest prefixes first
record_prefixes = {
    'last_vlan': 'last_vlan_rotation',
    'last_mac':  'last_mac_rotation',
    'vlan':      'current_vlan',
    'mac':       'current_mac',
    'timing':    'timing_delay_ms',
    'shaping':   'policing_rate_kbps',
    'bridge':    'bridge',
}

def optional_int(arg) -> Optional[int]:
    if arg in (None, ''):
        return None
    return int(arg)

def optional_str(arg) -> Optional[str]:
    if arg in (None, ''):
        return None
    return str(arg)

def timestamp(arg) -> int:
    if arg in (None, ''):
        return 0
    return int(float(arg))

def split_key(key: str):
    ''' "last_vlan_nm-a" -> ("last_vlan", "nm-a"), None when unknown '''
    for prefix in record_prefixes:
        if key.startswith(f'{prefix}_') and len(key) > len(prefix) + 1:
            return prefix, key[len(prefix) + 1:]
        continue
    return None

def interfaces_in(records: Dict[str, str]) -> List[str]:
    ''' interface names that have any persisted entry '''
    names = { split[1] for split in map(split_key, records) if split }
    return natsorted(names)

def discard(records: Dict[str, str], name: str) -> Dict[str, str]:
    ''' drop every entry of one interface, as a group '''
    return { k: v for k, v in records.items() if (split_key(k) or (None, None))[1] != name }

@define
class ManagedInterface:
    ''' one port under obfuscation control '''
    name:                     str = field()
    bridge:                   str = field(default='', converter=nonone)
    current_vlan:   Optional[int] = field(default=None, converter=optional_int)
    current_mac:    Optional[str] = field(default=None, converter=optional_str)
    last_vlan_rotation:       int = field(default=0, converter=timestamp)
    last_mac_rotation:        int = field(default=0, converter=timestamp)
    timing_delay_ms: Optional[int] = field(default=None, converter=optional_int)
    policing_rate_kbps: Optional[int] = field(default=None, converter=optional_int)

    @classmethod
    def from_records(cls, name: str, records: Dict[str, str]) -> 'ManagedInterface':
        kwargs = {}
        for prefix, attr in record_prefixes.items():
            value = records.get(f'{prefix}_{name}')
            if value is not None:
                kwargs[attr] = value
            continue
        return cls(name, **kwargs)

    def to_records(self) -> Dict[str, str]:
        ''' value and timestamp are always emitted together '''
        retval = {}
        if self.bridge:
            retval[f'bridge_{self.name}'] = self.bridge
        if self.current_vlan is not None:
            retval[f'vlan_{self.name}'] = str(self.current_vlan)
            retval[f'last_vlan_{self.name}'] = str(self.last_vlan_rotation)
        if self.current_mac is not None:
            retval[f'mac_{self.name}'] = self.current_mac
            retval[f'last_mac_{self.name}'] = str(self.last_mac_rotation)
        if self.timing_delay_ms is not None:
            retval[f'timing_{self.name}'] = str(self.timing_delay_ms)
        if self.policing_rate_kbps is not None:
            retval[f'shaping_{self.name}'] = str(self.policing_rate_kbps)
        return retval

    def last_rotation(self, technique: Technique) -> int:
        if technique == Technique.VLAN:
            return self.last_vlan_rotation
        if technique == Technique.MAC:
            return self.last_mac_rotation
        return 0

    def record(self, technique: Technique, value, now: int):
        ''' store a successful mutation '''
        if technique == Technique.VLAN:
            self.current_vlan = value
            self.last_vlan_rotation = now
        elif technique == Technique.MAC:
            self.current_mac = value
            self.last_mac_rotation = now
        elif technique == Technique.TIMING:
            self.timing_delay_ms = value
        else:
            self.policing_rate_kbps = value
        pass

class StateStore:
    ''' base class: whole-record load/save with atomic replace '''
    def __init__(self, path: str):
        self.path = path

    def load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            logger.trace(f'No state file: {self.path}')
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as sf:
                return self.decode(sf.read())
        except (OSError, ValueError, YAMLError) as e:
            raise PersistenceError(f'Unable to read {self.path}: {e}') from e

    def save(self, records: Dict[str, str]):
        directory = os.path.dirname(self.path) or '.'
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmpname = tempfile.mkstemp(prefix='.obfs-', dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as tf:
                    tf.write(self.encode(records))
                os.chmod(tmpname, 0o600)
                os.replace(tmpname, self.path)
            except BaseException:
                os.unlink(tmpname)
                raise
        except OSError as e:
            raise PersistenceError(f'Unable to write {self.path}: {e}') from e
        logger.trace(f'Saved {len(records)} state entries to {self.path}')

    def decode(self, text: str) -> Dict[str, str]:
        raise NotImplementedError

    def encode(self, records: Dict[str, str]) -> str:
        raise NotImplementedError

class KeyValueStateFile(StateStore):
    ''' one key=value per line '''
    def decode(self, text: str) -> Dict[str, str]:
        retval = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            key, sep, value = line.partition('=')
            if not sep:
                logger.warning(f'Ignoring malformed state line: {line}')
                continue
            retval[key.strip()] = value.strip()
            continue
        return retval

    def encode(self, records: Dict[str, str]) -> str:
        return ''.join(f'{k}={records[k]}\n' for k in natsorted(records))

class YamlStateFile(StateStore):
    ''' a single YAML mapping '''
    def decode(self, text: str) -> Dict[str, str]:
        yaml = YAML(typ='safe')
        data = yaml.load(text) or {}
        if not isinstance(data, dict):
            raise ValueError('state is not a mapping')
        return { str(k): str(v) for k, v in data.items() }

    def encode(self, records: Dict[str, str]) -> str:
        yaml = YAML(typ='safe')
        yaml.default_flow_style = False
        stream = StringIO()
        yaml.dump({ k: records[k] for k in natsorted(records) }, stream)
        return stream.getvalue()

state_formats = {
    'keyvalue': KeyValueStateFile,
    'yaml': YamlStateFile,
}

def open_state(path: str, state_format: str = 'keyvalue') -> StateStore:
    return state_formats[state_format](path)
