#!/usr/bin/env python3
''' port attribute mutator: turns a rotation decision into bridge/link changes

The mutator has no notion of time.  Every operation reports a MutationResult
instead of raising, so one failing port never takes the caller down.
'''

import random
from typing import Any, List, Optional, Sequence

from attrs import define, field
from loguru import logger
from netaddr import EUI, mac_unix_expanded

from .policy import RotationPolicy, Technique
from .switch import SwitchControl, CommandError

RESERVED_MACS = (0x000000000000, 0xffffffffffff)
MAC_ATTEMPTS = 16
MIN_DELAY_MS = 10

@define
class MutationResult:
    technique: Technique = field(converter=Technique)
    interface:       str = field()
    ok:             bool = field(default=True)
    value:           Any = field(default=None)
    reason:          str = field(default='')

    @property
    def outcome(self) -> str:
        return 'ok' if self.ok else 'failed'

    def log(self):
        ''' one line per mutation attempt '''
        bound = logger.bind(interface=self.interface, technique=self.technique.value, outcome=self.outcome)
        if self.ok:
            bound.info(f'mutation interface={self.interface} technique={self.technique.value} '
                       f'outcome=ok value={self.value}')
        else:
            bound.warning(f'mutation interface={self.interface} technique={self.technique.value} '
                          f'outcome=failed reason="{self.reason}"')
        return self

def generate_mac(oui_pool: Sequence[str], rng=random) -> str:
    ''' vendor prefix + 3 random octets, never all-zero or broadcast '''
    for _ in range(MAC_ATTEMPTS):
        oui = rng.choice(oui_pool)
        nic = ':'.join(f'{rng.randrange(256):02x}' for _ in range(3))
        mac = EUI(f'{oui}:{nic}', dialect=mac_unix_expanded)
        if int(mac) in RESERVED_MACS:
            logger.debug(f'reserved address generated, retry: {mac}')
            continue
        return str(mac)
    raise ValueError(f'unable to generate a usable MAC from {list(oui_pool)}')

def random_rate_kbps(policy: RotationPolicy, rng=random) -> int:
    ''' 50-100% of the configured baseline, in kbps as OVS expects '''
    base = policy.shaping_rate_mbps * 1000
    return rng.randint(base // 2, base)

class PortMutator:
    def __init__(self, switch: SwitchControl, rng: Optional[random.Random] = None):
        self.switch = switch
        self.rng = rng or random.SystemRandom()

    def apply_vlan(self, iface: str, bridge: str, policy: RotationPolicy) -> MutationResult:
        tag = self.rng.choice(policy.vlan_pool)
        logger.debug(f'Applying VLAN {tag} to interface {iface} on {bridge}')
        try:
            self.switch.set_vlan(iface, tag)
        except CommandError as e:
            return MutationResult(Technique.VLAN, iface, ok=False, reason=str(e)).log()
        return MutationResult(Technique.VLAN, iface, value=tag).log()

    def apply_mac(self, iface: str, policy: RotationPolicy) -> MutationResult:
        try:
            mac = generate_mac(policy.mac_oui_pool, self.rng)
            logger.debug(f'Applying MAC {mac} to interface {iface}')
            self.switch.set_mac(iface, mac)
        except (CommandError, ValueError) as e:
            return MutationResult(Technique.MAC, iface, ok=False, reason=str(e)).log()
        return MutationResult(Technique.MAC, iface, value=mac).log()

    def apply_timing(self, iface: str, policy: RotationPolicy) -> MutationResult:
        ''' policing burst sized to one random delay window '''
        delay = self.rng.randrange(MIN_DELAY_MS, MIN_DELAY_MS + policy.max_delay_ms)
        rate = random_rate_kbps(policy, self.rng)
        burst = max(rate * delay // 1000, 1)
        logger.debug(f'Applying timing obfuscation ({delay}ms) to {iface}: rate={rate} burst={burst}')
        try:
            self.switch.set_ingress_policing(iface, rate, burst)
        except CommandError as e:
            return MutationResult(Technique.TIMING, iface, ok=False, reason=str(e)).log()
        return MutationResult(Technique.TIMING, iface, value=delay).log()

    def apply_shaping(self, iface: str, policy: RotationPolicy) -> MutationResult:
        rate = random_rate_kbps(policy, self.rng)
        burst = max(rate // 10, 1)
        logger.debug(f'Applying traffic shaping to {iface}: rate={rate} burst={burst}')
        try:
            self.switch.set_ingress_policing(iface, rate, burst)
        except CommandError as e:
            return MutationResult(Technique.SHAPING, iface, ok=False, reason=str(e)).log()
        return MutationResult(Technique.SHAPING, iface, value=rate).log()

    def mutate(self, technique: Technique, iface: str, bridge: str, policy: RotationPolicy) -> MutationResult:
        ''' dispatch a single technique '''
        if technique == Technique.VLAN:
            return self.apply_vlan(iface, bridge, policy)
        if technique == Technique.MAC:
            return self.apply_mac(iface, policy)
        if technique == Technique.TIMING:
            return self.apply_timing(iface, policy)
        return self.apply_shaping(iface, policy)

    def remove(self, iface: str, bridge: str) -> List[MutationResult]:
        ''' clear tag and policing; the MAC address stays as last set

        A port or link that is already gone counts as cleared.
        '''
        logger.info(f'Removing obfuscation from interface {iface} on {bridge}')
        retval = []
        for technique, clear in ((Technique.VLAN, self.switch.clear_vlan),
                                 (Technique.SHAPING, self.switch.clear_ingress_policing)):
            try:
                clear(iface)
            except CommandError as e:
                if not e.absent:
                    retval.append(MutationResult(technique, iface, ok=False, reason=str(e)).log())
                    continue
                logger.debug(f'{clear.__name__} {iface}: already absent ({e.stderr})')
                pass
            retval.append(MutationResult(technique, iface, value='cleared').log())
            continue
        return retval
