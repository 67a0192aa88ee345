#!/usr/bin/env python3
''' rotation scheduler: the long running part

Per interface, per technique:

  Unmanaged --apply--> Active --(elapsed > interval) rotate--> Active
  Active --remove--> Unmanaged

Only VLAN and MAC rotate continuously, timing and shaping are applied once at
attach time.  Every public operation takes the exclusive lock first.
'''

import signal
import threading
import time
from typing import Callable, Dict, List, Optional

from attrs import define, field
from loguru import logger

from .lock import ExclusiveLock, LockContention, LockError
from .mutator import MutationResult, PortMutator
from .policy import RotationPolicy, Technique
from .state import ManagedInterface, PersistenceError, StateStore
from .state import discard, interfaces_in, open_state
from .switch import CommandError, SwitchControl

apply_order = (Technique.VLAN, Technique.MAC, Technique.TIMING, Technique.SHAPING)

@define
class CycleReport:
    ''' what one daemon pass did '''
    interfaces: List[str] = field(factory=list)
    results:    List[MutationResult] = field(factory=list)
    failed:     List[str] = field(factory=list)
    pruned:     List[str] = field(factory=list)
    skipped:    bool = field(default=False)

class Scheduler:
    def __init__(self, policy: RotationPolicy,
                 mutator: Optional[PortMutator] = None,
                 store: Optional[StateStore] = None,
                 lock: Optional[ExclusiveLock] = None,
                 clock: Callable[[], float] = time.time,
                 wait: Optional[Callable[[float], bool]] = None):
        self.policy = policy
        self.mutator = mutator or PortMutator(SwitchControl(timeout=policy.command_timeout))
        self.store = store or open_state(policy.state_file, policy.state_format)
        self.lock = lock or ExclusiveLock(policy.lock_file)
        self.clock = clock
        self._stop = threading.Event()
        self._wait = wait or self._stop.wait
        self._records: Dict[str, str] = {}
        self._unsaved = False

    @property
    def switch(self) -> SwitchControl:
        return self.mutator.switch

    def intervals(self) -> Dict[Technique, int]:
        return { Technique.VLAN: self.policy.vlan_interval,
                 Technique.MAC:  self.policy.mac_interval }

    ## persistence, degrading to memory

    def _load(self) -> Dict[str, str]:
        ''' disk wins, unless the last save failed '''
        if self._unsaved:
            return dict(self._records)
        try:
            self._records = self.store.load()
        except PersistenceError as e:
            logger.warning(f'{e} (continuing with in-memory state)')
            pass
        return dict(self._records)

    def _save(self, records: Dict[str, str]):
        self._records = dict(records)
        try:
            self.store.save(records)
            self._unsaved = False
        except PersistenceError as e:
            logger.warning(f'{e} (state kept in memory only)')
            self._unsaved = True
        pass

    def interface(self, name: str) -> ManagedInterface:
        ''' persisted view of one interface '''
        return ManagedInterface.from_records(name, self._load())

    def managed(self) -> List[ManagedInterface]:
        records = self._load()
        retval = []
        for name in interfaces_in(records):
            state = self._decode(records, name)
            if state is not None:
                retval.append(state)
            continue
        return retval

    def _decode(self, records: Dict[str, str], iface: str) -> Optional[ManagedInterface]:
        ''' one interface's view, None when its entries are unreadable '''
        try:
            return ManagedInterface.from_records(iface, records)
        except (ValueError, TypeError, OverflowError) as e:
            logger.warning(f'Malformed state for {iface}, discarding it: {e}')
            return None

    ## unlocked workers, operating on an in-memory record

    def _apply_one(self, records: Dict[str, str], iface: str, bridge: str, now: int) -> List[MutationResult]:
        logger.info(f'Applying mild obfuscation to interface {iface} on bridge {bridge}')
        state = ManagedInterface(iface, bridge=bridge)
        results = []
        for technique in apply_order:
            if not self.policy.enabled(technique):
                continue
            result = self.mutator.mutate(technique, iface, bridge, self.policy)
            if result.ok:
                state.record(technique, result.value, now)
            results.append(result)
            continue

        remaining = discard(records, iface)
        records.clear()
        records.update(remaining)
        records.update(state.to_records())
        return results

    def _rotate_one(self, records: Dict[str, str], iface: str, bridge: str, now: int) -> List[MutationResult]:
        state = self._decode(records, iface)
        if state is None:
            return self._apply_one(records, iface, bridge, now)
        if not state.to_records():
            logger.info(f'No state for {iface}, applying initial obfuscation')
            return self._apply_one(records, iface, bridge, now)

        results = []
        for technique, interval in self.intervals().items():
            if not self.policy.enabled(technique):
                continue
            elapsed = now - state.last_rotation(technique)
            if elapsed <= interval:
                logger.trace(f'{iface} {technique.value}: {elapsed}s since rotation, interval {interval}s')
                continue
            logger.debug(f'Rotating {technique.value} for {iface} ({elapsed}s since last rotation)')
            result = self.mutator.mutate(technique, iface, bridge, self.policy)
            if result.ok:
                state.record(technique, result.value, now)
            results.append(result)
            continue

        if results:
            state.bridge = bridge
            records.update(state.to_records())
        return results

    ## public operations

    def apply(self, iface: str, bridge: str) -> List[MutationResult]:
        with self.lock:
            records = self._load()
            results = self._apply_one(records, iface, bridge, int(self.clock()))
            self._save(records)
        return results

    def rotate(self, iface: str, bridge: str) -> List[MutationResult]:
        with self.lock:
            records = self._load()
            before = dict(records)
            results = self._rotate_one(records, iface, bridge, int(self.clock()))
            if records != before:
                self._save(records)
        return results

    def remove(self, iface: str, bridge: str) -> List[MutationResult]:
        ''' revert port settings and forget the interface; safe to repeat

        The state is forgotten even when a clear fails, the failure is
        reported through the returned results.
        '''
        with self.lock:
            results = self.mutator.remove(iface, bridge)
            records = self._load()
            remaining = discard(records, iface)
            if remaining != records:
                self._save(remaining)
            else:
                logger.debug(f'No obfuscation state for {iface}')
        if all(x.ok for x in results):
            logger.info(f'Obfuscation removed from {iface}')
        return results

    ## daemon

    def run_cycle(self) -> CycleReport:
        ''' one pass over the managed bridge; lock contention skips it '''
        try:
            with self.lock:
                return self._cycle()
        except LockContention as e:
            logger.warning(f'{e}, skipping rotation cycle')
            return CycleReport(skipped=True)
        except LockError:
            raise
        except Exception as e:
            logger.error(f'Rotation cycle failed: {e}')
            return CycleReport(skipped=True)

    def _cycle(self) -> CycleReport:
        report = CycleReport()
        bridge = self.policy.bridge
        if not self.switch.bridge_exists(bridge):
            logger.warning(f'Bridge {bridge} does not exist, nothing to rotate')
            report.skipped = True
            return report
        try:
            ports = self.switch.list_ports(bridge)
        except CommandError as e:
            logger.warning(f'Unable to list ports on {bridge}: {e}')
            report.skipped = True
            return report

        report.interfaces = [ x for x in ports if self.policy.matches(x) ]
        logger.debug(f'Managed interfaces on {bridge}: {report.interfaces}')

        records = self._load()
        before = dict(records)
        for iface in report.interfaces:
            try:
                report.results.extend(self._rotate_one(records, iface, bridge, int(self.clock())))
            except Exception as e:
                logger.error(f'Rotation failed for {iface}: {e}')
                report.failed.append(iface)
            continue

        for name in interfaces_in(records):
            if name in ports:
                continue
            owner = records.get(f'bridge_{name}', '')
            if owner and owner != bridge:
                continue
            logger.info(f'Interface {name} left {bridge}, discarding its state')
            records = discard(records, name)
            report.pruned.append(name)
            continue

        if records != before:
            self._save(records)
        for result in report.results:
            if not result.ok and result.interface not in report.failed:
                report.failed.append(result.interface)
            continue
        return report

    def run_forever(self):
        ''' rotate until stop(), finishing the in-flight cycle '''
        logger.info(f'Starting obfuscation daemon: bridge={self.policy.bridge} '
                    f'pattern={self.policy.interface_pattern} poll={self.policy.poll_interval}s')
        while not self._stop.is_set():
            self.run_cycle()
            self._wait(self.policy.poll_interval)
            continue
        logger.info('Obfuscation daemon stopped')

    def stop(self, *args):
        logger.info('Stop requested')
        self._stop.set()

    def install_signal_handlers(self):
        signal.signal(signal.SIGTERM, self.stop)
        signal.signal(signal.SIGINT, self.stop)
