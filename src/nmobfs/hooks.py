#!/usr/bin/env python3
''' attach / detach entry points, called once per interface lifecycle event

Netmaker names its interfaces at runtime, so both hooks can also work without
a name: attach waits for links matching NM_INTERFACE_PATTERN to appear, detach
handles every matching port on the bridge.
'''

import time
from typing import Callable, Dict, List

from loguru import logger

from .mutator import MutationResult
from .scheduler import Scheduler
from .switch import CommandError

DISCOVERY_TIMEOUT = 60

def on_interface_attached(name: str, bridge: str, scheduler: Scheduler,
                          attach_port: bool = False) -> List[MutationResult]:
    ''' a Netmaker interface appeared: optionally plug it in, then obfuscate

    attach_port: add the port to the bridge (--may-exist) and bring it up
    '''
    if attach_port:
        switch = scheduler.switch
        if not switch.bridge_exists(bridge):
            raise CommandError(f'OVS Bridge {bridge} does not exist')
        if name in switch.list_ports(bridge):
            logger.info(f'Interface {name} is already part of bridge {bridge}.')
        else:
            logger.info(f'Adding interface {name} to OVS bridge {bridge}')
            switch.add_port(bridge, name)
            pass
        if not switch.link_exists(name):
            logger.warning(f'Interface {name} does not exist yet, leaving link state alone')
        else:
            try:
                switch.link_up(name)
            except CommandError as e:
                logger.warning(f'Failed to bring up interface {name}: {e}')
                pass
        pass

    return scheduler.apply(name, bridge)

def on_interface_detached(name: str, bridge: str, scheduler: Scheduler,
                          detach_port: bool = False) -> List[MutationResult]:
    ''' a Netmaker interface is going away: revert, optionally unplug it '''
    results = scheduler.remove(name, bridge)
    if detach_port:
        try:
            scheduler.switch.del_port(bridge, name)
            logger.info(f'Interface {name} removed from {bridge}.')
        except CommandError as e:
            logger.warning(f'Failed to remove interface {name} from {bridge}: {e}')
            pass
        pass
    return results

def discover_interfaces(scheduler: Scheduler, timeout: int = DISCOVERY_TIMEOUT,
                        sleep: Callable[[float], None] = time.sleep) -> List[str]:
    ''' poll "ip -o link" once a second until a matching link shows up '''
    pattern = scheduler.policy.interface_pattern
    logger.info(f"Waiting for Netmaker interface matching pattern '{pattern}'...")
    for attempt in range(max(timeout, 1)):
        try:
            found = [ x for x in scheduler.switch.list_links() if scheduler.policy.matches(x) ]
        except CommandError as e:
            logger.debug(f'link listing failed: {e}')
            found = []
        if found:
            logger.info(f'Found Netmaker interface(s): {", ".join(found)}')
            return found
        if attempt + 1 < timeout:
            sleep(1)
        continue
    logger.info(f"No Netmaker interface found matching pattern '{pattern}' after {timeout} seconds.")
    return []

def attach_discovered(bridge: str, scheduler: Scheduler, attach_port: bool = False,
                      timeout: int = DISCOVERY_TIMEOUT,
                      sleep: Callable[[float], None] = time.sleep) -> Dict[str, List[MutationResult]]:
    ''' attach every matching link, once at least one exists '''
    retval = {}
    for name in discover_interfaces(scheduler, timeout, sleep):
        retval[name] = on_interface_attached(name, bridge, scheduler, attach_port)
        continue
    return retval

def detach_matching(bridge: str, scheduler: Scheduler,
                    detach_port: bool = False) -> Dict[str, List[MutationResult]]:
    ''' detach every port on the bridge that matches the interface pattern '''
    retval = {}
    if not scheduler.switch.bridge_exists(bridge):
        logger.warning(f'Bridge {bridge} does not exist, nothing to detach')
        return retval
    for name in scheduler.switch.list_ports(bridge):
        if not scheduler.policy.matches(name):
            continue
        retval[name] = on_interface_detached(name, bridge, scheduler, detach_port)
        continue
    if not retval:
        logger.info(f'No Netmaker ports on bridge {bridge}.')
    return retval
