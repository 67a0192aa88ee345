#!/usr/bin/env python3
''' lib.py - logging setup and report helpers shared by the commands '''

import sys

from loguru import logger

LOG_FORMAT = ("<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
              "{message}")

def LoggerConfig(debug: bool, trace: bool):
    '''
    Setup logging configuration.
    '''
    if not debug and not trace:
        logger.remove()
        logger.add(sys.stdout, level='INFO', format=LOG_FORMAT)
        pass

    if debug:
        logger.remove()
        logger.add(sys.stdout, level='DEBUG', format=LOG_FORMAT)
        logger.debug('Debug')
        pass

    if trace:
        logger.remove()
        logger.add(sys.stdout, level='TRACE', format=LOG_FORMAT)
        logger.trace('Trace')
        pass

    pass

def optprint(arg, string):
    ''' optionally print a string if arg has a value '''
    if arg:
        if not isinstance(arg, str):
            arg = str(arg)
        print(string % arg)
        pass
    pass

def interface_report(iface) -> bool:
    ''' print the persisted obfuscation details of a ManagedInterface '''
    print()
    print(f"Interface: {iface.name}")
    optprint(iface.bridge, '  Bridge: %s')
    optprint(iface.current_vlan, '  VLAN: %s')
    if iface.last_vlan_rotation:
        print(f'  VLAN rotated: {iface.last_vlan_rotation}')
    optprint(iface.current_mac, '  MAC: %s')
    if iface.last_mac_rotation:
        print(f'  MAC rotated: {iface.last_mac_rotation}')
    optprint(iface.timing_delay_ms, '  Timing delay (ms): %s')
    optprint(iface.policing_rate_kbps, '  Ingress policing (kbps): %s')
    return True
