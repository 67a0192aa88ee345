#!/usr/bin/env python3
''' nmobfs command line: apply / rotate / remove / daemon and the hooks '''

import sys
from typing import Annotated, Callable, List, Optional

import typer
from loguru import logger

from .hooks import DISCOVERY_TIMEOUT, attach_discovered, detach_matching
from .hooks import on_interface_attached, on_interface_detached
from .lib import LoggerConfig, interface_report
from .lock import LockContention, LockError
from .mutator import MutationResult
from .policy import CONFIG_FILE, ConfigError, ObfuscationDisabled, RotationPolicy, load_policy
from .scheduler import Scheduler
from .switch import CommandError
from .templates import render, daemon_unit, hook_unit
from .version import VERSION

EXIT_FAILED = 1
EXIT_BUSY = 3

app = typer.Typer(help='Mild obfuscation for Netmaker interfaces on OpenVSwitch.',
                  no_args_is_help=True)

ConfigOpt = Annotated[str, typer.Option(envvar='NMOBFS_CONFIG', help='obfuscation config (KEY=value)')]
DebugOpt = Annotated[bool, typer.Option(help='debug logging')]
TraceOpt = Annotated[bool, typer.Option(help='trace logging')]
IfaceArg = Annotated[str, typer.Argument(help='interface name, e.g. nm-mesh')]
BridgeArg = Annotated[str, typer.Argument(help='OVS bridge the interface belongs to')]
OptIfaceArg = Annotated[Optional[str], typer.Argument(help='interface name, discovered from NM_INTERFACE_PATTERN when omitted')]
OptBridgeArg = Annotated[str, typer.Argument(help='OVS bridge, defaults to BRIDGE_NAME')]

def build_scheduler(policy: RotationPolicy) -> Scheduler:
    return Scheduler(policy)

def load(config: str) -> RotationPolicy:
    ''' load the policy, disabled obfuscation is a clean exit '''
    try:
        return load_policy(config)
    except ObfuscationDisabled as e:
        logger.info(str(e))
        raise typer.Exit(0)
    except ConfigError as e:
        logger.error(str(e))
        raise typer.Exit(EXIT_FAILED)

def locked(operation: Callable, *args):
    ''' run a scheduler operation, mapping lock failures to exit codes '''
    try:
        return operation(*args)
    except LockContention as e:
        logger.error(str(e))
        raise typer.Exit(EXIT_BUSY)
    except LockError as e:
        logger.error(str(e))
        raise typer.Exit(EXIT_FAILED)
    except CommandError as e:
        logger.error(str(e))
        raise typer.Exit(EXIT_FAILED)

def summarize(results: List[MutationResult], action: str, iface: str) -> int:
    failed = [ x for x in results if not x.ok ]
    if failed:
        names = ', '.join(x.technique.value for x in failed)
        print(f'Warning: {action} incomplete for {iface} (failed: {names})')
        return EXIT_FAILED
    if results:
        print(f'Obfuscation {action} for {iface}: ' + ', '.join(f'{x.technique.value}={x.value}' for x in results))
    else:
        print(f'Obfuscation {action} for {iface}: nothing to do')
    return 0

def summarize_removal(results: List[MutationResult], iface: str) -> int:
    failed = [ x for x in results if not x.ok ]
    if failed:
        for x in failed:
            print(f'Warning: failed to clear {x.technique.value} on {iface}: {x.reason}')
            continue
        return EXIT_FAILED
    print(f'Obfuscation removed from {iface}')
    return 0

@app.command()
def apply(iface: IfaceArg, bridge: BridgeArg,
          config: ConfigOpt = CONFIG_FILE, debug: DebugOpt = False, trace: TraceOpt = False):
    ''' apply every enabled technique to an interface '''
    LoggerConfig(debug, trace)
    scheduler = build_scheduler(load(config))
    results = locked(scheduler.apply, iface, bridge)
    raise typer.Exit(summarize(results, 'applied', iface))

@app.command()
def rotate(iface: IfaceArg, bridge: BridgeArg,
           config: ConfigOpt = CONFIG_FILE, debug: DebugOpt = False, trace: TraceOpt = False):
    ''' rotate VLAN / MAC on an interface if their interval has passed '''
    LoggerConfig(debug, trace)
    scheduler = build_scheduler(load(config))
    results = locked(scheduler.rotate, iface, bridge)
    raise typer.Exit(summarize(results, 'rotated', iface))

@app.command()
def remove(iface: IfaceArg, bridge: BridgeArg,
           config: ConfigOpt = CONFIG_FILE, debug: DebugOpt = False, trace: TraceOpt = False):
    ''' clear VLAN tag and policing, forget the interface '''
    LoggerConfig(debug, trace)
    scheduler = build_scheduler(load(config))
    results = locked(scheduler.remove, iface, bridge)
    raise typer.Exit(summarize_removal(results, iface))

@app.command()
def attach(iface: OptIfaceArg = None, bridge: OptBridgeArg = '',
           port: Annotated[bool, typer.Option(help='also add the port to the bridge and bring it up')] = False,
           wait: Annotated[int, typer.Option(help='seconds to wait for a matching interface')] = DISCOVERY_TIMEOUT,
           config: ConfigOpt = CONFIG_FILE, debug: DebugOpt = False, trace: TraceOpt = False):
    ''' interface attached hook '''
    LoggerConfig(debug, trace)
    policy = load(config)
    scheduler = build_scheduler(policy)
    bridge = bridge or policy.bridge
    if iface:
        results = locked(on_interface_attached, iface, bridge, scheduler, port)
        raise typer.Exit(summarize(results, 'applied', iface))

    attached = locked(attach_discovered, bridge, scheduler, port, wait)
    exit_code = 0
    for name, results in attached.items():
        exit_code = max(exit_code, summarize(results, 'applied', name))
        continue
    raise typer.Exit(exit_code)

@app.command()
def detach(iface: OptIfaceArg = None, bridge: OptBridgeArg = '',
           port: Annotated[bool, typer.Option(help='also delete the port from the bridge')] = False,
           config: ConfigOpt = CONFIG_FILE, debug: DebugOpt = False, trace: TraceOpt = False):
    ''' interface detached hook '''
    LoggerConfig(debug, trace)
    policy = load(config)
    scheduler = build_scheduler(policy)
    bridge = bridge or policy.bridge
    if iface:
        results = locked(on_interface_detached, iface, bridge, scheduler, port)
        raise typer.Exit(summarize_removal(results, iface))

    detached = locked(detach_matching, bridge, scheduler, port)
    exit_code = 0
    for name, results in detached.items():
        exit_code = max(exit_code, summarize_removal(results, name))
        continue
    raise typer.Exit(exit_code)

@app.command()
def daemon(config: ConfigOpt = CONFIG_FILE, debug: DebugOpt = False, trace: TraceOpt = False):
    ''' rotate continuously until SIGTERM / SIGINT '''
    LoggerConfig(debug, trace)
    scheduler = build_scheduler(load(config))
    try:
        scheduler.lock.check()
    except LockError as e:
        logger.error(str(e))
        raise typer.Exit(EXIT_FAILED)
    except LockContention as e:
        logger.warning(f'{e}, starting anyway')
        pass
    scheduler.install_signal_handlers()
    scheduler.run_forever()

@app.command()
def status(config: ConfigOpt = CONFIG_FILE, debug: DebugOpt = False, trace: TraceOpt = False):
    ''' show the persisted obfuscation state '''
    LoggerConfig(debug, trace)
    policy = load(config)
    scheduler = build_scheduler(policy)
    print(f'Bridge: {policy.bridge} pattern: {policy.interface_pattern}')
    print(f'Techniques: {", ".join(sorted(x.value for x in policy.techniques)) or "none"}')
    print(f'VLAN pool: {",".join(str(x) for x in policy.vlan_pool)} every {policy.vlan_interval}s')
    print(f'MAC OUIs: {",".join(policy.mac_oui_pool)} every {policy.mac_interval}s')
    managed = scheduler.managed()
    if not managed:
        print('No managed interfaces.')
    for iface in managed:
        interface_report(iface)
        continue

@app.command()
def unit(hook: Annotated[bool, typer.Option(help='render the bridge hook unit instead of the daemon')] = False,
         interface: Annotated[Optional[List[str]], typer.Option(help='interface for the hook unit (repeatable), discovered at boot when omitted')] = None,
         bridge: Annotated[str, typer.Option(help='bridge for the hook unit, defaults to BRIDGE_NAME')] = '',
         command: Annotated[str, typer.Option(help='installed nmobfs path')] = '/usr/local/bin/nmobfs',
         config: ConfigOpt = CONFIG_FILE):
    ''' print a systemd unit for the daemon or the attach hook '''
    args = {
        'command': command,
        'config': config,
        'hook_service': 'netmaker-ovs-bridge.service',
    }
    if hook:
        if not bridge:
            try:
                bridge = load_policy(config).bridge
            except ConfigError:
                bridge = RotationPolicy().bridge
        args.update({'bridge': bridge, 'interfaces': interface or []})
        sys.stdout.write(render(hook_unit, args))
    else:
        sys.stdout.write(render(daemon_unit, args))

@app.command()
def version():
    ''' print the version '''
    print(VERSION)

if __name__ == "__main__":
    app()
