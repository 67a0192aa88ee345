#!/usr/bin/env python3
''' ovs-vsctl / ip command surface '''

import subprocess
from typing import Callable, List, Sequence

from loguru import logger
from natsort import natsorted

# stderr fragments from ovs-vsctl / ip meaning the port or link is gone
absent_markers = ('no row', 'no such device', 'cannot find device')

class CommandError(Exception):
    ''' an external bridge or link command failed '''
    def __init__(self, message: str, stderr: str = ''):
        super().__init__(message)
        self.stderr = stderr

    @property
    def absent(self) -> bool:
        ''' the target port or link does not exist '''
        text = self.stderr.lower()
        return any(x in text for x in absent_markers)

def run_command(args: Sequence[str], timeout: float) -> subprocess.CompletedProcess:
    ''' run a command, capturing output, bounded by timeout '''
    return subprocess.run(list(args), capture_output=True, text=True, timeout=timeout, check=False)

class SwitchControl:
    ''' thin wrapper over the OVS and iproute2 CLIs

    runner: callable(args, timeout) -> CompletedProcess, defaults to subprocess
    '''
    def __init__(self, timeout: float = 5.0, runner: Callable = run_command,
                 vsctl: str = 'ovs-vsctl', ip: str = 'ip'):
        self.timeout = timeout
        self.runner = runner
        self.vsctl = vsctl
        self.ip = ip

    def run(self, *args: str) -> str:
        ''' execute, raise CommandError on failure, return stdout '''
        logger.trace(f'exec: {" ".join(args)}')
        try:
            result = self.runner(args, self.timeout)
        except subprocess.TimeoutExpired as e:
            raise CommandError(f'{args[0]} timed out after {self.timeout}s') from e
        except OSError as e:
            raise CommandError(f'{args[0]}: {e}') from e

        if result.returncode != 0:
            stderr = (result.stderr or '').strip()
            raise CommandError(f'{" ".join(args)} exited {result.returncode}: {stderr}', stderr)
        return result.stdout or ''

    ## bridge / port operations

    def bridge_exists(self, bridge: str) -> bool:
        try:
            self.run(self.vsctl, 'br-exists', bridge)
        except CommandError as e:
            logger.trace(f'br-exists {bridge}: {e}')
            return False
        return True

    def list_ports(self, bridge: str) -> List[str]:
        output = self.run(self.vsctl, 'list-ports', bridge)
        return natsorted(x.strip() for x in output.splitlines() if x.strip())

    def add_port(self, bridge: str, port: str):
        self.run(self.vsctl, '--may-exist', 'add-port', bridge, port)

    def del_port(self, bridge: str, port: str):
        self.run(self.vsctl, '--if-exists', 'del-port', bridge, port)

    def set_vlan(self, port: str, tag: int):
        self.run(self.vsctl, 'set', 'port', port, f'tag={tag}')

    def clear_vlan(self, port: str):
        self.run(self.vsctl, 'clear', 'port', port, 'tag')

    def set_ingress_policing(self, iface: str, rate_kbps: int, burst_kb: int):
        self.run(self.vsctl, 'set', 'interface', iface,
                 f'ingress_policing_rate={rate_kbps}',
                 f'ingress_policing_burst={burst_kb}')

    def clear_ingress_policing(self, iface: str):
        self.run(self.vsctl, 'set', 'interface', iface,
                 'ingress_policing_rate=0', 'ingress_policing_burst=0')

    ## link operations

    def link_exists(self, iface: str) -> bool:
        try:
            self.run(self.ip, 'link', 'show', 'dev', iface)
        except CommandError as e:
            logger.trace(f'link show {iface}: {e}')
            return False
        return True

    def link_up(self, iface: str):
        self.run(self.ip, 'link', 'set', 'dev', iface, 'up')

    def set_mac(self, iface: str, address: str):
        self.run(self.ip, 'link', 'set', 'dev', iface, 'address', address)

    def list_links(self) -> List[str]:
        ''' link names from "ip -o link show", without the @peer suffix '''
        output = self.run(self.ip, '-o', 'link', 'show')
        retval = []
        for line in output.splitlines():
            fields = line.split(':', 2)
            if len(fields) < 3:
                continue
            name = fields[1].strip().split('@')[0]
            if name:
                retval.append(name)
            continue
        return natsorted(retval)
