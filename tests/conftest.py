import subprocess

import pytest

from nmobfs.lock import ExclusiveLock
from nmobfs.mutator import PortMutator
from nmobfs.policy import RotationPolicy
from nmobfs.scheduler import Scheduler
from nmobfs.state import open_state
from nmobfs.switch import SwitchControl


class FakeRunner:
    """stands in for subprocess: records commands, simulates ovs-vsctl/ip"""

    def __init__(self):
        self.calls = []
        self.ports = {}
        self.links = []
        self.fail = set()
        self.stderr = "no such device"

    def __call__(self, args, timeout):
        args = list(args)
        self.calls.append(args)
        if any(x in self.fail for x in args):
            return subprocess.CompletedProcess(args, 1, "", self.stderr)
        if args[:2] == ["ovs-vsctl", "br-exists"]:
            return subprocess.CompletedProcess(args, 0 if args[2] in self.ports else 2, "", "")
        if args[:3] == ["ip", "-o", "link"]:
            output = "".join(f"{n}: {x}: <BROADCAST,UP> mtu 1420\n" for n, x in enumerate(self.links, start=1))
            return subprocess.CompletedProcess(args, 0, output, "")
        if args[:2] == ["ovs-vsctl", "list-ports"]:
            output = "".join(f"{x}\n" for x in self.ports.get(args[2], []))
            return subprocess.CompletedProcess(args, 0, output, "")
        return subprocess.CompletedProcess(args, 0, "", "")

    def commands_for(self, iface):
        return [x for x in self.calls if iface in x]


class FakeClock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy(tmp_path):
    return RotationPolicy(
        vlan_pool="100,200,300",
        vlan_interval=300,
        mac_interval=1800,
        mac_oui_pool="02:00:00",
        techniques=["vlan", "mac"],
        bridge="br0",
        state_file=str(tmp_path / "lib" / "obfuscation-state"),
        lock_file=str(tmp_path / "run" / "obfuscation.lock"),
    )


def make_scheduler(policy, runner, clock, **kwargs):
    switch = SwitchControl(timeout=policy.command_timeout, runner=runner)
    kwargs.setdefault("mutator", PortMutator(switch))
    kwargs.setdefault("store", open_state(policy.state_file, policy.state_format))
    kwargs.setdefault("lock", ExclusiveLock(policy.lock_file))
    return Scheduler(policy, clock=clock, **kwargs)


@pytest.fixture
def scheduler(policy, runner, clock):
    return make_scheduler(policy, runner, clock)


@pytest.fixture
def scheduler_factory(runner, clock):
    def factory(policy, **kwargs):
        return make_scheduler(policy, runner, clock, **kwargs)

    return factory
