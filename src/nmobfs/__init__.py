''' nmobfs - mild obfuscation for Netmaker interfaces on OpenVSwitch '''

from .version import VERSION
from .policy import RotationPolicy, Technique, load_policy
from .policy import ConfigError, ObfuscationDisabled
from .scheduler import Scheduler
from .cli import app
