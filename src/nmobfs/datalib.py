#!/usr/bin/env python3
''' configuration value converters '''
import re
import shlex
from itertools import chain
from typing import Iterable, TextIO, Union

from loguru import logger
from munch import DefaultMunch

emptyValuesTuple = (None, '')

true_strings = ('true', 'yes', 'on', '1')
false_strings = ('false', 'no', 'off', '0', '')

oui_pattern = re.compile(r'^[0-9a-f]{2}(:[0-9a-f]{2}){2}$')

def nonone(arg):
    ''' eliminate the None and blanks '''
    if arg is None:
        return ''
    return arg

def convert_bool(arg: Union[str, bool, None]) -> bool:
    ''' shell style boolean, unset counts as false '''
    if isinstance(arg, bool):
        return arg
    value = nonone(arg).strip().lower()
    if value in true_strings:
        return True
    if value in false_strings:
        return False
    raise ValueError(f'invalid boolean: {arg}')

def expandRange(arg):
    ''' expand a range '''
    try:
        low, high = [ int(x) for x in arg.split(":") ]
        high += 1
    except ValueError:
        low = int(arg)
        high = low + 1
    return list(range(low, high))

def split_list(arg: Union[str, Iterable]) -> list:
    ''' split a comma or space delimited string '''
    if isinstance(arg, str):
        arg = arg.replace(',', ' ').split()
    return [ str(x).strip() for x in arg if str(x).strip() ]

def convert_vlan_pool(arg) -> tuple:
    ''' expand "100,200,300:305" into a tuple of unique tags, order preserved '''
    items = split_list(arg)
    logger.trace(f'Expand VLAN pool: {items}')
    expanded = chain.from_iterable(expandRange(x) for x in items)
    return tuple(dict.fromkeys(expanded))

def convert_oui_pool(arg) -> tuple:
    ''' normalize OUI prefixes to lowercase colon notation '''
    retval = []
    for x in split_list(arg):
        oui = x.lower().replace('-', ':')
        if not oui_pattern.match(oui):
            raise ValueError(f'invalid OUI prefix: {x}')
        retval.append(oui)
        continue
    return tuple(retval)

def parse_shell_vars(source: TextIO) -> DefaultMunch:
    ''' read KEY=value assignments from a sourced-style shell file

    Comments, blank lines and a leading "export" are ignored, values are
    unquoted with shell rules.  Anything else is logged and skipped.  Unset
    keys read as None, e.g. values.BRIDGE_NAME.
    '''
    retval = {}
    for lineno, line in enumerate(source, start=1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if line.startswith('export '):
            line = line[len('export '):].strip()
        key, sep, value = line.partition('=')
        key = key.strip()
        if not sep or not key.isidentifier():
            logger.debug(f'config line {lineno} ignored: {line}')
            continue
        try:
            retval[key] = ' '.join(shlex.split(value, comments=True))
        except ValueError as e:
            raise ValueError(f'line {lineno}: {e}') from e
        continue
    return DefaultMunch.fromDict(retval)
