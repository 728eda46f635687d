from cloudformation_pilot import util

from typing import Any, Dict, List, Optional
from colorama import Fore, Style

import copy
import logging
import yaml

log = logging.getLogger('stack-pilot')

DEFAULT_SETTINGS_FILE = 'fog.yaml'

DEFAULTS: Dict[str, Any] = {
    'logging': {
        'enabled': False,
        'filename': 'fog-deployments.log',
    },
    'changeset': {
        'poll-interval': 5,
    },
    'drift': {
        'poll-interval': 5,
        'max-attempts': 120,
        'ignore-blackholes': [],
        'detect-unmanaged-resources': [],
        'ignore-unmanaged-resources': [],
        'ignore-tags': [],
    },
    'events': {
        'poll-interval': 3,
    },
}


def merge_settings(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    u = copy.deepcopy(base)
    for k, v in overlay.items():
        if isinstance(v, dict) and isinstance(u.get(k), dict):
            u[k] = merge_settings(u[k], v)
        else:
            u[k] = v
    return u


class Settings(object):
    def __init__(self, values: Optional[Dict[str, Any]] = None) -> None:
        self.values: Dict[str, Any] = merge_settings(DEFAULTS, values or dict())

    @classmethod
    def load(cls, filename: Optional[str] = None) -> 'Settings':
        path = filename or DEFAULT_SETTINGS_FILE
        try:
            with open(path, 'r') as f:
                log.debug(f'Loading settings from {Fore.GREEN}{path}{Style.RESET_ALL}')
                body = yaml.safe_load(f)
        except FileNotFoundError:
            if filename is not None:
                raise util.InvalidParameters(f'Settings file {filename} does not exist') from None
            log.debug(f'No settings file {Fore.GREEN}{path}{Style.RESET_ALL}, using defaults')
            return cls()
        except yaml.YAMLError as e:
            raise util.InvalidParameters(f'Settings file {path} is not valid YAML: {e}') from None
        if body is None:
            body = dict()
        if not isinstance(body, dict):
            raise util.InvalidParameters(f'Settings file {path} must contain a mapping')
        return cls(body)

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self.values
        for xk in key.split('.'):
            if not isinstance(node, dict) or xk not in node:
                return default
            node = node[xk]
        return node

    def get_bool(self, key: str) -> bool:
        v = self.get(key, False)
        if isinstance(v, str):
            return v.strip().lower() in ('true', 'yes', 'on', '1')
        return bool(v)

    def get_string(self, key: str) -> str:
        v = self.get(key)
        return '' if v is None else str(v)

    def get_int(self, key: str) -> int:
        try:
            return int(self.get(key, 0))
        except (TypeError, ValueError):
            raise util.InvalidParameters(f'Setting {key} must be a number') from None

    def get_string_list(self, key: str) -> List[str]:
        v = self.get(key)
        if v is None:
            return list()
        if isinstance(v, str):
            return [v]
        return [str(xv) for xv in v]
