"""
Fleet Builder Utils Module

- logger: Logging setup, per-service log adapter and deferred messages
- merge: Deep merge for dictionaries and KEY=VALUE parsing

Usage:
    from fleetbuilder.utils import setup_logger, merge_layers, DeferredMessages
"""

from .logger import setup_logger, parse_module_levels, ServiceLogAdapter, DeferredMessages
from .merge import merge_layers, normalize_to_dict, parse_key_values

__all__ = [
    'setup_logger',
    'parse_module_levels',
    'ServiceLogAdapter',
    'DeferredMessages',
    'merge_layers',
    'normalize_to_dict',
    'parse_key_values',
]
