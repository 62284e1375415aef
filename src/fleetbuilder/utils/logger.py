# logger.py
import logging
import sys
import os
from typing import List, Tuple

import colorlog

from .. import constants


def setup_logger(debug: bool = False, module_levels: dict | None = None, log_file: str | None = None):
    """
    Configures the root logger for the application with colored output.

    Args:
        debug: Enable debug logging level
        module_levels: Per-module log levels
        log_file: Optional path to log file. If provided, logs will be written to this file.
    """
    logger = logging.getLogger()
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)

    # Prevent duplicate handlers if this function is called multiple times
    if logger.handlers:
        # Even if handlers exist, still allow adjusting module levels dynamically
        _apply_module_levels(module_levels)
        return

    # Respect NO_COLOR env var (https://no-color.org/)
    use_colors = sys.stdout.isatty() and not os.environ.get("NO_COLOR")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.NOTSET)

    if use_colors:
        console_formatter = colorlog.ColoredFormatter(
            '%(log_color)s[%(levelname).4s]%(reset)s %(cyan)s%(name)s%(reset)s: %(message)s',
            log_colors={
                'DEBUG': 'cyan',
                'INFO': 'green',
                'WARNING': 'yellow',
                'ERROR': 'red',
                'CRITICAL': 'red,bg_white',
            },
            reset=True,
            style='%'
        )
    else:
        console_formatter = logging.Formatter('[%(levelname).4s] %(name)s: %(message)s')

    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        except OSError as e:
            logging.error(f"Failed to create log file handler for '{log_file}': {e}")
        else:
            file_handler.setLevel(logging.NOTSET)
            file_formatter = logging.Formatter(
                '%(asctime)s [%(levelname).4s] %(name)s: %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            logger.addHandler(file_handler)
            logging.info(f"Logging to file: {log_file}")

    _apply_module_levels(module_levels)


def parse_module_levels(levels: str | None) -> dict | None:
    """Parse 'name=LEVEL,name=LEVEL' into a mapping, skipping malformed pairs."""
    if not levels:
        return None
    module_levels = {}
    for pair in levels.split(','):
        pair = pair.strip()
        if not pair or '=' not in pair:
            continue
        name, lvl = pair.split('=', 1)
        module_levels[name.strip()] = lvl.strip().upper()
    return module_levels


def _apply_module_levels(module_levels: dict | None):
    """Apply per-module logger levels from mapping or env var FLEETB_LOG_LEVELS.

    module_levels format: {"fleetbuilder.builder.executor": "DEBUG", "engine": "INFO"}
    Env var example: FLEETB_LOG_LEVELS="exec=DEBUG,builder.arch=INFO"
    """
    if module_levels is None:
        module_levels = parse_module_levels(os.environ.get(constants.LOG_LEVELS_ENV))

    if not module_levels:
        return

    for name, lvl_str in module_levels.items():
        lvl = logging.getLevelName(lvl_str.upper())
        if not isinstance(lvl, int):
            logging.debug(f"Ignoring unknown log level '{lvl_str}' for '{name}'")
            continue
        logging.getLogger(_normalize_module_name(name)).setLevel(lvl)


def _normalize_module_name(name: str) -> str:
    """Normalize provided module name with alias and auto-prefix.

    - If name is an alias, expand to full module path.
    - If name ends with '.*', treat it as base logger (strip the wildcard).
    - If name does not start with 'fleetbuilder.' and begins with a known top module, prefix it.
    """
    if name in constants.LOG_ALIAS_MAP:
        return constants.LOG_ALIAS_MAP[name]
    if name.endswith('.*'):
        name = name[:-2]
    if not name.startswith('fleetbuilder.'):
        first = name.split('.', 1)[0]
        if first in constants.KNOWN_TOP_MODULES:
            name = f'fleetbuilder.{name}'
    return name


class ServiceLogAdapter(logging.LoggerAdapter):
    """Prefixes every record with the service it belongs to."""

    def process(self, msg, kwargs):
        return f"[{self.extra['service']}] {msg}", kwargs


class DeferredMessages:
    """
    Buffers messages that must not get lost in interleaved build output.

    Messages are emitted in insertion order by a single `flush()` once the build
    stream is over. Flushing again is a no-op.
    """

    def __init__(self):
        self._messages: List[Tuple[int, str]] = []
        self._flushed = False

    def warn(self, message: str):
        self._messages.append((logging.WARNING, message))

    def info(self, message: str):
        self._messages.append((logging.INFO, message))

    @property
    def has_warnings(self) -> bool:
        return any(level >= logging.WARNING for level, _ in self._messages)

    @property
    def messages(self) -> List[str]:
        return [message for _, message in self._messages]

    @property
    def flushed(self) -> bool:
        return self._flushed

    def flush(self, logger: logging.Logger):
        if self._flushed:
            return
        self._flushed = True
        for level, message in self._messages:
            logger.log(level, message)

    def __len__(self) -> int:
        return len(self._messages)
