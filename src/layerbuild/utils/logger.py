# logger.py
import contextlib
import contextvars
import logging
import sys
import os

import colorlog

from .. import constants

CONSOLE_FORMAT = '[%(levelname).4s] %(name)s%(step)s: %(message)s'
FILE_FORMAT = '%(asctime)s [%(levelname).4s] %(name)s%(step)s: %(message)s'

_current_step: contextvars.ContextVar = contextvars.ContextVar('layerbuild_step', default=None)


def current_step() -> str | None:
    return _current_step.get()


@contextlib.contextmanager
def log_step(name: str):
    """Tag every record logged inside the block with the running step's name."""
    token = _current_step.set(name)
    try:
        yield
    finally:
        _current_step.reset(token)


class StepFilter(logging.Filter):
    """Sets `record.step` to ' (<step>)' while a step runs, '' otherwise."""

    def filter(self, record: logging.LogRecord) -> bool:
        step = _current_step.get()
        record.step = f" ({step})" if step else ""
        return True


def setup_logger(debug: bool = False, module_levels: dict | None = None, log_file: str | None = None):
    """
    Configures the root logger with colored console output and, optionally,
    a plain file log. Records emitted while a step runs carry the step name.

    Args:
        debug: Enable debug logging level
        module_levels: Per-module log levels
        log_file: Optional path to a log file, truncated on open
    """
    logger = logging.getLogger()
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)

    # called again (e.g. by a subcommand): only levels change
    if logger.handlers:
        _apply_module_levels(module_levels)
        return

    use_colors = sys.stderr.isatty() and not os.environ.get("NO_COLOR")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.NOTSET)
    console_handler.addFilter(StepFilter())

    if use_colors:
        console_formatter = colorlog.ColoredFormatter(
            '%(log_color)s[%(levelname).4s]%(reset)s %(cyan)s%(name)s%(reset)s%(purple)s%(step)s%(reset)s: %(message)s',
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
        console_formatter = logging.Formatter(CONSOLE_FORMAT)

    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        except OSError as e:
            logging.error(f"Failed to create log file handler for '{log_file}': {e}")
        else:
            file_handler.setLevel(logging.NOTSET)
            file_handler.addFilter(StepFilter())
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
            logger.addHandler(file_handler)
            logging.info(f"Logging to file: {log_file}")

    _apply_module_levels(module_levels)


def parse_module_levels(spec: str | None) -> dict | None:
    """Parse 'name=LEVEL,name=LEVEL' into a mapping. Malformed pairs are skipped."""
    if not spec:
        return None
    module_levels = {}
    for pair in spec.split(','):
        pair = pair.strip()
        if not pair or '=' not in pair:
            continue
        name, lvl = pair.split('=', 1)
        module_levels[name.strip()] = lvl.strip().upper()
    return module_levels


def _apply_module_levels(module_levels: dict | None):
    """Apply per-module logger levels from mapping or env var LBUILD_LOG_LEVELS.

    module_levels format: {"layerbuild.builder.pipeline": "DEBUG", "layerbuild.runners.docker": "INFO"}
    Env var example: LBUILD_LOG_LEVELS="pipe=DEBUG,docker=INFO"
    """
    if module_levels is None:
        module_levels = parse_module_levels(os.environ.get(constants.LOG_LEVELS_ENV))

    if not module_levels:
        return

    for name, lvl_str in module_levels.items():
        lvl = logging.getLevelName(lvl_str.upper())
        if not isinstance(lvl, int):
            logging.warning(f"Ignoring unknown log level '{lvl_str}' for '{name}'")
            continue
        logging.getLogger(_normalize_module_name(name)).setLevel(lvl)


def _normalize_module_name(name: str) -> str:
    """Normalize provided module name with alias and auto-prefix.

    - If name is an alias, expand to full module path.
    - If name ends with '.*', treat it as base logger (strip the wildcard).
    - If name does not start with 'layerbuild.' and begins with a known top module, prefix 'layerbuild.'.
    """
    if name in constants.LOG_ALIAS_MAP:
        return constants.LOG_ALIAS_MAP[name]
    if name.endswith('.*'):
        name = name[:-2]
    if not name.startswith('layerbuild.'):
        first = name.split('.', 1)[0]
        if first in constants.KNOWN_TOP_MODULES:
            name = f'layerbuild.{name}'
    return name
