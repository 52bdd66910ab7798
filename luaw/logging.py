"""
luaw Logging

Per-module diagnostics for the binding layer, plus opt-in tracing of what
Lua does through it: chunks compiled by sessions and metamethod dispatch
into Python objects.

Usage:
    from luaw.logging import get_logger

    log = get_logger('session')
    log.debug("Compiling chunk")
    log.error("Lua: %s", message)
    log.lua_call("B*.__index", "i")

Configuration:
    Environment variables:
        LUAW_LOG_LEVEL=DEBUG           # Default level of every module
        LUAW_LOG_SESSION=DEBUG         # Level of one module
        LUAW_LOG_LUA_CALLS=1           # Trace metamethod dispatch
        LUAW_LOG_LUA_SCRIPTS=1         # Trace compiled chunks

    Or in code:
        from luaw.logging import configure_logging
        configure_logging(level='DEBUG', modules={'coercion': 'OFF'})

Lines go to stderr unless another writer is installed with set_output().
"""

import os
import sys
import traceback
from enum import IntEnum
from functools import lru_cache
from typing import Any, Callable, Dict, Optional


class LogLevel(IntEnum):
    TRACE = 5
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50
    OFF = 100


_LABELS = {
    LogLevel.TRACE: 'TRACE',
    LogLevel.DEBUG: 'DEBUG',
    LogLevel.INFO: 'INFO',
    LogLevel.WARNING: 'WARN',
    LogLevel.ERROR: 'ERROR',
    LogLevel.CRITICAL: 'CRIT',
}

_config: Dict[str, Any] = {
    'default_level': LogLevel.INFO,
    'module_levels': {},
    'lua_calls': False,
    'lua_scripts': False,
}


def _default_output(line: str) -> None:
    print(line, file=sys.stderr)


_output: Callable[[str], None] = _default_output


def set_output(writer: Optional[Callable[[str], None]]) -> None:
    """Send formatted lines to writer; None goes back to stderr."""
    global _output
    _output = writer or _default_output


def _parse_level(name: str) -> LogLevel:
    name = name.strip().upper()
    if name == 'WARN':
        return LogLevel.WARNING
    return LogLevel.__members__.get(name, LogLevel.INFO)


def _flag(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def configure_logging(
    level: str = 'INFO',
    modules: Optional[Dict[str, str]] = None,
    lua_calls: bool = False,
    lua_scripts: bool = False,
) -> None:
    """
    Set levels and tracing.

    Args:
        level: Level of modules without their own
        modules: module name -> level
        lua_calls: Trace metamethod dispatch from Lua
        lua_scripts: Trace chunks compiled by sessions
    """
    _config['default_level'] = _parse_level(level)
    for module, module_level in (modules or {}).items():
        _config['module_levels'][module] = _parse_level(module_level)
    _config['lua_calls'] = lua_calls
    _config['lua_scripts'] = lua_scripts


def _configure_from_env(environ=os.environ) -> None:
    prefix = 'LUAW_LOG_'
    flags = {'LUA_CALLS': 'lua_calls', 'LUA_SCRIPTS': 'lua_scripts'}
    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        name = key[len(prefix):]
        if name == 'LEVEL':
            _config['default_level'] = _parse_level(value)
        elif name in flags:
            _config[flags[name]] = _flag(value)
        else:
            _config['module_levels'][name.lower()] = _parse_level(value)


_configure_from_env()


class LuawLogger:
    """Logger of one luaw module."""

    def __init__(self, module: str):
        self.module = module
        self._key = module.lower().replace('.', '_')

    @property
    def level(self) -> LogLevel:
        return _config['module_levels'].get(self._key, _config['default_level'])

    def _emit(self, level: LogLevel, label: str, msg: str, args: tuple) -> None:
        if level < self.level:
            return
        if args:
            try:
                msg = msg % args
            except (TypeError, ValueError):
                msg = f"{msg} {args}"
        _output(f"[{self.module}] {label}: {msg}")

    def trace(self, msg: str, *args) -> None:
        self._emit(LogLevel.TRACE, _LABELS[LogLevel.TRACE], msg, args)

    def debug(self, msg: str, *args) -> None:
        self._emit(LogLevel.DEBUG, _LABELS[LogLevel.DEBUG], msg, args)

    def info(self, msg: str, *args) -> None:
        self._emit(LogLevel.INFO, _LABELS[LogLevel.INFO], msg, args)

    def warning(self, msg: str, *args) -> None:
        self._emit(LogLevel.WARNING, _LABELS[LogLevel.WARNING], msg, args)

    def error(self, msg: str, *args) -> None:
        self._emit(LogLevel.ERROR, _LABELS[LogLevel.ERROR], msg, args)

    def critical(self, msg: str, *args) -> None:
        self._emit(LogLevel.CRITICAL, _LABELS[LogLevel.CRITICAL], msg, args)

    def log_traceback(self, exc: BaseException) -> None:
        """Log the traceback of exc at DEBUG, one line per entry."""
        for chunk in traceback.format_exception(type(exc), exc, exc.__traceback__):
            for line in chunk.rstrip('\n').split('\n'):
                if line.strip():
                    self._emit(LogLevel.DEBUG, _LABELS[LogLevel.TRACE], line, ())

    # Lua tracing, off unless enabled

    def lua_call(self, name: str, *args) -> None:
        """A metamethod called from Lua."""
        if _config['lua_calls']:
            rendered = ', '.join(repr(a) for a in args)
            self._emit(LogLevel.DEBUG, 'LUA→', f"{name}({rendered})", ())

    def lua_script(self, code: str, action: str = 'execute') -> None:
        """A chunk handed to Lua; only its first line is shown."""
        if not _config['lua_scripts']:
            return
        first_line = code.strip().split('\n', 1)[0]
        if len(first_line) > 80:
            first_line = first_line[:77] + '...'
        self._emit(LogLevel.DEBUG, 'LUA', f"{action}: {first_line}", ())


@lru_cache(maxsize=64)
def get_logger(module: str) -> LuawLogger:
    """Cached logger for module."""
    return LuawLogger(module)


def disable_logging() -> None:
    _config['default_level'] = LogLevel.OFF
    _config['lua_calls'] = False
    _config['lua_scripts'] = False
