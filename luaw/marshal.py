"""
Container Marshaller - converts between Python containers and Lua tables.

Lua -> Python (best effort, never atomic):
- ListOf(T): reads the length with Lua's # operator and converts items
  1..n. A failed item sets the failure flag and keeps the item default in its
  slot, so every other item is still returned.
- MapOf(K, V): walks the table with next(). Entries whose key or value fails
  are skipped and the failure flag is set.
- Anything but a table, nil included, fails with the default. Errors raised
  by __len or __index count as failures too.

Python -> Lua:
- Primitives: None, bool, int, float, str (ints wrap to int64)
- list/tuple: 1-indexed Lua tables
- dict: Lua tables keyed by str/int/float/bool
- Objects with registered members (or explicit handle wrappers): proxies
  built by the session's object binder
"""

from typing import Any, Callable, Optional

from lupa import lua_type

from .coercion import Coercer
from .logging import get_logger
from .types import (
    INT64,
    ConversionReport,
    ListOf,
    MapOf,
    ValueKind,
    default_for,
    resolve_target,
)

log = get_logger('marshal')


class Marshaller:
    """Recursive converter for scalars and containers."""

    def __init__(
        self,
        lua_runtime,
        coercer: Coercer,
        wrap_object: Optional[Callable[[Any], Any]] = None,
    ):
        self._lua = lua_runtime
        self._coercer = coercer
        self._wrap_object = wrap_object

    @property
    def coercer(self) -> Coercer:
        return self._coercer

    # =========================================================================
    # Lua -> Python
    # =========================================================================

    def convert(
        self,
        value: Any,
        target: Any,
        default: Any = None,
        enable_log: bool = True,
        report: Optional[ConversionReport] = None,
    ) -> Any:
        """Convert a Lua value to a scalar or container target."""
        target = resolve_target(target)
        if isinstance(target, ListOf):
            return self.to_list(value, target, default, enable_log, report)
        if isinstance(target, MapOf):
            return self.to_dict(value, target, default, enable_log, report)
        return self._coercer.convert(value, target, default, enable_log, report)

    def to_list(self, value, target: ListOf, default=None, enable_log=True, report=None) -> list:
        result = [] if default is None else list(default)
        if self._coercer.kind(value) is not ValueKind.TABLE:
            self._fail(self._cannot(value, 'list'), enable_log, report)
            return result

        ok, size = self._coercer.length(value)
        if not ok:
            self._fail(f"Can't get the length of {self._coercer.describe(value)}: "
                       f"{self._coercer.tostring(size)}", enable_log, report)
            return result
        if isinstance(size, float) and size.is_integer():
            size = int(size)
        if isinstance(size, bool) or not isinstance(size, int):
            self._fail(f"Length of {self._coercer.describe(value)} is not an integer: "
                       f"{self._coercer.describe(size)}", enable_log, report)
            return result

        result = []
        for i in range(1, size + 1):
            item_report = ConversionReport()
            ok, item = self._coercer.item(value, i)
            if ok:
                result.append(self.convert(item, target.item, None, enable_log, item_report))
            else:
                result.append(default_for(target.item))
                self._fail(f"Can't read item {i}: {self._coercer.tostring(item)}",
                           enable_log, item_report)
            if item_report.failed and report is not None:
                report.fail(f"item {i}: " + '; '.join(item_report.errors))
        return result

    def to_dict(self, value, target: MapOf, default=None, enable_log=True, report=None) -> dict:
        result = {} if default is None else dict(default)
        if self._coercer.kind(value) is not ValueKind.TABLE:
            self._fail(self._cannot(value, 'dict'), enable_log, report)
            return result

        result = {}
        for lua_key, lua_value in self._coercer.entries(value):
            entry_report = ConversionReport()
            key = self.convert(lua_key, target.key, None, enable_log, entry_report)
            if not entry_report.failed:
                item = self.convert(lua_value, target.value, None, enable_log, entry_report)
                if not entry_report.failed:
                    result[key] = item
            if entry_report.failed and report is not None:
                report.fail(f"entry {lua_key!r}: " + '; '.join(entry_report.errors))
        return result

    def _cannot(self, value: Any, target_name: str) -> str:
        return f"Can't convert to {target_name} by {self._coercer.describe(value)}"

    def _fail(self, message: str, enable_log: bool, report: Optional[ConversionReport]) -> None:
        if report is not None:
            report.fail(message)
        if enable_log:
            log.error("Lua: %s", message)

    # =========================================================================
    # Python -> Lua
    # =========================================================================

    def to_lua(self, value: Any) -> Any:
        """Convert a Python value to a value that can live in Lua.

        This ensures Lua code never receives raw Python containers (lists,
        dicts) which have different semantics (0-indexed, no ipairs/pairs
        support, no # operator).
        """
        if value is None:
            return None
        if isinstance(value, int) and not isinstance(value, bool):
            # Lua integers are int64; wider values wrap like set_integer
            return INT64.wrap(value)
        if isinstance(value, (bool, float, str)):
            return value

        # Already a Lua object (table, function, coroutine)
        if lua_type(value) is not None:
            return value

        if isinstance(value, (list, tuple)):
            lua_table = self._lua.table()
            for i, item in enumerate(value, start=1):
                lua_table[i] = self.to_lua(item)
            return lua_table

        if isinstance(value, dict):
            lua_table = self._lua.table()
            for k, v in value.items():
                if not isinstance(k, (str, int, float, bool)):
                    raise TypeError(
                        f"Dict key must be str/int/float/bool, got {type(k).__name__}"
                    )
                lua_table[self.to_lua(k)] = self.to_lua(v)
            return lua_table

        # bytes - reject, we don't want "b'...'" strings to sneak through
        if isinstance(value, bytes):
            raise TypeError("Cannot pass bytes to Lua - decode to str first")

        # sets - reject, not predictable order
        if isinstance(value, (set, frozenset)):
            raise TypeError("Cannot convert set to Lua - convert to list first")

        if self._wrap_object is not None:
            wrapped = self._wrap_object(value)
            if wrapped is not NotImplemented:
                return wrapped

        # Native callbacks are passed through as callable userdata
        if callable(value):
            return value

        raise TypeError(
            f"Cannot convert {type(value).__name__} to a Lua value. "
            f"Register its members or wrap it with Ref/Shared/Copy."
        )
