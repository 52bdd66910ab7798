"""
Coercion Engine - converts a single Lua value to a Python scalar.

NOTICE: the conversion policy differs from Lua's own rules. It follows C-style
casts between integers, floats and booleans, plus Lua's own conversion
between numbers and number-literal strings:

1. Integers, floats and booleans convert to each other with C-style casts
2. Numbers and number-literal strings convert to each other by Lua
   (tonumber/tostring of the runtime, so formatting is exactly Lua's)
3. The number 0 converts to boolean False (Lua would say true)
4. nil and none never convert: the caller's default is returned
5. Non-number-literal strings, including '', don't convert to other types
6. Integers keep full precision within [-2^63, 2^63 - 1]

Examples:
    number 2.5   -> string "2.5"    (by Lua)
    string "2.5" -> double 2.5      (by Lua)
    double 2.5   -> int 2           (C-style truncation)
    string "2.5" -> int 2           ("2.5" -> 2.5 by Lua, then 2.5 -> 2)
    true         -> int 1
    int 0        -> bool False
    string "0"   -> bool False

Out-of-range policy: integer casts to narrower types wrap (two's complement);
floats truncate toward zero and saturate to the int64 range before wrapping;
NaN converts to 0.

Lua strings that are not valid UTF-8 reach Python as bytes, unchanged, so
they go back to Lua byte for byte; converted to str they are decoded with
replacement characters.
"""

import math
from typing import Any, Callable, Iterator, Optional, Tuple

from lupa import lua_type

from .logging import get_logger
from .types import (
    ConversionReport,
    NativeType,
    ValueKind,
    resolve_target,
)

log = get_logger('coercion')

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

# Protected reads of script values. Strings that are not valid UTF-8 are
# handed over as hex inside a marker table and rebuilt as bytes in Python.
_CODEC_LUA = """
local pcall, tostring, type, next, getmetatable, setmetatable, rawequal =
      pcall, tostring, type, next, getmetatable, setmetatable, rawequal
local find, gsub, byte, format = string.find, string.gsub, string.byte, string.format
local utf8len = utf8 and utf8.len

local raw_mt = {}

local function invalid(s)
    if utf8len then return not utf8len(s) end
    return find(s, '[\\128-\\255]') ~= nil
end

local function hex(c) return format('%02x', byte(c)) end

local function sanitize(v)
    if type(v) == 'string' and invalid(v) then
        return setmetatable({(gsub(v, '.', hex))}, raw_mt)
    end
    return v
end

local function raw_hex(v)
    if type(v) == 'table' and rawequal(getmetatable(v), raw_mt) then return v[1] end
    return nil
end

local function length(t)
    local ok, n = pcall(function() return #t end)
    return ok, sanitize(n)
end

local function item(t, k)
    local ok, v = pcall(function() return t[k] end)
    return ok, sanitize(v)
end

local function str(v)
    local ok, s = pcall(tostring, v)
    return ok, sanitize(s)
end

local function entries(t)
    local list, n, k, v = {}, 0, next(t)
    while k ~= nil do
        n = n + 1
        list[n] = {sanitize(k), sanitize(v)}
        k, v = next(t, k)
    end
    return list, n
end

return sanitize, raw_hex, length, item, str, entries
"""

_LUA_KINDS = {
    'table': ValueKind.TABLE,
    'function': ValueKind.FUNCTION,
    'userdata': ValueKind.USERDATA,
    'thread': ValueKind.THREAD,
}


def value_kind(value: Any, is_handle: Optional[Callable[[Any], bool]] = None) -> ValueKind:
    """Classify a Lua value received through lupa.

    Python objects that live in Lua (including exposed object handles)
    report USERDATA.
    """
    if value is None:
        return ValueKind.NIL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, float):
        return ValueKind.NUMBER
    if isinstance(value, (str, bytes)):
        return ValueKind.STRING
    kind = _LUA_KINDS.get(lua_type(value))
    if kind is None:
        return ValueKind.USERDATA
    if kind is ValueKind.TABLE and is_handle is not None and is_handle(value):
        return ValueKind.USERDATA
    return kind


def exact_integer(x: float) -> int:
    """Integer value of a float when it is exact and fits int64, else 0.

    Same contract as lua_tointeger on a float.
    """
    if not math.isfinite(x) or x != math.floor(x):
        return 0
    if x < _INT64_MIN or x >= 2.0 ** 63:
        return 0
    return int(x)


def saturate_int64(x: float) -> int:
    """Truncate a float toward zero, clamped to the int64 range."""
    if math.isnan(x):
        return 0
    if x >= 2.0 ** 63:
        return _INT64_MAX
    if x < -(2.0 ** 63):
        return _INT64_MIN
    return int(x)


def cast_int(value: int, target: NativeType) -> Any:
    if target.kind == 'bool':
        return value != 0
    if target.kind == 'float':
        return float(value)
    return target.wrap(value)


def cast_float(value: float, target: NativeType) -> Any:
    if target.kind == 'bool':
        return value != 0.0
    if target.kind == 'float':
        return value
    return target.wrap(saturate_int64(value))


class Coercer:
    """Converts Lua values to NativeType scalars.

    Number parsing and formatting are delegated to the runtime's own tonumber
    and tostring so that number-literal strings follow Lua's grammar.
    """

    def __init__(self, lua_runtime, is_handle: Optional[Callable[[Any], bool]] = None):
        self._tonumber = lua_runtime.eval('tonumber')
        self._tostring = lua_runtime.eval('tostring')
        self._is_handle = is_handle
        (self._sanitize,
         self._raw_hex,
         self._length,
         self._item,
         self._str,
         self._entries) = lua_runtime.execute(_CODEC_LUA)

    def kind(self, value: Any) -> ValueKind:
        return value_kind(value, self._is_handle)

    @property
    def sanitizer(self) -> Any:
        """Lua function marking strings that Python can't decode."""
        return self._sanitize

    def from_lua(self, value: Any) -> Any:
        """Undo the sanitizer's marking: such strings become bytes."""
        if lua_type(value) == 'table':
            raw = self._raw_hex(value)
            if raw is not None:
                return bytes.fromhex(raw)
        return value

    def text(self, value: Any) -> str:
        """A str or bytes value as text."""
        if isinstance(value, bytes):
            return value.decode('utf-8', 'replace')
        return value

    def tostring(self, value: Any) -> str:
        """Lua's tostring of a value (a snapshot, the value is untouched).

        A failing __tostring gives '(tostring failed: <message>)'.
        """
        if isinstance(value, (str, bytes)):
            return self.text(value)
        ok, s = self._str(value)
        s = self.from_lua(s)
        if not ok:
            if not isinstance(s, (str, bytes)):
                s = lua_type(s) or type(s).__name__
            return f"(tostring failed: {self.text(s)})"
        return self.text(s)

    def length(self, table: Any) -> Tuple[bool, Any]:
        """The # of a table, protected: (True, n) or (False, message)."""
        ok, n = self._length(table)
        return ok, self.from_lua(n)

    def item(self, table: Any, key: Any) -> Tuple[bool, Any]:
        """table[key], protected: (True, value) or (False, message)."""
        ok, value = self._item(table, key)
        return ok, self.from_lua(value)

    def entries(self, table: Any) -> Iterator[Tuple[Any, Any]]:
        """Raw key/value pairs of a table, as next() visits them."""
        pairs, count = self._entries(table)
        for i in range(1, count + 1):
            pair = pairs[i]
            yield self.from_lua(pair[1]), self.from_lua(pair[2])

    def tonumber(self, value: Any) -> Any:
        """Lua's tonumber of a string: an int, a float or None."""
        if isinstance(value, bytes):
            value = value.decode('utf-8', 'replace')
        return self._tonumber(value)

    def convert(
        self,
        value: Any,
        target: Any,
        default: Any = None,
        enable_log: bool = True,
        report: Optional[ConversionReport] = None,
    ) -> Any:
        """Convert a Lua value to a scalar target.

        Args:
            value: Value as received from lupa (None stands for nil/none)
            target: NativeType or builtin (bool, int, float, str)
            default: Returned for nil/none and when conversion fails
            enable_log: Write a diagnostic when conversion fails
            report: Receives the failure flag
        """
        target = resolve_target(target)
        if not isinstance(target, NativeType):
            raise TypeError(f"Coercer only converts scalars, got {target!r}")
        if default is None:
            default = target.default

        if target.kind == 'str':
            return self._to_string(value, target, default, enable_log, report)

        if isinstance(value, bool):
            return cast_int(int(value), target)
        if isinstance(value, int):
            return cast_int(value, target)
        if isinstance(value, float):
            return self._from_number(value, target)
        if value is None:
            return default
        if isinstance(value, (str, bytes)):
            number = self.tonumber(value)
            if number is not None:
                return self._from_number(number, target)

        self._fail(value, target, enable_log, report)
        return default

    def _from_number(self, number: Any, target: NativeType) -> Any:
        # Try the integer representation first to avoid precision loss
        exact = number if isinstance(number, int) else exact_integer(number)
        if exact != 0:
            return cast_int(exact, target)
        return cast_float(float(number), target)

    def _to_string(self, value, target, default, enable_log, report) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, bytes):
            return value.decode('utf-8', 'replace')
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return self._tostring(value)
        if value is None:
            return default
        self._fail(value, target, enable_log, report)
        return default

    def _fail(self, value: Any, target: NativeType, enable_log: bool,
              report: Optional[ConversionReport]) -> None:
        message = f"Can't convert to {target.name} by {self.describe(value)}"
        if report is not None:
            report.fail(message)
        if enable_log:
            log.error("Lua: %s", message)

    def describe(self, value: Any) -> str:
        """Describe a value for diagnostics: '<lua type>: <tostring>'."""
        return f"{self.kind(value).lua_name}: {self.tostring(value)}"
