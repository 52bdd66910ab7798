"""
Native type descriptors and conversion bookkeeping.

A conversion target is one of:
- a NativeType scalar (BOOL, INT, UINT, LLONG, DOUBLE, STRING, ...)
- a Python builtin standing for one (bool, int, float, str)
- a container descriptor (ListOf, MapOf) nesting other targets
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Union

from .errors import ConversionError


class ValueKind(Enum):
    """Kind of a Lua value as seen from Python."""
    NONE = 'no value'
    NIL = 'nil'
    BOOLEAN = 'boolean'
    INTEGER = 'integer'
    NUMBER = 'number'
    STRING = 'string'
    TABLE = 'table'
    FUNCTION = 'function'
    USERDATA = 'userdata'
    THREAD = 'thread'

    @property
    def lua_name(self) -> str:
        """Name Lua's type() would report (integers are numbers)."""
        if self is ValueKind.INTEGER:
            return 'number'
        return self.value


@dataclass(frozen=True)
class NativeType:
    """A scalar type on the Python side of the boundary.

    kind is one of 'bool', 'int', 'float', 'str'. Integer types carry a bit
    width and signedness; values are wrapped to that width on conversion.
    """
    name: str
    kind: str
    bits: int = 0
    signed: bool = True

    @property
    def default(self) -> Any:
        return {'bool': False, 'int': 0, 'float': 0.0, 'str': ''}[self.kind]

    def wrap(self, value: int) -> int:
        """Reinterpret an integer in this type's width (two's complement)."""
        mask = (1 << self.bits) - 1
        value &= mask
        if self.signed and value >> (self.bits - 1):
            value -= 1 << self.bits
        return value

    def __repr__(self) -> str:
        return self.name


BOOL = NativeType('bool', 'bool')
INT8 = NativeType('int8', 'int', 8)
INT16 = NativeType('int16', 'int', 16)
INT32 = NativeType('int32', 'int', 32)
INT64 = NativeType('int64', 'int', 64)
UINT8 = NativeType('uint8', 'int', 8, signed=False)
UINT16 = NativeType('uint16', 'int', 16, signed=False)
UINT32 = NativeType('uint32', 'int', 32, signed=False)
UINT64 = NativeType('uint64', 'int', 64, signed=False)
DOUBLE = NativeType('double', 'float')
STRING = NativeType('string', 'str')

# C-style names (LP64 model: long is 64 bit)
INT = INT32
UINT = UINT32
LONG = INT64
ULONG = UINT64
LLONG = INT64
ULLONG = UINT64

SCALARS = {
    'bool': BOOL,
    'int': INT,
    'uint': UINT,
    'long': LONG,
    'ulong': ULONG,
    'llong': LLONG,
    'ullong': ULLONG,
    'double': DOUBLE,
    'string': STRING,
}

_BUILTINS = {
    bool: BOOL,
    int: LLONG,
    float: DOUBLE,
    str: STRING,
}


@dataclass(frozen=True)
class ListOf:
    """Ordered sequence target: a Lua array table to a Python list."""
    item: Any

    @property
    def default(self) -> list:
        return []


@dataclass(frozen=True)
class MapOf:
    """Key/value target: a Lua table to a Python dict."""
    key: Any
    value: Any

    @property
    def default(self) -> dict:
        return {}


Target = Union[NativeType, ListOf, MapOf, type]


def resolve_target(target: Any) -> Union[NativeType, ListOf, MapOf]:
    """Normalize a conversion target, mapping builtins to NativeTypes."""
    if isinstance(target, (NativeType, ListOf, MapOf)):
        return target
    if target in _BUILTINS:
        return _BUILTINS[target]
    if isinstance(target, str) and target in SCALARS:
        return SCALARS[target]
    raise TypeError(f"Unsupported conversion target: {target!r}")


def default_for(target: Any) -> Any:
    """The zero value of a conversion target (fresh container each call)."""
    return resolve_target(target).default


@dataclass
class ConversionReport:
    """Outcome of a conversion, filled in by the converter.

    Pass one to any to_*/get_*/eval_* call to learn whether the returned value
    is a real conversion or the fallback default.
    """
    failed: bool = False
    errors: List[str] = field(default_factory=list)

    def fail(self, message: Optional[str] = None) -> None:
        self.failed = True
        if message:
            self.errors.append(message)

    def reset(self) -> None:
        self.failed = False
        self.errors.clear()

    def raise_if_failed(self) -> None:
        if self.failed:
            raise ConversionError('; '.join(self.errors) or 'conversion failed', self.errors)
