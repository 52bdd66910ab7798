"""
luaw - Lua sessions for Python, with typed conversions and object binding.

Provides:
- Session: a Lua runtime with an explicit stack and typed eval/get/set helpers
- Coercion of Lua values to native scalars and containers (ListOf, MapOf)
- MemberRegistry: expose Python classes to scripts through generated metatables
- Variable providers resolving undefined globals on demand
"""

from luaw.errors import (
    ConversionError,
    LuawError,
    RegistrationError,
    SessionStateError,
    Status,
)
from luaw.members import Copy, Handle, HandleKind, MemberMode, MemberRegistry, Ref, Shared
from luaw.options import LibInit, SessionOptions, load_options
from luaw.provider import MappingProvider, VariableProvider
from luaw.scanner import Preparer, detect_variable_names
from luaw.session import METATABLE, Metatable, Session, SessionState
from luaw.types import (
    BOOL,
    DOUBLE,
    INT,
    INT8,
    INT16,
    INT32,
    INT64,
    LLONG,
    LONG,
    STRING,
    UINT,
    UINT8,
    UINT16,
    UINT32,
    UINT64,
    ULLONG,
    ULONG,
    ConversionReport,
    ListOf,
    MapOf,
    NativeType,
    ValueKind,
)

__all__ = [
    'Session', 'SessionState', 'SessionOptions', 'LibInit', 'load_options',
    'METATABLE', 'Metatable', 'Status',
    'MemberRegistry', 'MemberMode', 'Handle', 'HandleKind', 'Ref', 'Shared', 'Copy',
    'VariableProvider', 'MappingProvider', 'Preparer', 'detect_variable_names',
    'ConversionReport', 'ListOf', 'MapOf', 'NativeType', 'ValueKind',
    'BOOL', 'INT', 'UINT', 'LONG', 'ULONG', 'LLONG', 'ULLONG', 'DOUBLE', 'STRING',
    'INT8', 'INT16', 'INT32', 'INT64', 'UINT8', 'UINT16', 'UINT32', 'UINT64',
    'LuawError', 'SessionStateError', 'RegistrationError', 'ConversionError',
]
