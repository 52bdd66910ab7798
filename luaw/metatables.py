"""
Object Binder - exposes Python objects to Lua through generated metatables.

Each exposed object is a Lua proxy table whose metatable is generated on
first use for the (class, ownership kind, constness) combination and cached
for the life of the session. Metatables are named after the combination:

    B            owned copy           const B            read-only copy
    B*           reference            const B*           read-only reference
    shared B     shared reference     const shared B     read-only shared

The metamethods are thin Lua closures. They look the proxy's handle up in a
weak-keyed table and call back into Python, which answers with a
{ok, value_or_message} pair; failures are raised as Lua errors on the Lua
side, so Python exceptions never unwind through Lua frames.

Reading a member:
- value members give scalars as Lua values, containers as new tables and
  aggregates as copies that inherit the constness of the owner (or of the
  member, when it is const)
- ptr members give a reference with the owner's constness
- cptr members always give a read-only reference

Writing a member converts the value to the member's declared type first.
Const handles, reference members and read-only members refuse writes.

Equality compares the referenced objects: two references to the same object
are equal whatever their constness.

Proxies are tables, so type() reports 'table' in scripts. Their metatables
are protected: getmetatable() gives the metatable name and setmetatable()
fails. rawget() and rawset() bypass the metamethods: a value rawset on a
proxy shadows the member in Lua only and never reaches the Python object.
"""

import copy
from typing import Any, Dict, Optional, Tuple

from lupa import lua_type

from .errors import MemberAccessError
from .logging import get_logger
from .members import (
    FieldRef,
    Handle,
    HandleKind,
    MemberDescriptor,
    MemberMode,
    MemberRegistry,
    Ref,
    _OwnedCopy,
)
from .types import ConversionReport, ListOf, MapOf, NativeType, resolve_target

log = get_logger('metatables')

_SCALARS = (bool, int, float, str)

_BINDER_LUA = """
local setmetatable, getmetatable, error, type, next, rawget =
      setmetatable, getmetatable, error, type, next, rawget

local handles = setmetatable({}, {__mode = 'k'})

local function new_proxy(handle, mt)
    local proxy = setmetatable({}, mt)
    handles[proxy] = handle
    return proxy
end

local function handle_of(value)
    if type(value) ~= 'table' then return nil end
    return handles[value]
end

local function make_metatable(name, index, newindex, eq, tostr)
    local mt = {__name = name, __metatable = name}
    mt.__index = function(self, key)
        local r = index(handles[self], key)
        if not r[1] then error(r[2], 2) end
        return r[2]
    end
    mt.__newindex = function(self, key, value)
        local r = newindex(handles[self], key, value)
        if not r[1] then error(r[2], 2) end
    end
    mt.__eq = function(a, b)
        local ha, hb = handles[a], handles[b]
        if ha == nil or hb == nil then return false end
        return eq(ha, hb)
    end
    mt.__tostring = function(self)
        return tostr(handles[self])
    end
    return mt
end

local function metatable_name(value)
    local mt = getmetatable(value)
    if type(mt) ~= 'table' then return nil end
    local name = rawget(mt, '__name')
    if type(name) ~= 'string' then return nil end
    return name
end

local function count_handles()
    local n = 0
    for _ in next, handles do n = n + 1 end
    return n
end

return new_proxy, handle_of, make_metatable, metatable_name, count_handles
"""


class ObjectBinder:
    """Generates metatables and proxies for one session."""

    def __init__(self, lua_runtime, registry: MemberRegistry):
        self._lua = lua_runtime
        self._registry = registry
        self._marshaller = None
        self._metatables: Dict[Tuple[type, HandleKind, bool], Any] = {}
        (self._new_proxy,
         self._handle_of,
         self._make_metatable,
         self._metatable_name,
         self._count_handles) = lua_runtime.execute(_BINDER_LUA)

    def bind(self, marshaller) -> None:
        """Attach the marshaller used for member values (set once by the session)."""
        self._marshaller = marshaller

    @property
    def registry(self) -> MemberRegistry:
        return self._registry

    # =========================================================================
    # Python -> Lua
    # =========================================================================

    def wrap(self, value: Any) -> Any:
        """Proxy for a handle or a registered object; NotImplemented otherwise.

        Plain registered objects are pushed as private copies.
        """
        if isinstance(value, Handle):
            return self.proxy(value)
        if self._registry.is_registered(type(value)):
            return self.proxy(_OwnedCopy(copy.deepcopy(value)))
        return NotImplemented

    def proxy(self, handle: Handle) -> Any:
        return self._new_proxy(handle, self._metatable(handle))

    def _metatable(self, handle: Handle) -> Any:
        key = (handle.pointee_type, handle.kind, handle.const)
        mt = self._metatables.get(key)
        if mt is None:
            mt = self._make_metatable(
                handle.type_name, self._index, self._newindex, self._eq, self._tostring)
            self._metatables[key] = mt
            log.debug(f"Generated metatable '{handle.type_name}'")
        return mt

    # =========================================================================
    # Lua -> Python
    # =========================================================================

    def handle_of(self, value: Any) -> Optional[Handle]:
        if lua_type(value) != 'table':
            return None
        return self._handle_of(value)

    def is_handle(self, value: Any) -> bool:
        return self.handle_of(value) is not None

    def unwrap(self, value: Any, cls: Optional[type] = None) -> Any:
        """The object behind a proxy, or None if value is not one (of cls)."""
        handle = self.handle_of(value)
        if handle is None:
            return None
        target = handle.target
        if cls is not None and not isinstance(target, cls):
            return None
        return target

    def metatable_name(self, value: Any) -> str:
        handle = self.handle_of(value)
        if handle is not None:
            return handle.type_name
        if lua_type(value) is None and not isinstance(value, str):
            return ''
        return self._metatable_name(value) or ''

    def live_handles(self) -> int:
        """Number of proxies not yet collected by Lua."""
        return self._count_handles()

    @property
    def generated_metatables(self) -> int:
        return len(self._metatables)

    # =========================================================================
    # Metamethods
    # =========================================================================

    def _index(self, handle: Handle, key: Any):
        return self._dispatch(self._get_member, handle, key)

    def _newindex(self, handle: Handle, key: Any, value: Any):
        return self._dispatch(self._set_member, handle, key, value)

    def _eq(self, a: Handle, b: Handle) -> bool:
        if a is b:
            return True
        if a.kind is HandleKind.COPY or b.kind is HandleKind.COPY:
            return False
        return a.address == b.address

    def _tostring(self, handle: Handle) -> str:
        address = handle.address
        if isinstance(address, tuple):
            return f"{handle.type_name}: 0x{address[0]:x}.{address[1]}"
        return f"{handle.type_name}: 0x{address:x}"

    def _dispatch(self, method, handle: Handle, *args):
        try:
            result = method(handle, *args)
        except MemberAccessError as e:
            return self._lua.table(False, str(e))
        except Exception as e:
            # Any failure of native code is reported as a Lua error
            log.log_traceback(e)
            return self._lua.table(False, f"{type(e).__name__}: {e}")
        return self._lua.table(True, result)

    def _lookup(self, handle: Handle, key: Any) -> MemberDescriptor:
        if not isinstance(key, str):
            raise MemberAccessError(
                f"Member name of {handle.type_name} must be a string, got {key!r}")
        desc = self._registry.lookup(handle.pointee_type, key)
        if desc is None:
            raise MemberAccessError(f"Not found member '{key}' in {handle.type_name}")
        return desc

    def _target(self, handle: Handle) -> Any:
        target = handle.target
        if isinstance(target, FieldRef):
            return target.get()
        return target

    def _get_member(self, handle: Handle, key: Any) -> Any:
        desc = self._lookup(handle, key)
        target = self._target(handle)
        log.lua_call(f"{handle.type_name}.__index", key)

        raw = desc.read(target)
        if isinstance(raw, Handle):
            # Getters may choose the ownership and constness themselves
            return self.proxy(raw)

        if desc.mode is MemberMode.VALUE:
            return self._value_to_lua(raw, handle.const or desc.const, desc)

        const = True if desc.mode is MemberMode.CONST_POINTER else handle.const
        if raw is None or isinstance(raw, _SCALARS):
            if desc.attr is None:
                raise MemberAccessError(
                    f"Can't reference member '{key}' of {handle.type_name}: "
                    f"it is computed and not an object")
            return self.proxy(Ref(FieldRef(target, desc.attr), const))
        return self.proxy(Ref(raw, const))

    def _value_to_lua(self, raw: Any, const: bool, desc: MemberDescriptor) -> Any:
        if raw is None or isinstance(raw, _SCALARS) or lua_type(raw) is not None:
            return raw
        if self._registry.is_registered(type(raw)):
            return self.proxy(_OwnedCopy(desc.copier(raw), const))
        return self._marshaller.to_lua(raw)

    def _set_member(self, handle: Handle, key: Any, value: Any) -> None:
        desc = self._lookup(handle, key)
        if handle.const:
            raise MemberAccessError(
                f"Can't assign member '{key}' of {handle.type_name}: the object is const")
        if desc.is_pointer:
            raise MemberAccessError(
                f"Can't assign member '{key}' of {handle.type_name}: it is a reference")
        if not desc.writable:
            raise MemberAccessError(
                f"Can't assign member '{key}' of {handle.type_name}: it is read-only")

        target = self._target(handle)
        new_value = self._coerce_member(desc, target, value, handle.type_name)
        log.lua_call(f"{handle.type_name}.__newindex", key, new_value)
        desc.write(target, new_value)

    def _coerce_member(self, desc: MemberDescriptor, target: Any, value: Any, owner_name: str) -> Any:
        declared = desc.type
        if declared is None:
            declared = self._infer_type(desc.read(target))

        if isinstance(declared, (NativeType, ListOf, MapOf)):
            report = ConversionReport()
            result = self._marshaller.convert(value, declared, None, False, report)
            if report.failed:
                raise MemberAccessError(
                    f"Can't assign member '{desc.name}' of {owner_name}: "
                    + '; '.join(report.errors))
            return result

        source = self.handle_of(value)
        if isinstance(declared, type):
            if source is None or not isinstance(self._target(source), declared):
                raise MemberAccessError(
                    f"Can't assign {self._describe(value)} to member '{desc.name}' "
                    f"of {owner_name}: expected {declared.__qualname__}")
            return desc.copier(self._target(source))

        # Untyped member holding nothing convertible: accept objects and scalars
        if source is not None:
            return desc.copier(self._target(source))
        if value is None or isinstance(value, _SCALARS):
            return value
        raise MemberAccessError(
            f"Can't assign {self._describe(value)} to member '{desc.name}' of {owner_name}: "
            f"declare the member's type")

    def _infer_type(self, current: Any) -> Any:
        if current is None:
            return None
        if isinstance(current, _SCALARS):
            return resolve_target(type(current))
        if isinstance(current, (list, tuple, dict)):
            return None
        return type(current)

    def _describe(self, value: Any) -> str:
        return self._marshaller.coercer.describe(value)
