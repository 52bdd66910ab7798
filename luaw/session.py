"""
Interpreter Session - one Lua runtime plus an explicit evaluation stack.

The session keeps its own stack of Lua values, addressed like Lua's: 1..top
from the bottom, -1..-top from the top; index 0 and anything beyond the top
is "none". Every operation has a fixed stack effect:

    dostring(code)      pushes all results, or exactly one error message
    loadstring(code)    pushes the compiled chunk, or the message
    eval_*(expr)        net zero
    get_*(name)         net zero
    set_*(name, value)  net zero
    to_*(idx)           no effect

Script failures never raise. Raw operations return a Status and leave the
message on the stack; typed helpers log it, fill an optional
ConversionReport and return the default.

    with Session() as s:
        s.eval_int('return 2^3 - 9')    # -1
        s.set('x', [1, 2, 3])
        s.eval_int('return #x')         # 3

Python exceptions raised by callbacks called from Lua are caught inside the
Lua call and reported as Lua errors.
"""

from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from lupa import LuaError, LuaRuntime, lua_type

from .coercion import Coercer
from .errors import SessionStateError, Status
from .extensions import compile_extensions, register_extensions
from .logging import get_logger
from .marshal import Marshaller
from .members import MemberRegistry
from .metatables import ObjectBinder
from .options import STANDARD_LIBS, LibInit, SessionOptions
from .provider import VariableProvider, as_provider
from .types import (
    BOOL,
    DOUBLE,
    INT,
    INT64,
    LLONG,
    LONG,
    STRING,
    UINT,
    ULLONG,
    ULONG,
    ConversionReport,
    ValueKind,
    default_for,
)

log = get_logger('session')

# Base functions the session's own helpers are built from
_REQUIRED_BASE = ('load', 'loadfile', 'pcall', 'select', 'type', 'error',
                  'getmetatable', 'setmetatable', 'tonumber', 'tostring', 'next', 'rawget',
                  'rawequal', 'collectgarbage')

# Called with the coercer's sanitizer; returns the helper table
_SESSION_LUA = """
local load, loadfile, pcall, select, type, error, getmetatable, setmetatable =
      load, loadfile, pcall, select, type, error, getmetatable, setmetatable
local collectgarbage = collectgarbage

return function(sanitize)

local function pack(...)
    return {n = select('#', ...), ...}
end

local function run(f, ...)
    local r = pack(pcall(f, ...))
    for i = 2, r.n do r[i] = sanitize(r[i]) end
    return r
end

local function compile(code)
    local f, message = load(code)
    if f == nil then return false, sanitize(message) end
    return true, f
end

local function compile_file(path)
    local f, message = loadfile(path)
    if f == nil then return false, sanitize(message) end
    return true, f
end

local function collect()
    collectgarbage()
    collectgarbage()
end

local function index(t, k) return t[k] end

local function newindex(t, k, v) t[k] = v end

local function preloader(value)
    return function() return value end
end

local function as_function(f)
    return function(...) return f(...) end
end

local function install_resolver(G, resolve)
    local mt = getmetatable(G)
    if mt == nil then
        if resolve == nil then return end
        mt = {}
        setmetatable(G, mt)
    end
    if resolve == nil then
        mt.__index = nil
        return
    end
    mt.__index = function(_, name)
        local r = resolve(name)
        if not r[1] then error(r[2], 2) end
        return r[2]
    end
end

return {
    run = run,
    compile = compile,
    compile_file = compile_file,
    index = index,
    newindex = newindex,
    getmetatable = getmetatable,
    setmetatable = setmetatable,
    preloader = preloader,
    as_function = as_function,
    collect = collect,
    install_resolver = install_resolver,
}

end
"""


def _lua_attribute_filter(obj, attr_name, is_setting):
    """Attribute filter for Python objects reached from Lua.

    Registered members are the object protocol for scripts; raw attribute
    access on other Python objects (callbacks) is limited to public names.
    """
    if attr_name.startswith('__'):
        raise AttributeError(f'Access to {attr_name} is blocked')
    if attr_name.startswith('_'):
        raise AttributeError(f'Access to private attribute {attr_name} is blocked')
    return attr_name


class SessionState(Enum):
    UNINITIALIZED = 'uninitialized'
    READY = 'ready'
    CLOSED = 'closed'


class Metatable:
    """Key addressing the metatable of a table in seek/touchtb/setfield.

    With a name, touchtb() installs the session's named metatable of that
    name (created on first use) when the table has none.
    """

    __slots__ = ('name',)

    def __init__(self, name: Optional[str] = None):
        self.name = name

    def __repr__(self) -> str:
        return f"Metatable({self.name!r})" if self.name else 'METATABLE'


METATABLE = Metatable()


def _is_object_target(target: Any) -> bool:
    return isinstance(target, type) and target not in (bool, int, float, str)


class Session:
    """A Lua interpreter session.

    Args:
        options: Library policy, extensions, adopted runtime
        registry: Member registry for exposed classes (may be shared)
        provider: Resolves undefined globals; a VariableProvider, a mapping
            or a name -> value callable
        init: Initialize immediately (otherwise call init())
    """

    def __init__(
        self,
        options: Optional[SessionOptions] = None,
        registry: Optional[MemberRegistry] = None,
        provider: Any = None,
        init: bool = True,
    ):
        self._options = options or SessionOptions()
        self._registry = registry if registry is not None else MemberRegistry()
        self._provider: Optional[VariableProvider] = (
            as_provider(provider) if provider is not None else None
        )
        self._state = SessionState.UNINITIALIZED
        self._stack: List[Any] = []
        self._lua: Optional[LuaRuntime] = None
        self._owns_runtime = False
        self._resolver_installed = False
        self._std_libs: Dict[str, Any] = {}
        self._named_metatables: Dict[str, Any] = {}
        if init:
            self.init()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def options(self) -> SessionOptions:
        return self._options

    @property
    def registry(self) -> MemberRegistry:
        return self._registry

    @property
    def runtime(self) -> LuaRuntime:
        self._require_ready()
        return self._lua

    def init(self) -> None:
        """Create (or adopt) the runtime and apply the options."""
        if self._state is SessionState.READY:
            raise SessionStateError("Session is already initialized")

        options = self._options
        if options.runtime is not None:
            lua = options.runtime
            self._owns_runtime = False
            self._check_base_functions(lua)
        else:
            # - register_eval=False: don't expose python.eval()
            # - register_builtins=False: don't expose python.builtins.*
            # - attribute_filter: blocks access to __dunder__ and _private attrs
            # - unpack_returned_tuples: Python callbacks may return several values
            lua = LuaRuntime(
                register_eval=False,
                register_builtins=False,
                unpack_returned_tuples=True,
                attribute_filter=_lua_attribute_filter,
            )
            self._owns_runtime = True

        self._lua = lua
        self._globals = lua.globals()
        self._binder = ObjectBinder(lua, self._registry)
        self._coercer = Coercer(lua, is_handle=self._binder.is_handle)
        self._marshaller = Marshaller(lua, self._coercer, wrap_object=self._binder.wrap)
        self._binder.bind(self._marshaller)

        helpers = lua.execute(_SESSION_LUA)(self._coercer.sanitizer)
        self._run = helpers['run']
        self._compile = helpers['compile']
        self._compile_file = helpers['compile_file']
        self._index = helpers['index']
        self._newindex = helpers['newindex']
        self._getmetatable = helpers['getmetatable']
        self._setmetatable = helpers['setmetatable']
        self._preloader = helpers['preloader']
        self._as_function = helpers['as_function']
        self._collect = helpers['collect']
        self._install_resolver = helpers['install_resolver']

        # Built before the library policy may remove the base functions
        extensions = compile_extensions(lua) if options.register_extensions else None
        self._std_libs = {name: self._globals[name] for name in STANDARD_LIBS}

        self._apply_lib_policy(options.libs)
        self._state = SessionState.READY
        self._stack.clear()
        self._named_metatables.clear()

        if extensions is not None:
            register_extensions(self, extensions)
        for entry in options.custom_load:
            self._custom_load(entry)
        for entry in options.custom_preload:
            self._custom_preload(entry)
        if self._provider is not None:
            self._set_resolver(True)

        log.debug(f"Session ready (libs={options.libs.value}, "
                  f"{'owned' if self._owns_runtime else 'adopted'} runtime)")

    def close(self) -> None:
        """Release the runtime. Adopted runtimes are left open."""
        if self._state is not SessionState.READY:
            self._state = SessionState.CLOSED
            return
        if not self._owns_runtime and self._resolver_installed:
            self._set_resolver(False)
        self._stack.clear()
        self._named_metatables.clear()
        self._std_libs = {}
        self._lua = None
        self._globals = None
        self._binder = None
        self._coercer = None
        self._marshaller = None
        self._state = SessionState.CLOSED
        log.debug("Session closed")

    def reset(self) -> None:
        """Close and re-initialize with the same options."""
        self.close()
        self._state = SessionState.UNINITIALIZED
        self.init()

    def __enter__(self) -> 'Session':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_ready(self) -> None:
        if self._state is not SessionState.READY:
            raise SessionStateError(f"Session is {self._state.value}")

    def _check_base_functions(self, lua) -> None:
        g = lua.globals()
        missing = [name for name in _REQUIRED_BASE if lua_type(g[name]) != 'function']
        if missing:
            raise SessionStateError(
                f"Adopted runtime lacks base functions: {', '.join(missing)}")

    def _apply_lib_policy(self, libs: LibInit) -> None:
        g = self._globals
        if libs is LibInit.LOAD:
            return

        if libs is LibInit.IGNORE:
            # No library at all: clear ALL globals
            for key in list(g.keys()):
                g[key] = None
            return

        package = g['package']
        if package is None:
            log.warning("Runtime has no package library; can't preload libraries")
            return
        for name in STANDARD_LIBS:
            lib = self._std_libs.get(name)
            if name == 'package' or lib is None:
                continue
            g[name] = None
            package.loaded[name] = None
            package.preload[name] = self._preloader(lib)

    def _library(self, entry: Any) -> Tuple[str, Any]:
        if isinstance(entry, str):
            lib = self._std_libs.get(entry)
            if lib is None:
                raise ValueError(f"Unknown standard library {entry!r}")
            return entry, lib
        name, loader = entry
        return name, loader

    def _custom_load(self, entry: Any) -> None:
        name, lib = self._library(entry)
        if not isinstance(entry, str):
            lib = self._marshaller.to_lua(lib(name))
            if lib is None:
                lib = True
        self._globals[name] = lib
        package = self._globals['package']
        if package is not None:
            package.loaded[name] = lib
        log.debug(f"Loaded library '{name}'")

    def _custom_preload(self, entry: Any) -> None:
        package = self._globals['package']
        if package is None:
            raise SessionStateError("Preloading libraries needs the package library")
        name, lib = self._library(entry)
        if isinstance(entry, str):
            loader = self._preloader(lib)
        elif lua_type(lib) == 'function':
            loader = lib
        else:
            def load(*_args, _load=lib, _name=name):
                return self._marshaller.to_lua(_load(_name))
            # package.searchers only accept Lua functions
            loader = self._as_function(load)
        package.preload[name] = loader
        log.debug(f"Preloaded library '{name}'")

    # =========================================================================
    # Variable provider
    # =========================================================================

    @property
    def provider(self) -> Optional[VariableProvider]:
        return self._provider

    @provider.setter
    def provider(self, provider: Any) -> None:
        self._provider = as_provider(provider) if provider is not None else None
        if self.is_ready:
            self._set_resolver(self._provider is not None)

    def _set_resolver(self, enabled: bool) -> None:
        self._install_resolver(self._globals, self._resolve if enabled else None)
        self._resolver_installed = enabled

    def _resolve(self, name: Any):
        """Resolve an undefined global through the provider (called from Lua)."""
        provider = self._provider
        top = self.gettop()
        try:
            if provider is not None and provider.provide(self, name) and self.gettop() > top:
                return self._lua.table(True, self._stack[-1])
            return self._lua.table(False, f"Not found: {name}")
        except Exception as e:
            log.error(f"Provider failed for '{name}': {type(e).__name__}: {e}")
            log.log_traceback(e)
            return self._lua.table(False, f"Not found: {name} ({type(e).__name__}: {e})")
        finally:
            self.settop(top)

    # =========================================================================
    # Stack
    # =========================================================================

    def gettop(self) -> int:
        return len(self._stack)

    def absindex(self, idx: int) -> int:
        """Convert a relative index to an absolute one (<= 0 means none)."""
        if idx < 0:
            return len(self._stack) + idx + 1
        return idx

    def _slot(self, idx: int) -> Tuple[bool, Any]:
        i = self.absindex(idx)
        if 1 <= i <= len(self._stack):
            return True, self._stack[i - 1]
        return False, None

    def settop(self, idx: int) -> None:
        """Set the stack height, filling with nil or dropping values."""
        top = self.absindex(idx)
        if top < 0:
            raise IndexError(f"Invalid stack top {idx} (height {self.gettop()})")
        del self._stack[top:]
        self._stack.extend([None] * (top - len(self._stack)))

    def pop(self, n: int = 1) -> None:
        self.settop(-n - 1)

    def cleartop(self) -> None:
        self.settop(0)

    def push(self, value: Any) -> None:
        """Push a Python value (converted) or a Lua value."""
        self._require_ready()
        self._stack.append(self._marshaller.to_lua(value))

    def pushvalue(self, idx: int) -> None:
        """Push a copy of the value at idx (nil for none)."""
        self._stack.append(self._slot(idx)[1])

    def value(self, idx: int = -1) -> Any:
        """The raw Lua value at idx (None for nil or none)."""
        return self._slot(idx)[1]

    def type(self, idx: int = -1) -> ValueKind:
        present, value = self._slot(idx)
        if not present:
            return ValueKind.NONE
        return self._coercer.kind(value)

    def type_name(self, idx: int = -1) -> str:
        return self.type(idx).lua_name

    def isnoneornil(self, idx: int = -1) -> bool:
        return self.type(idx) in (ValueKind.NONE, ValueKind.NIL)

    @contextmanager
    def guard(self) -> Iterator['Session']:
        """Restore the stack height on exit."""
        top = self.gettop()
        try:
            yield self
        finally:
            if self._state is SessionState.READY:
                self.settop(top)

    # =========================================================================
    # Globals and tables
    # =========================================================================

    def _protected_index(self, table: Any, key: Any) -> Any:
        r = self._run(self._index, table, key)
        if not r[1]:
            self.log_error(self._message(r[2]))
            return None
        return self._coercer.from_lua(r[2])

    def _protected_newindex(self, table: Any, key: Any, value: Any) -> bool:
        r = self._run(self._newindex, table, key, value)
        if not r[1]:
            self.log_error(self._message(r[2]))
            return False
        return True

    def _protected_setmetatable(self, table: Any, mt: Any) -> bool:
        r = self._run(self._setmetatable, table, mt)
        if not r[1]:
            self.log_error(self._message(r[2]))
            return False
        return True

    def getglobal(self, name: str) -> ValueKind:
        """Push the value of a global; returns its kind."""
        self._require_ready()
        self._stack.append(self._protected_index(self._globals, name))
        return self.type(-1)

    def gseek(self, name: str) -> 'Session':
        """Push the value of a global (chainable)."""
        self.getglobal(name)
        return self

    def seek(self, key: Any) -> 'Session':
        """Push top[key] (nil if top isn't indexable). Chainable."""
        self._require_ready()
        present, table = self._slot(-1)
        if isinstance(key, Metatable):
            value = self._getmetatable(table) if present and table is not None else None
        elif lua_type(table) in ('table', 'userdata'):
            value = self._protected_index(table, key)
        else:
            value = None
        self._stack.append(value)
        return self

    def touchtb(self, key: Any) -> 'Session':
        """Push top[key], creating it as a new table if it isn't one. Chainable.

        Pushes nil when the top isn't a table.
        """
        self._require_ready()
        table = self.value(-1)
        if lua_type(table) != 'table':
            self._stack.append(None)
            return self

        if isinstance(key, Metatable):
            mt = self._getmetatable(table)
            if lua_type(mt) != 'table':
                mt = self.named_metatable(key.name) if key.name else self._lua.table()
                if not self._protected_setmetatable(table, mt):
                    mt = None
            self._stack.append(mt)
            return self

        value = self._protected_index(table, key)
        if lua_type(value) != 'table':
            value = self._lua.table()
            self._protected_newindex(table, key, value)
        self._stack.append(value)
        return self

    def setfield(self, key: Any, value: Any) -> None:
        """Set top[key] = value; METATABLE sets the metatable. Net zero."""
        self._require_ready()
        table = self.value(-1)
        if lua_type(table) != 'table':
            self.log_error(f"Can't set field {key!r} of {self._coercer.describe(table)}")
            return
        value = self._marshaller.to_lua(value)
        if isinstance(key, Metatable):
            self._protected_setmetatable(table, value)
        else:
            self._protected_newindex(table, key, value)

    def setglobal(self, name: str) -> None:
        """Pop the top value into a global."""
        self._require_ready()
        value = self._stack.pop() if self._stack else None
        self._globals[name] = value

    def named_metatable(self, name: str) -> Any:
        """The session's metatable registered under name (created with __name)."""
        self._require_ready()
        mt = self._named_metatables.get(name)
        if mt is None:
            mt = self._lua.table(__name=name)
            self._named_metatables[name] = mt
        return mt

    def get_metatable_name(self, idx: int = -1) -> str:
        """__name of the metatable of the value at idx, or ''."""
        present, value = self._slot(idx)
        if not present or value is None:
            return ''
        return self._binder.metatable_name(value)

    # =========================================================================
    # Running code
    # =========================================================================

    def loadstring(self, code: str) -> Status:
        """Compile code; push the chunk, or the error message."""
        self._require_ready()
        log.lua_script(code, 'load')
        ok, chunk = self._compile(code)
        self._stack.append(self._coercer.from_lua(chunk))
        return Status.OK if ok else Status.ERRSYNTAX

    def dostring(self, code: str) -> Status:
        """Run code; push all its results, or the error message."""
        status = self.loadstring(code)
        if status is not Status.OK:
            return status
        return self._call_top()

    run = dostring

    def loadfile(self, path: Union[str, Path]) -> Status:
        """Compile a file; push the chunk, or the error message."""
        self._require_ready()
        log.lua_script(str(path), 'loadfile')
        ok, chunk = self._compile_file(str(path))
        self._stack.append(self._coercer.from_lua(chunk))
        if ok:
            return Status.OK
        if self.error_message(-1).startswith(('cannot open', 'cannot read')):
            return Status.ERRFILE
        return Status.ERRSYNTAX

    def dofile(self, path: Union[str, Path]) -> Status:
        """Run a file; push all its results, or the error message."""
        status = self.loadfile(path)
        if status is not Status.OK:
            return status
        return self._call_top()

    def _call_top(self) -> Status:
        chunk = self._stack.pop()
        try:
            r = self._run(chunk)
        except LuaError as e:
            self._stack.append(str(e))
            return Status.ERRRUN
        if r[1]:
            self._stack.extend(self._coercer.from_lua(r[i]) for i in range(2, r['n'] + 1))
            return Status.OK
        self._stack.append(self._error_value(self._coercer.from_lua(r[2])))
        return Status.ERRRUN

    def _error_value(self, error: Any) -> Any:
        if isinstance(error, BaseException):
            return f"{type(error).__name__}: {error}"
        return error

    def _message(self, value: Any) -> str:
        value = self._error_value(value)
        if value is None:
            return 'nil'
        return self._coercer.tostring(value)

    # =========================================================================
    # Conversions
    # =========================================================================

    def to(
        self,
        idx: int,
        target: Any,
        default: Any = None,
        enable_log: bool = True,
        report: Optional[ConversionReport] = None,
    ) -> Any:
        """Convert the value at idx. No stack effect.

        target is a scalar (NativeType or bool/int/float/str), a container
        (ListOf/MapOf), or a class to unwrap an exposed object of.
        """
        self._require_ready()
        value = self._slot(idx)[1]
        if _is_object_target(target):
            obj = self._binder.unwrap(value, target)
            if obj is None:
                if value is not None:
                    self._fail(f"Can't convert to {target.__qualname__} by "
                               f"{self._coercer.describe(value)}", enable_log, report)
                return default
            return obj
        return self._marshaller.convert(value, target, default, enable_log, report)

    def _fail(self, message: str, enable_log: bool, report: Optional[ConversionReport]) -> None:
        if report is not None:
            report.fail(message)
        if enable_log:
            self.log_error(message)

    def _default(self, target: Any, default: Any) -> Any:
        if default is not None or _is_object_target(target):
            return default
        return default_for(target)

    def eval(
        self,
        expr: str,
        target: Any,
        default: Any = None,
        enable_log: bool = True,
        report: Optional[ConversionReport] = None,
    ) -> Any:
        """Run expr and convert its last result. Net zero.

        expr must return something: 'return a + b', not 'a + b'.
        """
        self._require_ready()
        with self.guard():
            top = self.gettop()
            if self.dostring(expr) is not Status.OK:
                self._fail(self.error_message(-1), enable_log, report)
                return self._default(target, default)
            if self.gettop() <= top:
                self._fail(f"No return: {expr}", enable_log, report)
                return self._default(target, default)
            return self.to(-1, target, default, enable_log, report)

    def get(
        self,
        name: str,
        target: Any,
        default: Any = None,
        enable_log: bool = True,
        report: Optional[ConversionReport] = None,
    ) -> Any:
        """Convert the value of a global. Net zero."""
        with self.guard():
            self.getglobal(name)
            return self.to(-1, target, default, enable_log, report)

    def to_pointer(self, idx: int = -1, cls: Any = None) -> Any:
        """The object behind an exposed handle at idx (None if not one)."""
        self._require_ready()
        return self._binder.unwrap(self._slot(idx)[1], cls)

    def eval_pointer(self, expr: str, cls: Any = None, enable_log: bool = True) -> Any:
        """Run expr and unwrap its result to the exposed object. Net zero."""
        self._require_ready()
        with self.guard():
            top = self.gettop()
            if self.dostring(expr) is not Status.OK:
                if enable_log:
                    self.log_error_in_stack(-1)
                return None
            if self.gettop() <= top:
                return None
            return self.to_pointer(-1, cls)

    # =========================================================================
    # Typed shortcuts
    # =========================================================================

    def to_bool(self, idx=-1, default=None, enable_log=True, report=None) -> bool:
        return self.to(idx, BOOL, default, enable_log, report)

    def get_bool(self, name: str, default=None, enable_log=True, report=None) -> bool:
        return self.get(name, BOOL, default, enable_log, report)

    def eval_bool(self, expr: str, default=None, enable_log=True, report=None) -> bool:
        return self.eval(expr, BOOL, default, enable_log, report)

    def to_int(self, idx=-1, default=None, enable_log=True, report=None) -> int:
        return self.to(idx, INT, default, enable_log, report)

    def get_int(self, name: str, default=None, enable_log=True, report=None) -> int:
        return self.get(name, INT, default, enable_log, report)

    def eval_int(self, expr: str, default=None, enable_log=True, report=None) -> int:
        return self.eval(expr, INT, default, enable_log, report)

    def to_uint(self, idx=-1, default=None, enable_log=True, report=None) -> int:
        return self.to(idx, UINT, default, enable_log, report)

    def get_uint(self, name: str, default=None, enable_log=True, report=None) -> int:
        return self.get(name, UINT, default, enable_log, report)

    def eval_uint(self, expr: str, default=None, enable_log=True, report=None) -> int:
        return self.eval(expr, UINT, default, enable_log, report)

    def to_long(self, idx=-1, default=None, enable_log=True, report=None) -> int:
        return self.to(idx, LONG, default, enable_log, report)

    def get_long(self, name: str, default=None, enable_log=True, report=None) -> int:
        return self.get(name, LONG, default, enable_log, report)

    def eval_long(self, expr: str, default=None, enable_log=True, report=None) -> int:
        return self.eval(expr, LONG, default, enable_log, report)

    def to_ulong(self, idx=-1, default=None, enable_log=True, report=None) -> int:
        return self.to(idx, ULONG, default, enable_log, report)

    def get_ulong(self, name: str, default=None, enable_log=True, report=None) -> int:
        return self.get(name, ULONG, default, enable_log, report)

    def eval_ulong(self, expr: str, default=None, enable_log=True, report=None) -> int:
        return self.eval(expr, ULONG, default, enable_log, report)

    def to_llong(self, idx=-1, default=None, enable_log=True, report=None) -> int:
        return self.to(idx, LLONG, default, enable_log, report)

    def get_llong(self, name: str, default=None, enable_log=True, report=None) -> int:
        return self.get(name, LLONG, default, enable_log, report)

    def eval_llong(self, expr: str, default=None, enable_log=True, report=None) -> int:
        return self.eval(expr, LLONG, default, enable_log, report)

    def to_ullong(self, idx=-1, default=None, enable_log=True, report=None) -> int:
        return self.to(idx, ULLONG, default, enable_log, report)

    def get_ullong(self, name: str, default=None, enable_log=True, report=None) -> int:
        return self.get(name, ULLONG, default, enable_log, report)

    def eval_ullong(self, expr: str, default=None, enable_log=True, report=None) -> int:
        return self.eval(expr, ULLONG, default, enable_log, report)

    def to_double(self, idx=-1, default=None, enable_log=True, report=None) -> float:
        return self.to(idx, DOUBLE, default, enable_log, report)

    def get_double(self, name: str, default=None, enable_log=True, report=None) -> float:
        return self.get(name, DOUBLE, default, enable_log, report)

    def eval_double(self, expr: str, default=None, enable_log=True, report=None) -> float:
        return self.eval(expr, DOUBLE, default, enable_log, report)

    def to_string(self, idx=-1, default=None, enable_log=True, report=None) -> str:
        return self.to(idx, STRING, default, enable_log, report)

    def get_string(self, name: str, default=None, enable_log=True, report=None) -> str:
        return self.get(name, STRING, default, enable_log, report)

    def eval_string(self, expr: str, default=None, enable_log=True, report=None) -> str:
        return self.eval(expr, STRING, default, enable_log, report)

    # =========================================================================
    # Setting globals
    # =========================================================================

    def set(self, name: str, value: Any) -> None:
        """Set a global to a Python value (converted). Net zero."""
        self.push(value)
        self.setglobal(name)

    def set_integer(self, name: str, value: int) -> None:
        self.set(name, INT64.wrap(int(value)))

    def set_number(self, name: str, value: float) -> None:
        self.set(name, float(value))

    def set_boolean(self, name: str, value: bool) -> None:
        self.set(name, bool(value))

    def set_string(self, name: str, value: str) -> None:
        self.set(name, str(value))

    def set_nil(self, name: str) -> None:
        self.set(name, None)

    def register(self, name: str, fn: Callable[..., Any]) -> None:
        """Install a callable (Python or Lua) as a global function."""
        self._require_ready()
        if not callable(fn) and lua_type(fn) != 'function':
            raise TypeError(f"Can't register {type(fn).__name__} as a function")
        self._globals[name] = fn

    # =========================================================================
    # Objects
    # =========================================================================

    def live_handles(self) -> int:
        """Exposed object proxies still alive in Lua."""
        self._require_ready()
        return self._binder.live_handles()

    def collect_garbage(self) -> None:
        """Run a full Lua garbage collection cycle."""
        self._require_ready()
        self._collect()

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def error_message(self, idx: int = -1) -> str:
        """The value at idx as an error message ('' for none)."""
        present, value = self._slot(idx)
        if not present:
            return ''
        return self._message(value)

    def log_error(self, message: str) -> None:
        log.error("Lua: %s", message)

    def log_error_in_stack(self, idx: int = -1) -> None:
        self.log_error(self.error_message(idx))

    def log_error_out(self) -> None:
        """Log the message on top of the stack and pop it."""
        if self.gettop() > 0:
            self.log_error_in_stack(-1)
            self.pop()
