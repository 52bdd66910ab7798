"""
Extension functions registered into new sessions.

    IF(cond1, v1, cond2, v2, ..., else_value)
        First value whose condition is truthy, else the last argument.
        Needs an odd number (at least 3) of arguments.

    SET(...) / SET(list)
        Table with every non-nil argument (or list item) as a key mapped
        to true.

    COUNTER(...) / COUNTER(list)
        Table mapping each non-nil argument to its number of occurrences.

    COUNTER0(...)
        Like COUNTER, but reading an absent key gives 0 instead of nil.

The functions are plain Lua closures over the base library, so they keep
working in sessions whose standard libraries are ignored.
"""

from typing import TYPE_CHECKING, Dict

from .logging import get_logger

if TYPE_CHECKING:
    from .session import Session

log = get_logger('extensions')

EXTENSION_NAMES = ('IF', 'SET', 'COUNTER', 'COUNTER0')

EXTENSIONS_LUA = """
local select, type, error, setmetatable = select, type, error, setmetatable

local function IF(...)
    local n = select('#', ...)
    if n < 3 then error("IF: At least 3 arguments", 2) end
    if n % 2 == 0 then error("IF: The number of arguments should be odd", 2) end
    local args = {...}
    for i = 1, n - 1, 2 do
        if args[i] then return args[i + 1] end
    end
    return args[n]
end

-- Calls fn(value) for each non-nil argument, or each item of a single list
local function each(fn, ...)
    local n = select('#', ...)
    local first = ...
    if n == 1 and type(first) == 'table' then
        for i = 1, #first do
            local v = first[i]
            if v ~= nil then fn(v) end
        end
        return
    end
    for i = 1, n do
        local v = select(i, ...)
        if v ~= nil then fn(v) end
    end
end

local function SET(...)
    local s = {}
    each(function(v) s[v] = true end, ...)
    return s
end

local function COUNTER(...)
    local c = {}
    each(function(v) c[v] = (c[v] or 0) + 1 end, ...)
    return c
end

local zero_mt = {__index = function() return 0 end}

local function COUNTER0(...)
    return setmetatable(COUNTER(...), zero_mt)
end

return {IF = IF, SET = SET, COUNTER = COUNTER, COUNTER0 = COUNTER0}
"""


def compile_extensions(lua_runtime) -> Dict[str, object]:
    """Build the extension closures in a runtime (needs the base library)."""
    functions = lua_runtime.execute(EXTENSIONS_LUA)
    return {name: functions[name] for name in EXTENSION_NAMES}


def register_extensions(session: 'Session', functions: Dict[str, object] = None) -> None:
    """Install the extension functions as globals of a session."""
    if functions is None:
        functions = compile_extensions(session.runtime)
    for name in EXTENSION_NAMES:
        session.register(name, functions[name])
    log.debug(f"Registered extensions: {', '.join(EXTENSION_NAMES)}")
