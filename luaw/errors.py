"""Exception types and Lua status codes used by luaw.

Script-level failures (syntax errors, runtime errors, assignments rejected by
an object's metatable) never surface as Python exceptions: they are reported
as a Status plus a message. The exceptions below are for programmer misuse
on the Python side.
"""

from enum import IntEnum
from typing import List, Optional


class Status(IntEnum):
    """Lua thread status codes (lua.h)."""
    OK = 0
    YIELD = 1
    ERRRUN = 2
    ERRSYNTAX = 3
    ERRMEM = 4
    ERRERR = 5
    ERRFILE = 6


class LuawError(Exception):
    """Base class for luaw errors."""


class SessionStateError(LuawError):
    """Raised when an operation needs a session in a different state."""


class RegistrationError(LuawError, TypeError):
    """Raised when a member registration can never work at access time."""

    def __init__(self, message: str, owner: Optional[type] = None, member: Optional[str] = None):
        self.owner = owner
        self.member = member
        super().__init__(message)


class MemberAccessError(LuawError):
    """A script touched a member it can't read or write.

    Only raised inside the object binder; it is turned into a Lua error at
    the metamethod boundary and never reaches the caller.
    """


class ConversionError(LuawError, ValueError):
    """Raised by strict conversion helpers when a value can't be converted."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message)
