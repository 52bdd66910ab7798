"""
Member Registry - describes which attributes of a Python class are visible
to Lua, and how.

Three registration modes, mirroring how a script may see a field:

    registry.register_member(B, 'i')            # value: read, and write if allowed
    registry.register_member(B, 'a')            # value of an aggregate: a copy
    registry.register_member_ptr(B, 'aptr', 'a')   # reference, inherits owner constness
    registry.register_member_cptr(B, 'acptr', 'a') # reference, always read-only

Members can also be backed by a getter (and, for value members, a setter):

    registry.register_member(B, 'total', getter=lambda b: b.x + b.y)

Lookups walk the MRO, so members registered on a base class are visible on
every subclass. A registry is filled once at startup and can be shared by
any number of sessions.

Registration fails with RegistrationError when a member could never work:
duplicates, writable members on frozen dataclasses, setters on reference
members, and so on.
"""

import copy
import dataclasses
import typing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .errors import RegistrationError
from .logging import get_logger
from .scanner import LUA_KEYWORDS
from .types import ListOf, MapOf, NativeType, resolve_target

log = get_logger('members')

_SCALAR_TYPES = (bool, int, float, str)


class MemberMode(Enum):
    VALUE = 'value'
    POINTER = 'ptr'
    CONST_POINTER = 'cptr'


class HandleKind(Enum):
    """How an exposed object is owned by Lua."""
    COPY = 'copy'        # Lua owns a private deep copy
    POINTER = 'pointer'  # Lua refers to an object owned by Python
    SHARED = 'shared'    # Lua shares ownership of the object


def declared_target(hint: Any) -> Any:
    """Map a type annotation to a member's declared type, or None if unknown."""
    if hint in _SCALAR_TYPES:
        return resolve_target(hint)
    origin = typing.get_origin(hint)
    args = typing.get_args(hint)
    if origin is list and len(args) == 1:
        item = declared_target(args[0])
        return ListOf(item) if item is not None else None
    if origin is dict and len(args) == 2:
        key, value = declared_target(args[0]), declared_target(args[1])
        if key is None or value is None:
            return None
        return MapOf(key, value)
    if isinstance(hint, type) and hint not in (list, dict, tuple, set):
        return hint
    return None


def _normalize_type(value: Any) -> Any:
    if value is None or isinstance(value, (NativeType, ListOf, MapOf)):
        return value
    if value in _SCALAR_TYPES or isinstance(value, str):
        return resolve_target(value)
    if isinstance(value, type):
        return value
    raise TypeError(f"Unsupported member type: {value!r}")


def _is_frozen_dataclass(cls: type) -> bool:
    return dataclasses.is_dataclass(cls) and cls.__dataclass_params__.frozen


def _type_hints(cls: type) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(cls)
    except Exception:
        # Unresolvable forward references; fall back to inferring from values
        return {}


@dataclass(frozen=True)
class MemberDescriptor:
    """How one named member of a class is read and written."""
    owner: type
    name: str
    mode: MemberMode
    attr: Optional[str] = None
    getter: Optional[Callable[[Any], Any]] = None
    setter: Optional[Callable[[Any, Any], None]] = None
    const: bool = False
    type: Any = None
    copier: Callable[[Any], Any] = copy.deepcopy

    @property
    def is_pointer(self) -> bool:
        return self.mode is not MemberMode.VALUE

    @property
    def writable(self) -> bool:
        if self.mode is not MemberMode.VALUE or self.const:
            return False
        return self.setter is not None or (self.attr is not None and self.getter is None)

    def read(self, target: Any) -> Any:
        if self.getter is not None:
            return self.getter(target)
        return getattr(target, self.attr)

    def write(self, target: Any, value: Any) -> None:
        if self.setter is not None:
            self.setter(target, value)
        else:
            setattr(target, self.attr, value)


class MemberRegistry:
    """Per-class tables of members exposed to Lua."""

    def __init__(self):
        self._members: Dict[type, Dict[str, MemberDescriptor]] = {}

    def register_member(
        self,
        cls: type,
        name: str,
        attr: Optional[str] = None,
        *,
        getter: Optional[Callable[[Any], Any]] = None,
        setter: Optional[Callable[[Any, Any], None]] = None,
        const: bool = False,
        type: Any = None,
        copier: Callable[[Any], Any] = copy.deepcopy,
    ) -> MemberDescriptor:
        """Expose a member by value.

        Scalars are read as Lua values, containers as fresh tables and
        aggregates as private copies. The member is writable unless it is
        const, getter-only, or its owner handle is const.
        """
        if const and setter is not None:
            raise RegistrationError(
                f"Const member '{name}' of {cls.__name__} can't have a setter", cls, name)
        if setter is not None and getter is None:
            raise RegistrationError(
                f"Member '{name}' of {cls.__name__}: setter requires a getter", cls, name)
        desc = self._build(cls, name, attr, getter, setter, MemberMode.VALUE, const, type, copier)
        if desc.writable and desc.setter is None and _is_frozen_dataclass(cls):
            raise RegistrationError(
                f"Member '{name}' of frozen dataclass {cls.__name__} can't be assigned; "
                f"register it with const=True", cls, name)
        return self._add(desc)

    def register_member_ptr(
        self,
        cls: type,
        name: str,
        attr: Optional[str] = None,
        *,
        getter: Optional[Callable[[Any], Any]] = None,
    ) -> MemberDescriptor:
        """Expose a member by reference; constness follows the owner handle."""
        desc = self._build(cls, name, attr, getter, None, MemberMode.POINTER, False, None, None)
        return self._add(desc)

    def register_member_cptr(
        self,
        cls: type,
        name: str,
        attr: Optional[str] = None,
        *,
        getter: Optional[Callable[[Any], Any]] = None,
    ) -> MemberDescriptor:
        """Expose a member by read-only reference."""
        desc = self._build(cls, name, attr, getter, None, MemberMode.CONST_POINTER, True, None, None)
        return self._add(desc)

    def _build(self, cls, name, attr, getter, setter, mode, const, declared, copier) -> MemberDescriptor:
        if not isinstance(cls, type):
            raise RegistrationError(f"Members can only be registered on classes, got {cls!r}")
        if not isinstance(name, str) or not name.isidentifier() or name in LUA_KEYWORDS:
            raise RegistrationError(f"Invalid member name {name!r} for {cls.__name__}", cls)
        if getter is not None and attr is not None:
            raise RegistrationError(
                f"Member '{name}' of {cls.__name__}: give either attr or getter, not both",
                cls, name)
        if getter is not None and not callable(getter):
            raise RegistrationError(f"Getter of '{name}' is not callable", cls, name)
        if setter is not None and not callable(setter):
            raise RegistrationError(f"Setter of '{name}' is not callable", cls, name)
        if getter is None and attr is None:
            attr = name
        if attr is not None and dataclasses.is_dataclass(cls):
            field_names = {f.name for f in dataclasses.fields(cls)}
            if attr not in field_names and not hasattr(cls, attr):
                raise RegistrationError(
                    f"{cls.__name__} has no attribute '{attr}'", cls, name)

        try:
            declared = _normalize_type(declared)
        except TypeError as e:
            raise RegistrationError(str(e), cls, name) from None
        if declared is None and attr is not None and mode is MemberMode.VALUE:
            hint = _type_hints(cls).get(attr)
            if hint is not None:
                declared = declared_target(hint)

        return MemberDescriptor(
            owner=cls,
            name=name,
            mode=mode,
            attr=attr,
            getter=getter,
            setter=setter,
            const=const,
            type=declared,
            copier=copier or copy.deepcopy,
        )

    def _add(self, desc: MemberDescriptor) -> MemberDescriptor:
        members = self._members.setdefault(desc.owner, {})
        if desc.name in members:
            raise RegistrationError(
                f"Member '{desc.name}' already registered on {desc.owner.__name__}",
                desc.owner, desc.name)
        members[desc.name] = desc
        log.debug(f"Registered {desc.mode.value} member {desc.owner.__name__}.{desc.name}")
        return desc

    def lookup(self, cls: type, name: str) -> Optional[MemberDescriptor]:
        """Find a member on cls or its nearest registered base class."""
        for klass in cls.__mro__:
            members = self._members.get(klass)
            if members is not None and name in members:
                return members[name]
        return None

    def is_registered(self, cls: type) -> bool:
        return any(klass in self._members for klass in cls.__mro__)

    def members(self, cls: type) -> Dict[str, MemberDescriptor]:
        """All members visible on cls, subclasses overriding bases."""
        result: Dict[str, MemberDescriptor] = {}
        for klass in reversed(cls.__mro__):
            result.update(self._members.get(klass, {}))
        return result

    def __contains__(self, cls: type) -> bool:
        return self.is_registered(cls)


# =============================================================================
# Handles
# =============================================================================

class FieldRef:
    """Reference to a scalar attribute, the target of a scalar pointer member."""

    __slots__ = ('owner', 'attr')

    def __init__(self, owner: Any, attr: str):
        self.owner = owner
        self.attr = attr

    def get(self) -> Any:
        return getattr(self.owner, self.attr)

    def set(self, value: Any) -> None:
        setattr(self.owner, self.attr, value)

    def __repr__(self) -> str:
        return f"FieldRef({type(self.owner).__name__}.{self.attr})"


class Handle:
    """A Python object as exposed to Lua.

    Pushing a registered object as-is gives Lua a private copy. Wrap it to
    choose otherwise:

        session.set('b', Ref(b))              # Lua sees b itself
        session.set('b', Ref(b, const=True))  # ... read-only
        session.set('b', Shared(b))           # Lua shares ownership of b
    """

    kind = HandleKind.COPY

    __slots__ = ('target', 'const')

    def __init__(self, target: Any, const: bool = False):
        if isinstance(target, Handle):
            raise TypeError("Can't wrap a handle in another handle")
        self.target = target
        self.const = const

    @property
    def pointee_type(self) -> type:
        if isinstance(self.target, FieldRef):
            return type(self.target.get())
        return type(self.target)

    @property
    def type_name(self) -> str:
        """Name of the metatable this handle gets, e.g. 'const B*'."""
        base = self.pointee_type.__qualname__
        if self.kind is HandleKind.POINTER:
            name = f"{base}*"
        elif self.kind is HandleKind.SHARED:
            name = f"shared {base}"
        else:
            name = base
        return f"const {name}" if self.const else name

    @property
    def address(self) -> Any:
        """Identity of the referenced object (or field, for scalar references)."""
        if isinstance(self.target, FieldRef):
            return (id(self.target.owner), self.target.attr)
        return id(self.target)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.target!r}, const={self.const})"


class Copy(Handle):
    """An owned deep copy of an object."""

    kind = HandleKind.COPY
    __slots__ = ()

    def __init__(self, target: Any, const: bool = False, copier: Callable[[Any], Any] = copy.deepcopy):
        super().__init__(copier(target), const)


class Ref(Handle):
    """A borrowed reference; the object must outlive its use in Lua."""

    kind = HandleKind.POINTER
    __slots__ = ()


class Shared(Handle):
    """A reference whose target is kept alive while Lua holds it."""

    kind = HandleKind.SHARED
    __slots__ = ()


class _OwnedCopy(Handle):
    """A copy made by the binder; the target is already private."""

    kind = HandleKind.COPY
    __slots__ = ()
