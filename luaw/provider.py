"""
Variable Providers - supply values for global names a script uses but never
defined.

When a session has a provider, reading an undefined global asks the provider
for it. The provider pushes the value onto the session's stack and returns
True; returning False (or pushing nothing) makes the read fail with
"Not found: <name>".

The provider is consulted on every read of a missing name, so a name can get
different values over time. Assign the global from Lua to pin a value.

    class Config:
        def provide(self, session, name):
            if name in self.values:
                session.push(self.values[name])
                return True
            return False

    session.provider = Config()
    session.eval_int('return a + b')
"""

from typing import TYPE_CHECKING, Any, Callable, Mapping, Protocol, Union, runtime_checkable

from .logging import get_logger

if TYPE_CHECKING:
    from .session import Session

log = get_logger('provider')


@runtime_checkable
class VariableProvider(Protocol):
    """Protocol for objects that resolve undefined global names."""

    def provide(self, session: 'Session', name: str) -> bool:
        """Push the value of name onto the session stack.

        Returns:
            True if a value was pushed, False if the name is unknown
        """
        ...


class MappingProvider:
    """Provider backed by a mapping or a name -> value callable.

    A callable source signals an unknown name by raising KeyError.
    """

    def __init__(self, source: Union[Mapping[str, Any], Callable[[str], Any]]):
        self._source = source

    def provide(self, session: 'Session', name: str) -> bool:
        if callable(self._source):
            try:
                value = self._source(name)
            except KeyError:
                return False
        elif name in self._source:
            value = self._source[name]
        else:
            return False
        log.trace(f"Providing '{name}'")
        session.push(value)
        return True


def as_provider(source: Any) -> VariableProvider:
    """Accept a provider, a mapping or a callable wherever a provider is needed."""
    if isinstance(source, VariableProvider):
        return source
    if isinstance(source, Mapping) or callable(source):
        return MappingProvider(source)
    raise TypeError(f"Can't use {type(source).__name__} as a variable provider")
