"""Session configuration.

Options can be built in code, chained like a builder:

    opts = SessionOptions().preload_libs().with_extensions(False)

or loaded from YAML:

    libs: preload            # ignore | load | preload
    register_extensions: false
    custom_load: [math, string]
    custom_preload: [table]

Entries of custom_load/custom_preload are either standard library names or,
in code, (name, loader) pairs whose loader returns the module value.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Standard libraries opened by luaL_openlibs, besides the base library
STANDARD_LIBS = (
    'package',
    'coroutine',
    'table',
    'io',
    'os',
    'string',
    'math',
    'utf8',
    'debug',
)

LibEntry = Union[str, Tuple[str, Callable[..., Any]]]


class LibInit(Enum):
    """Policy for the standard libraries of a new session."""
    IGNORE = 'ignore'    # No standard library, not even the base functions
    LOAD = 'load'        # Everything loaded as globals
    PRELOAD = 'preload'  # Base and package loaded, the rest through require()


class SessionOptions(BaseModel):
    """Initialization options for a Session."""

    model_config = ConfigDict(extra='forbid', arbitrary_types_allowed=True)

    libs: LibInit = Field(default=LibInit.LOAD, description="Standard library policy")
    register_extensions: bool = Field(default=True, description="Install IF/SET/COUNTER/COUNTER0")

    # Adopt an externally owned lupa.LuaRuntime; it is never closed by the session
    runtime: Any = Field(default=None, exclude=True)

    custom_load: List[Any] = Field(default_factory=list, description="Libraries loaded as globals")
    custom_preload: List[Any] = Field(default_factory=list, description="Libraries left to require()")

    @field_validator('libs', mode='before')
    @classmethod
    def validate_libs(cls, v: Any) -> Any:
        if isinstance(v, LibInit):
            return v
        try:
            return LibInit(str(v).lower())
        except ValueError:
            choices = ', '.join(m.value for m in LibInit)
            raise ValueError(f"libs must be one of {choices}, got {v!r}") from None

    @field_validator('custom_load', 'custom_preload', mode='before')
    @classmethod
    def validate_entries(cls, v: Any) -> Any:
        """Names must be standard libraries; pairs must carry a callable loader."""
        if v is None:
            return []
        for entry in v:
            if isinstance(entry, str):
                if entry not in STANDARD_LIBS:
                    raise ValueError(f"{entry!r} is not a standard library")
            elif not (isinstance(entry, tuple) and len(entry) == 2 and callable(entry[1])):
                raise ValueError(f"Expected a library name or a (name, loader) pair, got {entry!r}")
        return list(v)

    def ignore_libs(self) -> 'SessionOptions':
        self.libs = LibInit.IGNORE
        return self

    def load_libs(self) -> 'SessionOptions':
        self.libs = LibInit.LOAD
        return self

    def preload_libs(self) -> 'SessionOptions':
        self.libs = LibInit.PRELOAD
        return self

    def with_extensions(self, register: bool = True) -> 'SessionOptions':
        self.register_extensions = register
        return self

    def use_runtime(self, runtime) -> 'SessionOptions':
        self.runtime = runtime
        return self

    def load(self, *entries: LibEntry) -> 'SessionOptions':
        self.custom_load.extend(entries)
        return self

    def preload(self, *entries: LibEntry) -> 'SessionOptions':
        self.custom_preload.extend(entries)
        return self

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SessionOptions':
        """Build options from a plain mapping (e.g. parsed YAML).

        Raises:
            pydantic.ValidationError (a ValueError) on unknown keys or values
        """
        return cls.model_validate(data or {})


def load_options(path: Union[str, Path]) -> SessionOptions:
    """Load session options from a YAML file."""
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    return SessionOptions.from_dict(data)
