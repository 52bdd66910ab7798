"""
Legacy eager variable preparation.

Before a session could resolve undefined globals lazily (see provider.py),
variables were prepared up front: the code is scanned for names that look
like global variables and a bulk provider sets them all before evaluation.

    preparer = Preparer(session, provider)
    preparer.auto_eval_int('return a + b * c')

The scan is heuristic. It skips comments, strings, numbers, keywords,
function calls (name followed by '('), field accesses (a.b: neither a nor b
is reported) and names assigned in the code itself (from the assignment
onwards). Prefer lazy resolution for new code.
"""

import re
from typing import TYPE_CHECKING, Any, List, Optional, Protocol, Sequence

from .logging import get_logger
from .types import (
    BOOL,
    DOUBLE,
    INT,
    LLONG,
    LONG,
    STRING,
    UINT,
    ULLONG,
    ULONG,
    ConversionReport,
)

if TYPE_CHECKING:
    from .session import Session

log = get_logger('scanner')

LUA_KEYWORDS = frozenset({
    'nil', 'true', 'false', 'and', 'or', 'not',
    'if', 'then', 'elseif', 'else', 'end', 'for',
    'do', 'while', 'repeat', 'until', 'return', 'break',
    'goto', 'function', 'in', 'local',
})

_TOKEN = re.compile(r"""
      (?P<comment> --\[(?P<ceq>=*)\[ .*? \](?P=ceq)\] | --[^\n]* )
    | (?P<longstr> \[(?P<seq>=*)\[ .*? \](?P=seq)\] )
    | (?P<string>  "(?:\\.|[^"\\\n])*"? | '(?:\\.|[^'\\\n])*'? )
    | (?P<number>  0[xX][0-9a-fA-F.]+(?:[pP][+-]?\d+)?
                 | \d+\.?\d*(?:[eE][+-]?\d+)?
                 | \.\d+(?:[eE][+-]?\d+)? )
    | (?P<name>    [A-Za-z_][A-Za-z0-9_]* )
""", re.VERBOSE | re.DOTALL)


def _next_char(code: str, pos: int) -> str:
    while pos < len(code) and code[pos].isspace():
        pos += 1
    return code[pos:pos + 2]


def _prev_char(code: str, pos: int) -> str:
    pos -= 1
    while pos >= 0 and code[pos].isspace():
        pos -= 1
    return code[max(pos - 1, 0):pos + 1]


def detect_variable_names(code: str) -> List[str]:
    """Names in code that look like global variables, in order of appearance."""
    if not code:
        return []

    found: List[str] = []
    seen = set()
    assigned = set()
    for match in _TOKEN.finditer(code):
        name = match.group('name')
        if name is None or name in LUA_KEYWORDS or name in assigned:
            continue

        before = _prev_char(code, match.start())
        if before.endswith(('.', ':')) and not before.endswith('..'):
            continue  # field or method of something else

        after = _next_char(code, match.end())
        if after.startswith('('):
            continue  # function call
        if after.startswith('.') and after != '..':
            continue  # package or table
        if after.startswith('=') and after != '==':
            assigned.add(name)
            continue

        if name not in seen:
            seen.add(name)
            found.append(name)
    return found


class BulkProvider(Protocol):
    """Provider that sets many globals at once."""

    def provide_many(self, session: 'Session', names: Sequence[str]) -> None:
        """Set a global in the session for each name it knows."""
        ...


class Preparer:
    """Scans code for variables and lets a provider set them before running it.

    The provider is either a BulkProvider or a per-name VariableProvider, in
    which case each value it pushes is assigned to the global of that name.
    """

    def __init__(self, session: 'Session', provider: Any):
        self._session = session
        self._provider = provider

    def prepare(self, code: str) -> List[str]:
        names = detect_variable_names(code)
        log.trace(f"Preparing {names}")
        if hasattr(self._provider, 'provide_many'):
            self._provider.provide_many(self._session, names)
            return names

        for name in names:
            top = self._session.gettop()
            if self._provider.provide(self._session, name) and self._session.gettop() > top:
                self._session.setglobal(name)
            self._session.settop(top)
        return names

    def auto_eval(
        self,
        code: str,
        target: Any,
        default: Any = None,
        enable_log: bool = True,
        report: Optional[ConversionReport] = None,
    ) -> Any:
        """Prepare the variables of code, then evaluate it."""
        self.prepare(code)
        return self._session.eval(code, target, default, enable_log, report)

    def auto_eval_bool(self, code: str, default=None, enable_log=True, report=None) -> bool:
        return self.auto_eval(code, BOOL, default, enable_log, report)

    def auto_eval_int(self, code: str, default=None, enable_log=True, report=None) -> int:
        return self.auto_eval(code, INT, default, enable_log, report)

    def auto_eval_uint(self, code: str, default=None, enable_log=True, report=None) -> int:
        return self.auto_eval(code, UINT, default, enable_log, report)

    def auto_eval_long(self, code: str, default=None, enable_log=True, report=None) -> int:
        return self.auto_eval(code, LONG, default, enable_log, report)

    def auto_eval_ulong(self, code: str, default=None, enable_log=True, report=None) -> int:
        return self.auto_eval(code, ULONG, default, enable_log, report)

    def auto_eval_llong(self, code: str, default=None, enable_log=True, report=None) -> int:
        return self.auto_eval(code, LLONG, default, enable_log, report)

    def auto_eval_ullong(self, code: str, default=None, enable_log=True, report=None) -> int:
        return self.auto_eval(code, ULLONG, default, enable_log, report)

    def auto_eval_double(self, code: str, default=None, enable_log=True, report=None) -> float:
        return self.auto_eval(code, DOUBLE, default, enable_log, report)

    def auto_eval_string(self, code: str, default=None, enable_log=True, report=None) -> str:
        return self.auto_eval(code, STRING, default, enable_log, report)
