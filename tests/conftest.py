"""Pytest fixtures for luaw tests."""
from typing import List

import pytest

from luaw import MemberRegistry, Session
from luaw import logging as luaw_logging
from sample_objects import A, B, Point


@pytest.fixture
def session():
    """A fresh session with default options."""
    s = Session()
    yield s
    s.close()


@pytest.fixture
def log_lines():
    """Capture luaw log output for a test."""
    lines: List[str] = []
    luaw_logging.set_output(lines.append)
    yield lines
    luaw_logging.set_output(None)


@pytest.fixture
def registry():
    """Registry exposing A, B and Point the way scripts usually see them."""
    r = MemberRegistry()
    r.register_member(A, 'i')
    r.register_member(A, 'name')
    r.register_member(B, 'i')
    r.register_member(B, 'd')
    r.register_member(B, 'a')
    r.register_member(B, 'tags')
    r.register_member_ptr(B, 'aptr', 'a')
    r.register_member_cptr(B, 'acptr', 'a')
    r.register_member_ptr(B, 'iptr', 'i')
    r.register_member(Point, 'x', const=True)
    r.register_member(Point, 'y', const=True)
    return r


@pytest.fixture
def bound(registry):
    """A session sharing the object registry."""
    s = Session(registry=registry)
    yield s
    s.close()
