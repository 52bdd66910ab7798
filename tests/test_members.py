"""
Object Binding Tests

Registered members seen from Lua: copies versus references, const
propagation, metatable names, assignment coercion and registration errors.

Run with: pytest tests/test_members.py -v
"""

import pytest

from luaw import (
    Copy,
    MemberMode,
    MemberRegistry,
    Ref,
    RegistrationError,
    Session,
    Shared,
    Status,
)
from luaw.members import declared_target
from luaw.session import METATABLE
from luaw.types import DOUBLE, LLONG, STRING, ListOf, MapOf
from sample_objects import A, B, C, Counter, Point


def metatable_name(session, expr):
    with session.guard():
        session.dostring(f'return {expr}')
        return session.get_metatable_name(-1)


def error_of(session, code):
    """Run code that must fail and return its message."""
    with session.guard():
        assert session.dostring(code) is Status.ERRRUN
        return session.error_message()


class TestCopies:
    """Plain registered objects are pushed as private copies."""

    def test_read_members(self, bound):
        bound.set('b', B())
        assert bound.eval_int('return b.i') == 2
        assert bound.eval_double('return b.d') == 0.5
        assert bound.eval_int('return b.a.i') == 1
        assert bound.eval_string('return b.a.name') == 'a'

    def test_copy_is_independent(self, bound):
        b = B()
        bound.set('b', b)
        assert bound.dostring('b.i = 5') is Status.OK
        assert bound.eval_int('return b.i') == 5
        assert b.i == 2

    def test_copy_wrapper(self, bound):
        b = B()
        bound.set('b', Copy(b))
        bound.dostring('b.i = 5')
        assert b.i == 2
        assert bound.eval_pointer('return b', B) is not b

    def test_const_copy(self, bound):
        bound.set('b', Copy(B(), const=True))
        assert bound.eval_int('return b.i') == 2
        assert 'const' in error_of(bound, 'b.i = 5')

    def test_list_member_is_a_table(self, bound):
        bound.set('b', B(tags=['x', 'y']))
        assert bound.eval_int('return #b.tags') == 2
        assert bound.eval_string('return b.tags[2]') == 'y'


class TestReferences:
    """Ref and Shared let Lua work on the object itself."""

    def test_ref_writes_through(self, bound):
        b = B()
        bound.set('b', Ref(b))
        assert bound.dostring('b.i = 7') is Status.OK
        assert b.i == 7

    def test_shared_writes_through(self, bound):
        b = B()
        bound.set('b', Shared(b))
        bound.dostring('b.i = 7')
        assert b.i == 7

    def test_const_ref_refuses_writes(self, bound):
        b = B()
        bound.set('b', Ref(b, const=True))
        assert bound.eval_int('return b.i') == 2
        message = error_of(bound, 'b.i = 7')
        assert "Can't assign member 'i' of const B*" in message
        assert b.i == 2

    def test_to_pointer(self, bound):
        b = B()
        bound.set('b', Ref(b))
        assert bound.eval_pointer('return b') is b
        assert bound.get('b', B) is b
        assert bound.eval_pointer('return b', A) is None

    def test_to_pointer_of_non_handle(self, bound):
        bound.push(5)
        assert bound.to_pointer(-1) is None

    def test_object_target_failure(self, bound):
        bound.set('x', 5)
        assert bound.get('x', B, enable_log=False) is None


class TestNestedMembers:
    """Value members copy, ptr members reference, cptr members are const."""

    def test_value_member_is_a_copy(self, bound):
        b = B()
        bound.set('b', Ref(b))
        assert bound.dostring('b.a.i = 5') is Status.OK
        assert b.a.i == 1

    def test_ptr_member_writes_through(self, bound):
        b = B()
        bound.set('b', Ref(b))
        assert bound.dostring('b.aptr.i = 5') is Status.OK
        assert b.a.i == 5

    def test_cptr_member_is_const(self, bound):
        b = B()
        bound.set('b', Ref(b))
        assert bound.eval_int('return b.acptr.i') == 1
        assert 'const A*' in error_of(bound, 'b.acptr.i = 5')
        assert b.a.i == 1

    def test_const_owner_propagates(self, bound):
        """Members of a const object are const, whatever their mode."""
        b = B()
        bound.set('b', Ref(b, const=True))
        error_of(bound, 'b.aptr.i = 5')
        error_of(bound, 'b.a.i = 5')
        assert b.a.i == 1

    def test_getter_can_choose_a_mutable_ref(self):
        """A getter returning Ref() bypasses the owner's constness."""
        registry = MemberRegistry()
        registry.register_member(A, 'i')
        registry.register_member_ptr(B, 'aptr', 'a')
        registry.register_member(B, 'aptr2', getter=lambda b: Ref(b.a))
        s = Session(registry=registry)
        b = B()
        s.set('b', Ref(b, const=True))
        error_of(s, 'b.aptr.i = 5')
        assert s.dostring('b.aptr2.i = 5') is Status.OK
        assert b.a.i == 5

    def test_assign_aggregate_copies(self, bound):
        """b.a = x copies x into the field."""
        b = B()
        a2 = A(i=9)
        bound.set('b', Ref(b))
        bound.set('a2', Ref(a2))
        assert bound.dostring('b.a = a2') is Status.OK
        assert b.a.i == 9
        assert b.a is not a2

    def test_assign_wrong_aggregate(self, bound):
        bound.set('b', Ref(B()))
        assert 'expected A' in error_of(bound, 'b.a = 5')
        assert 'expected A' in error_of(bound, 'b.a = b')

    def test_ptr_member_can_not_be_assigned(self, bound):
        bound.set('b', Ref(B()))
        bound.set('a2', A())
        assert 'reference' in error_of(bound, 'b.aptr = a2')

    def test_scalar_ptr(self, bound):
        """A ptr member of a scalar field references the field."""
        bound.set('b', Ref(B()))
        assert metatable_name(bound, 'b.iptr') == 'int*'
        assert bound.eval_bool('return b.iptr == b.iptr') is True


class TestMetatableNames:
    """Each (class, kind, constness) has its own named metatable."""

    @pytest.mark.parametrize("wrap,expected", [
        (lambda b: b, 'B'),
        (lambda b: Copy(b, const=True), 'const B'),
        (lambda b: Ref(b), 'B*'),
        (lambda b: Ref(b, const=True), 'const B*'),
        (lambda b: Shared(b), 'shared B'),
        (lambda b: Shared(b, const=True), 'const shared B'),
    ])
    def test_object_names(self, bound, wrap, expected):
        bound.set('b', wrap(B()))
        assert metatable_name(bound, 'b') == expected

    def test_member_names(self, bound):
        bound.set('b', Ref(B()))
        assert metatable_name(bound, 'b.a') == 'A'
        assert metatable_name(bound, 'b.aptr') == 'A*'
        assert metatable_name(bound, 'b.acptr') == 'const A*'

    def test_const_owner_member_names(self, bound):
        bound.set('b', Ref(B(), const=True))
        assert metatable_name(bound, 'b.a') == 'const A'
        assert metatable_name(bound, 'b.aptr') == 'const A*'

    def test_metatables_are_cached(self, bound):
        bound.set('b1', Ref(B()))
        bound.set('b2', Ref(B()))
        assert bound.eval_bool('return getmetatable(b1) == getmetatable(b2)') is True

    def test_tostring(self, bound):
        bound.set('b', Ref(B()))
        assert bound.eval_string('return tostring(b)').startswith('B*: 0x')

    def test_type_is_userdata(self, bound):
        bound.set('b', B())
        bound.getglobal('b')
        assert bound.type_name(-1) == 'userdata'

    def test_metatable_is_protected(self, bound):
        """Scripts get the metatable name and can't swap the metatable."""
        bound.set('b', Ref(B(), const=True))
        assert bound.eval_string('return getmetatable(b)') == 'const B*'
        assert bound.eval_bool('return (pcall(setmetatable, b, nil))') is False
        assert "Can't assign member 'i'" in error_of(bound, 'b.i = 5')

    def test_touchtb_on_proxy_pushes_nil(self, bound):
        bound.set('b', Ref(B()))
        with bound.guard():
            bound.gseek('b').touchtb(METATABLE)
            assert bound.isnoneornil(-1)

    def test_rawset_stays_in_lua(self, bound):
        """rawset bypasses the binding: the Python object is untouched."""
        b = B()
        bound.set('b', Ref(b, const=True))
        assert bound.dostring('rawset(b, "i", 99)') is Status.OK
        assert bound.eval_int('return b.i') == 99
        assert b.i == 2


class TestEquality:
    """References compare by the object they point to."""

    def test_same_object(self, bound):
        bound.set('b', Ref(B()))
        assert bound.eval_bool('return b.aptr == b.aptr') is True

    def test_constness_does_not_matter(self, bound):
        bound.set('b', Ref(B()))
        assert bound.eval_bool('return b.aptr == b.acptr') is True

    def test_metatables_follow_constness(self, bound):
        """Equal references may still differ in metatable."""
        bound.set('b', Ref(B()))
        assert bound.eval_bool('return getmetatable(b.aptr) == getmetatable(b.aptr)') is True
        assert bound.eval_bool('return getmetatable(b.aptr) ~= getmetatable(b.acptr)') is True

    def test_copies_differ(self, bound):
        bound.set('b', Ref(B()))
        assert bound.eval_bool('return b.a == b.a') is False

    def test_two_refs_to_one_object(self, bound):
        b = B()
        bound.set('x', Ref(b))
        bound.set('y', Ref(b, const=True))
        assert bound.eval_bool('return x == y') is True


class TestMemberLookup:
    """Missing members fail; lookups walk the class hierarchy."""

    def test_missing_member(self, bound):
        bound.set('b', Ref(B()))
        assert "Not found member 'nope' in B*" in error_of(bound, 'return b.nope')
        assert "Not found member 'nope'" in error_of(bound, 'b.nope = 1')

    def test_non_string_key(self, bound):
        bound.set('b', Ref(B()))
        assert 'must be a string' in error_of(bound, 'return b[1]')

    def test_subclass_sees_base_members(self, bound):
        c = C()
        bound.set('c', Ref(c))
        assert bound.eval_int('return c.i') == 2
        bound.dostring('c.aptr.i = 4')
        assert c.a.i == 4
        assert 'extra' in error_of(bound, 'return c.extra')

    def test_errors_keep_the_stack_balanced(self, bound):
        bound.set('b', Ref(B()))
        bound.eval_int('return b.nope', enable_log=False)
        assert bound.gettop() == 0


class TestAssignment:
    """Writes convert the value to the member's declared type."""

    def test_integer_member(self, bound):
        b = B()
        bound.set('b', Ref(b))
        bound.dostring("b.i = '12'")
        assert b.i == 12
        bound.dostring('b.i = 2.7')
        assert b.i == 2

    def test_float_member(self, bound):
        b = B()
        bound.set('b', Ref(b))
        bound.dostring('b.d = 1')
        assert b.d == 1.0
        assert isinstance(b.d, float)

    def test_string_member(self, bound):
        b = B()
        bound.set('b', Ref(b))
        bound.dostring('b.aptr.name = 42')
        assert b.a.name == '42'

    def test_list_member(self, bound):
        b = B()
        bound.set('b', Ref(b))
        bound.dostring("b.tags = {'x', 'y'}")
        assert b.tags == ['x', 'y']

    def test_failed_conversion(self, bound):
        b = B()
        bound.set('b', Ref(b))
        assert "Can't assign member 'i'" in error_of(bound, "b.i = 'abc'")
        assert b.i == 2

    def test_frozen_dataclass_members_are_const(self, bound):
        p = Point(1, 2)
        bound.set('p', Ref(p))
        assert bound.eval_int('return p.x + p.y') == 3
        assert 'read-only' in error_of(bound, 'p.x = 5')

    def test_getter_only_is_read_only(self):
        registry = MemberRegistry()
        registry.register_member(Counter, 'doubled', getter=lambda c: c.doubled)
        s = Session(registry=registry)
        s.set('c', Ref(Counter(4)))
        assert s.eval_int('return c.doubled') == 8
        assert 'read-only' in error_of(s, 'c.doubled = 1')

    def test_getter_and_setter(self):
        registry = MemberRegistry()

        def set_count(counter, value):
            counter.count = value

        registry.register_member(Counter, 'count', getter=lambda c: c.count,
                                 setter=set_count, type=int)
        s = Session(registry=registry)
        counter = Counter()
        s.set('c', Ref(counter))
        s.dostring("c.count = '3'")
        assert counter.count == 3

    def test_untyped_member_infers_from_value(self):
        registry = MemberRegistry()
        registry.register_member(Counter, 'count')
        s = Session(registry=registry)
        counter = Counter(1)
        s.set('c', Ref(counter))
        s.dostring('c.count = 2.9')
        assert counter.count == 2


class TestRegistration:
    """Malformed registrations fail when they are made."""

    def test_duplicate(self):
        registry = MemberRegistry()
        registry.register_member(A, 'i')
        with pytest.raises(RegistrationError, match='already registered'):
            registry.register_member(A, 'i')

    def test_writable_member_on_frozen_dataclass(self):
        with pytest.raises(RegistrationError, match='frozen'):
            MemberRegistry().register_member(Point, 'x')

    def test_unknown_attribute(self):
        with pytest.raises(RegistrationError, match='no attribute'):
            MemberRegistry().register_member(A, 'nope')

    def test_attr_and_getter(self):
        with pytest.raises(RegistrationError):
            MemberRegistry().register_member(A, 'x', 'i', getter=lambda a: a.i)

    def test_setter_without_getter(self):
        with pytest.raises(RegistrationError):
            MemberRegistry().register_member(A, 'x', setter=lambda a, v: None)

    def test_const_with_setter(self):
        with pytest.raises(RegistrationError):
            MemberRegistry().register_member(
                A, 'x', getter=lambda a: a.i, setter=lambda a, v: None, const=True)

    @pytest.mark.parametrize("name", ['', '1x', 'end', 'a b', None])
    def test_bad_names(self, name):
        with pytest.raises(RegistrationError):
            MemberRegistry().register_member(A, name, 'i')

    def test_not_a_class(self):
        with pytest.raises(RegistrationError):
            MemberRegistry().register_member(A(), 'i')

    def test_registration_error_is_a_type_error(self):
        with pytest.raises(TypeError):
            MemberRegistry().register_member(A(), 'i')

    def test_descriptors(self, registry):
        desc = registry.lookup(B, 'aptr')
        assert desc.mode is MemberMode.POINTER
        assert not desc.writable
        assert registry.lookup(B, 'i').type == LLONG
        assert registry.lookup(C, 'i').owner is B
        assert set(registry.members(C)) >= {'i', 'a', 'aptr', 'acptr'}
        assert C in registry
        assert int not in registry

    def test_declared_target(self):
        assert declared_target(float) == DOUBLE
        assert declared_target(list[str]) == ListOf(STRING)
        assert declared_target(dict[str, float]) == MapOf(STRING, DOUBLE)
        assert declared_target(A) is A
        assert declared_target(list) is None

    def test_unregistered_objects_are_refused(self, bound):
        with pytest.raises(TypeError, match='Register its members'):
            bound.set('c', Counter())


class TestLifetimes:
    """Proxies are tracked weakly and die with Lua's garbage collection."""

    def test_copies_are_collected(self, bound):
        bound.set('b', Ref(B()))
        bound.dostring('for i = 1, 20 do local a = b.a end')
        bound.collect_garbage()
        assert bound.live_handles() < 5

    def test_global_keeps_handle_alive(self, bound):
        bound.set('b', B())
        bound.collect_garbage()
        assert bound.live_handles() >= 1
        assert bound.eval_int('return b.i') == 2

    def test_shared_registry(self, registry):
        """One registry serves several sessions."""
        s1 = Session(registry=registry)
        s2 = Session(registry=registry)
        s1.set('b', B(i=1))
        s2.set('b', B(i=2))
        assert s1.eval_int('return b.i') == 1
        assert s2.eval_int('return b.i') == 2
