import abc
import inspect
import typing

import pytest

from interposer import NO_VALUE, Out, Ref, SignatureUnsupported
from interposer.annotations import Direction
from interposer.descriptor import MemberKind, collect_members, describe_method, describe_property

T = typing.TypeVar("T")
K = typing.TypeVar("K")


class Store(typing.Protocol):
    def put(self, key: str, value: int = 0, *, overwrite: bool = False) -> None: ...

    def try_get(self, key: str, result: Out[int]) -> bool: ...

    def bump(self, counter: Ref[int]) -> None: ...

    def echo(self, value: T) -> T: ...


class Box(typing.Generic[T]):
    def put(self, value: T) -> None:
        pass

    def convert(self, value: T, into: typing.Type[K]) -> K:
        raise NotImplementedError


def test_describe_method():
    descriptor = describe_method(Store, Store.put)
    assert descriptor.declaring_type is Store
    assert descriptor.name == "put"
    assert descriptor.qualname == "Store.put"
    assert [p.name for p in descriptor.parameters] == ["key", "value", "overwrite"]
    assert [p.annotation for p in descriptor.parameters] == [str, int, bool]
    assert descriptor.parameters[1].default == 0
    assert descriptor.parameters[2].kind is inspect.Parameter.KEYWORD_ONLY
    assert descriptor.is_void
    assert not descriptor.is_generic
    assert not descriptor.has_by_ref_parameters
    assert descriptor.kind is MemberKind.METHOD


def test_descriptor_identity():
    a = describe_method(Store, Store.put)
    b = describe_method(Store, Store.put)
    assert a == b
    assert hash(a) == hash(b)
    assert a != describe_method(Store, Store.bump)
    assert {a: 1}[b] == 1


def test_by_ref_parameters():
    try_get = describe_method(Store, Store.try_get)
    assert try_get.has_by_ref_parameters
    assert try_get.parameters[1].direction is Direction.OUT
    assert try_get.parameters[1].annotation is int
    assert str(try_get) == "Store.try_get(key: str, result: Out[int]) -> bool"

    bump = describe_method(Store, Store.bump)
    assert bump.parameters[0].direction is Direction.BY_REF


def test_generic_method():
    echo = describe_method(Store, Store.echo)
    assert echo.is_generic
    assert echo.is_generic_definition
    assert echo.generic_arity == 1
    assert echo.type_parameters == (T,)

    closed = echo.specialize([int])
    assert not closed.is_generic_definition
    assert closed.type_arguments == (int,)
    assert closed.parameters[0].annotation is int
    assert closed.return_annotation is int
    assert closed != echo
    assert closed == echo.specialize((int,))
    assert closed != echo.specialize((str,))


def test_specialize_errors():
    echo = describe_method(Store, Store.echo)
    with pytest.raises(SignatureUnsupported):
        echo.specialize((int, str))
    with pytest.raises(SignatureUnsupported):
        echo.specialize((int,)).specialize((int,))
    with pytest.raises(SignatureUnsupported):
        describe_method(Store, Store.put).specialize((int,))


def test_class_type_parameters_are_not_method_type_parameters():
    put = describe_method(Box, Box.put)
    assert not put.is_generic

    convert = describe_method(Box, Box.convert)
    assert convert.type_parameters == (K,)

    bound = convert.bind_class_parameters({T: str})
    assert bound.parameters[0].annotation is str
    assert bound.is_generic_definition


def test_variadic_parameters_are_unsupported():
    class Logger:
        def log(self, *messages: str) -> None:
            pass

        def configure(self, **options) -> None:
            pass

    with pytest.raises(SignatureUnsupported):
        describe_method(Logger, Logger.log)
    with pytest.raises(SignatureUnsupported):
        describe_method(Logger, Logger.configure)


def test_instance_parameter_is_required():
    def no_params():
        pass

    with pytest.raises(SignatureUnsupported):
        describe_method(Store, no_params)


def test_describe_property():
    class Named:
        @property
        def name(self) -> str:
            return "x"

        @name.setter
        def name(self, value: str):
            pass

    getter, setter = describe_property(Named, "name", Named.__dict__["name"])
    assert getter.kind is MemberKind.GETTER
    assert getter.return_annotation is str
    assert setter.kind is MemberKind.SETTER
    assert setter.parameters[0].annotation is str
    assert setter.is_void
    assert getter != setter


def test_collect_members_order_and_identity_members():
    class Base(typing.Protocol):
        def run(self) -> int: ...

        def stop(self) -> None: ...

    class Derived(Base, typing.Protocol):
        def run(self) -> int: ...

        def pause(self) -> None: ...

    class Extra(typing.Protocol):
        def report(self) -> str: ...

    members = collect_members(Derived, [Extra])
    names = [m.name for m in members]
    assert names == ["run", "pause", "stop", "report", "__eq__", "__hash__", "__str__", "__repr__"]
    assert members[0].declaring_type is Derived
    assert all(m.declaring_type is object for m in members[4:])


def test_collect_members_skips_static_and_class_methods():
    class Api(abc.ABC):
        @abc.abstractmethod
        def call(self) -> None: ...

        @staticmethod
        def helper():
            pass

        @classmethod
        def create(cls):
            return cls

    assert [m.name for m in collect_members(Api) if m.declaring_type is Api] == ["call"]


def test_collect_members_data_members():
    class Labeled(typing.Protocol):
        label: str
        limit: typing.ClassVar[int]

    members = [m for m in collect_members(Labeled) if m.declaring_type is Labeled]
    assert [(m.name, m.kind) for m in members] == [("label", MemberKind.GETTER), ("label", MemberKind.SETTER)]


def test_hidden_member_with_different_signature_warns():
    class First(typing.Protocol):
        def run(self) -> int: ...

    class Second(typing.Protocol):
        def run(self, fast: bool) -> int: ...

    with pytest.warns(UserWarning, match="hidden"):
        members = collect_members(First, [Second])
    run = [m for m in members if m.name == "run"]
    assert len(run) == 1
    assert run[0].declaring_type is First


def test_generic_interface_alias():
    class Repository(typing.Protocol[T]):
        def get(self, key: str) -> T: ...

    (get, *_) = collect_members(Repository[int])
    assert get.return_annotation is int
    assert not get.is_generic


def test_no_value():
    assert not NO_VALUE
    assert repr(NO_VALUE) == "NO_VALUE"
    assert type(NO_VALUE)() is NO_VALUE


def test_property_override_along_hierarchy_is_quiet(recwarn):
    class Base(typing.Protocol):
        def size(self) -> int: ...

    class Derived(Base, typing.Protocol):
        @property
        def size(self) -> int: ...

    members = [m for m in collect_members(Derived) if m.name == "size"]
    assert [m.kind for m in members] == [MemberKind.GETTER]
    assert len(recwarn) == 0


def test_property_hiding_method_of_unrelated_interface_warns():
    class Sized(typing.Protocol):
        def size(self) -> int: ...

    class Measured(typing.Protocol):
        @property
        def size(self) -> int: ...

    with pytest.warns(UserWarning, match="hidden"):
        members = collect_members(Sized, [Measured])
    assert [m.kind for m in members if m.name == "size"] == [MemberKind.METHOD]
