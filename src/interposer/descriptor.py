"""
Structural description of interface members.

This module provides:
- MethodDescriptor: the identity of a method (declaring type, name, parameter shapes, return
  shape, generic arity), used as the key of every cache in interposer
- ParameterShape: one parameter, with its semantic type and direction (in, out, by-ref)
- describe_method / describe_property: build descriptors from live functions and properties
- collect_members: the full, deduplicated member set of a group of interfaces

Descriptors are plain immutable data. Compiling them into something callable is the job of
`interposer.codegen.compile`.
"""

import abc
import dataclasses
import enum
import inspect
import typing
import warnings

import typing_extensions

from .annotations import Direction, evaluated_annotations, format_annotation, parameter_direction, substitute
from .exceptions import SignatureUnsupported

__all__ = [
    "Direction",
    "IDENTITY_MEMBERS",
    "MemberKind",
    "MethodDescriptor",
    "NO_VALUE",
    "ParameterShape",
    "collect_members",
    "describe_method",
    "describe_property",
]

# Members every object has, and which define a proxy's own identity
IDENTITY_MEMBERS = ("__eq__", "__hash__", "__str__", "__repr__")

IGNORED_METHODS = (
    "__init__",
    "__new__",
    "__init_subclass__",
    "__subclasshook__",
    "__class_getitem__",
    "__getattr__",
    "__getattribute__",
    "__setattr__",
    "__delattr__",
    "__annotate__",
    "__annotate_func__",
    # never proxy the destructor, the gc calls it on the proxy itself
    "__del__",
)

# Bases that contribute nothing to an interface's contract
_SKIPPED_BASES = (object, typing.Generic, typing.Protocol, typing_extensions.Protocol, abc.ABC)

_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


class _NoValue:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "NO_VALUE"

    def __bool__(self):
        return False

    def __reduce__(self):
        return "NO_VALUE"


NO_VALUE = _NoValue()


class MemberKind(enum.Enum):
    METHOD = "method"
    GETTER = "getter"
    SETTER = "setter"


@dataclasses.dataclass(frozen=True)
class ParameterShape:
    name: str
    annotation: typing.Any = typing.Any
    direction: Direction = Direction.IN
    kind: inspect._ParameterKind = inspect.Parameter.POSITIONAL_OR_KEYWORD
    default: typing.Any = dataclasses.field(default=inspect.Parameter.empty, compare=False)

    @property
    def is_by_ref(self) -> bool:
        return self.direction is not Direction.IN

    def __str__(self):
        annotation = format_annotation(self.annotation)
        if self.direction is Direction.OUT:
            annotation = f"Out[{annotation}]"
        elif self.direction is Direction.BY_REF:
            annotation = f"Ref[{annotation}]"
        return f"{self.name}: {annotation}"


@dataclasses.dataclass(frozen=True)
class MethodDescriptor:
    """Structural identity of one interface member.

    Two descriptors are equal when they describe the same member of the same type with the
    same shape, which is what lets one compiled thunk serve every instance of that type.
    `function` is kept for introspection only and doesn't take part in equality.
    """

    declaring_type: type
    name: str
    parameters: tuple[ParameterShape, ...] = ()
    return_annotation: typing.Any = typing.Any
    type_parameters: tuple[typing.TypeVar, ...] = ()
    type_arguments: tuple = ()
    kind: MemberKind = MemberKind.METHOD
    function: typing.Any = dataclasses.field(default=None, compare=False, repr=False)

    @property
    def qualname(self) -> str:
        return f"{self.declaring_type.__qualname__}.{self.name}"

    @property
    def is_void(self) -> bool:
        return self.return_annotation is None or self.return_annotation is type(None)

    @property
    def generic_arity(self) -> int:
        return len(self.type_parameters)

    @property
    def is_generic(self) -> bool:
        return bool(self.type_parameters)

    @property
    def is_generic_definition(self) -> bool:
        # open: type parameters known, concrete type arguments not supplied yet
        return bool(self.type_parameters) and not self.type_arguments

    @property
    def has_by_ref_parameters(self) -> bool:
        return any(p.is_by_ref for p in self.parameters)

    def _substituted(self, bindings, **changes):
        return dataclasses.replace(
            self,
            parameters=tuple(dataclasses.replace(p, annotation=substitute(p.annotation, bindings)) for p in self.parameters),
            return_annotation=substitute(self.return_annotation, bindings),
            **changes,
        )

    def bind_class_parameters(self, bindings: typing.Mapping[typing.TypeVar, typing.Any]) -> "MethodDescriptor":
        """Resolve the type parameters of the declaring class, e.g. for `Repository[int]`."""
        return self._substituted(bindings)

    def specialize(self, type_arguments: typing.Sequence[typing.Any]) -> "MethodDescriptor":
        """Close a generic method definition over concrete type arguments."""
        type_arguments = tuple(type_arguments)
        if not self.type_parameters:
            raise SignatureUnsupported(f"{self.qualname} is not a generic method", method=self)
        if self.type_arguments:
            raise SignatureUnsupported(f"{self} is already specialized", method=self)
        if len(type_arguments) != len(self.type_parameters):
            raise SignatureUnsupported(
                f"{self.qualname} takes {len(self.type_parameters)} type argument(s), got {len(type_arguments)}",
                method=self,
            )
        bindings = dict(zip(self.type_parameters, type_arguments))
        return self._substituted(bindings, type_arguments=type_arguments)

    def __str__(self):
        name = self.qualname
        if self.type_arguments:
            name += "[" + ", ".join(format_annotation(a) for a in self.type_arguments) + "]"
        elif self.type_parameters:
            name += "[" + ", ".join(t.__name__ for t in self.type_parameters) + "]"
        if self.kind is MemberKind.GETTER:
            return f"{name} (getter) -> {format_annotation(self.return_annotation)}"
        if self.kind is MemberKind.SETTER:
            return f"{name} (setter) <- {format_annotation(self.parameters[0].annotation)}"
        params = ", ".join(str(p) for p in self.parameters)
        return f"{name}({params}) -> {format_annotation(self.return_annotation)}"


def _collect_type_vars(annotation, collected: list) -> None:
    if isinstance(annotation, typing.TypeVar):
        if annotation not in collected:
            collected.append(annotation)
        return
    if isinstance(annotation, type):
        # a bare generic class (`Box`, not `Box[T]`) doesn't make a method generic
        return
    for arg in typing_extensions.get_args(annotation):
        _collect_type_vars(arg, collected)


def describe_method(
    declaring_type: type,
    function,
    name: typing.Optional[str] = None,
    kind: MemberKind = MemberKind.METHOD,
) -> MethodDescriptor:
    """Describe a function declared on `declaring_type`, whose first parameter is the instance."""
    name = name or function.__name__
    qualname = f"{declaring_type.__qualname__}.{name}"
    try:
        sig = inspect.signature(function)
    except (TypeError, ValueError) as exc:
        raise SignatureUnsupported(f"Can't read the signature of {qualname}: {exc}") from exc

    params = list(sig.parameters.values())
    if not params or params[0].kind not in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
        raise SignatureUnsupported(f"{qualname} doesn't take the instance as its first parameter")

    annotations = evaluated_annotations(function) if inspect.isfunction(function) else {}
    shapes = []
    for param in params[1:]:
        if param.kind in _VARIADIC:
            raise SignatureUnsupported(f"{qualname} has a variadic parameter {param}, which can't be proxied")
        annotation = annotations.get(param.name, param.annotation)
        if annotation is inspect.Parameter.empty:
            annotation = typing.Any
        direction, semantic_type = parameter_direction(annotation)
        shapes.append(ParameterShape(param.name, semantic_type, direction, param.kind, param.default))

    return_annotation = annotations.get("return", typing.Any)

    type_parameters: list = []
    for shape in shapes:
        _collect_type_vars(shape.annotation, type_parameters)
    _collect_type_vars(return_annotation, type_parameters)
    class_parameters = getattr(declaring_type, "__parameters__", ())
    type_parameters = [t for t in type_parameters if t not in class_parameters]

    return MethodDescriptor(
        declaring_type=declaring_type,
        name=name,
        parameters=tuple(shapes),
        return_annotation=return_annotation,
        type_parameters=tuple(type_parameters),
        kind=kind,
        function=function,
    )


def describe_property(declaring_type: type, name: str, prop: property) -> list[MethodDescriptor]:
    descriptors = []
    if prop.fget is not None:
        getter = describe_method(declaring_type, prop.fget, name=name, kind=MemberKind.GETTER)
        if getter.parameters:
            raise SignatureUnsupported(f"Getter of {getter.qualname} takes parameters")
        descriptors.append(getter)
    if prop.fset is not None:
        setter = describe_method(declaring_type, prop.fset, name=name, kind=MemberKind.SETTER)
        if len(setter.parameters) != 1 or setter.parameters[0].is_by_ref:
            raise SignatureUnsupported(f"Setter of {setter.qualname} must take exactly one value")
        descriptors.append(dataclasses.replace(setter, return_annotation=None))
    return descriptors


def _describe_attribute(declaring_type: type, name: str, annotation) -> list[MethodDescriptor]:
    # a data member of a protocol (`value: str`) is proxied as a read/write property
    return [
        MethodDescriptor(declaring_type, name, (), annotation, kind=MemberKind.GETTER),
        MethodDescriptor(declaring_type, name, (ParameterShape("value", annotation),), None, kind=MemberKind.SETTER),
    ]


def _declared_members(klass: type) -> typing.Iterator[MethodDescriptor]:
    for name, value in klass.__dict__.items():
        if name in IGNORED_METHODS:
            continue
        if isinstance(value, (staticmethod, classmethod)):
            # not virtual: the proxy inherits these from its bases
            continue
        if isinstance(value, property):
            yield from describe_property(klass, name, value)
        elif inspect.isfunction(value):
            yield describe_method(klass, value, name=name)

    for name, annotation in evaluated_annotations(klass).items():
        if name.startswith("_") or name in klass.__dict__ and not _is_plain_value(klass.__dict__[name]):
            continue
        if typing_extensions.get_origin(annotation) is typing.ClassVar or annotation is typing.ClassVar:
            continue
        yield from _describe_attribute(klass, name, annotation)


def _is_plain_value(value) -> bool:
    return not (inspect.isfunction(value) or isinstance(value, (property, staticmethod, classmethod)))


def unalias(interface) -> tuple[type, dict]:
    """Split `Repository[int]` into `Repository` and its TypeVar bindings."""
    origin = typing_extensions.get_origin(interface)
    if isinstance(origin, type):
        return origin, dict(zip(getattr(origin, "__parameters__", ()), typing_extensions.get_args(interface)))
    if not isinstance(interface, type):
        raise SignatureUnsupported(f"{interface!r} is not a class and can't be proxied")
    return interface, {}


def _shape(descriptor: MethodDescriptor):
    return descriptor.parameters, descriptor.return_annotation


def collect_members(primary, interfaces: typing.Sequence = ()) -> list[MethodDescriptor]:
    """Collect every member the proxy of `primary` and `interfaces` has to implement.

    Members come in order: the primary type, the supplementary interfaces, then the identity
    members of `object`. Along each interface's MRO the most-derived declaration of a name wins.
    When two unrelated interfaces declare the same name, the earlier one wins, since a Python
    class has a single namespace for both.
    """
    seen: dict[tuple[str, MemberKind], tuple[MethodDescriptor, type]] = {}
    # methods and property accessors share one namespace
    categories: dict[str, tuple[bool, MethodDescriptor, type]] = {}
    members: list[MethodDescriptor] = []

    for interface in (primary, *interfaces):
        origin, bindings = unalias(interface)
        for klass in origin.__mro__:
            if klass in _SKIPPED_BASES:
                continue
            for descriptor in _declared_members(klass):
                if bindings:
                    descriptor = descriptor.bind_class_parameters(bindings)
                is_method = descriptor.kind is MemberKind.METHOD
                category = categories.setdefault(descriptor.name, (is_method, descriptor, origin))
                is_method_first, first, first_owner = category
                if is_method_first != is_method:
                    # an override along the same hierarchy replaces the base declaration quietly
                    if first_owner is not origin and klass not in first_owner.__mro__:
                        warnings.warn(f"{descriptor.qualname} is hidden by {first.qualname}")
                    continue

                key = (descriptor.name, descriptor.kind)
                if key not in seen:
                    seen[key] = (descriptor, origin)
                    members.append(descriptor)
                    continue
                previous, owner = seen[key]
                if owner is not origin and klass not in owner.__mro__ and _shape(previous) != _shape(descriptor):
                    warnings.warn(
                        f"{descriptor.qualname} is hidden by {previous.qualname}, which has a different signature"
                    )

    for name in IDENTITY_MEMBERS:
        if (name, MemberKind.METHOD) not in seen:
            members.append(describe_method(object, getattr(object, name), name=name))

    return members
