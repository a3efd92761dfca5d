# Annotation helpers: by-reference cells, parameter directions, TypeVar substitution
# and the runtime checks behind TypeMismatch.
import enum
import inspect
import logging
import sys
import types
import typing

import typing_extensions

logger = logging.getLogger(__name__)

T = typing.TypeVar("T")

_UNION_ORIGINS = (typing.Union, types.UnionType)
_UNCHECKED = (typing.Any, typing_extensions.Any, object, inspect.Parameter.empty)


class Ref(typing.Generic[T]):
    """A mutable cell used to pass a value by reference.

    Annotate a parameter as `Ref[T]` when the callee reads and writes it, or as `Out[T]`
    when it only writes it. Callers pass a cell and read `cell.value` after the call:

    ```python
    class Parser(typing.Protocol):
        def try_parse(self, text: str, result: Out[int]) -> bool: ...

    result = Ref()
    if parser.try_parse("42", result):
        print(result.value)
    ```
    """

    __slots__ = ("value",)

    def __init__(self, value: typing.Any = None):
        self.value = value

    def __repr__(self):
        return f"{type(self).__name__}({self.value!r})"


class Out(Ref[T]):
    """Marks a by-reference parameter whose incoming value the callee must not rely on."""

    __slots__ = ()


class Direction(enum.Enum):
    IN = "in"
    OUT = "out"
    BY_REF = "by-ref"


def parameter_direction(annotation) -> tuple[Direction, typing.Any]:
    """Split a parameter annotation into its direction and the type of the value it carries."""
    origin = typing_extensions.get_origin(annotation)
    if annotation is Out or origin is Out:
        direction = Direction.OUT
    elif annotation is Ref or origin is Ref:
        direction = Direction.BY_REF
    else:
        return Direction.IN, annotation

    args = typing_extensions.get_args(annotation)
    return direction, args[0] if args else typing.Any


def evaluated_annotations(obj) -> dict[str, typing.Any]:
    """Annotations of a function or class with string annotations evaluated."""
    # evaluate string annotations one by one, so a single unresolvable
    # forward reference (e.g. behind TYPE_CHECKING) doesn't disable every check
    raw = inspect.get_annotations(obj)
    globals_ = getattr(obj, "__globals__", None)
    if globals_ is None:
        module = sys.modules.get(getattr(obj, "__module__", None) or "")
        globals_ = vars(module) if module is not None else {}
    locals_ = dict(vars(obj)) if isinstance(obj, type) else None

    result = {}
    for name, annotation in raw.items():
        if isinstance(annotation, str):
            try:
                annotation = eval(annotation, globals_, locals_)
            except NameError as exc:
                logger.warning(
                    "Could not evaluate annotation %r of %s (%s), it will not be checked",
                    annotation,
                    getattr(obj, "__qualname__", obj),
                    exc,
                )
        result[name] = annotation
    return result


def substitute(annotation, bindings: typing.Mapping[typing.TypeVar, typing.Any]):
    """Replace the TypeVars in `annotation` that have an entry in `bindings`."""
    if not bindings:
        return annotation
    if isinstance(annotation, typing.TypeVar):
        return bindings.get(annotation, annotation)

    origin = typing_extensions.get_origin(annotation)
    if origin is None:
        return annotation
    if origin in _UNION_ORIGINS:
        return typing.Union[tuple(substitute(arg, bindings) for arg in typing_extensions.get_args(annotation))]

    parameters = getattr(annotation, "__parameters__", ())
    if not any(p in bindings for p in parameters):
        return annotation
    return annotation[tuple(bindings.get(p, p) for p in parameters)]


def format_annotation(annotation) -> str:
    if isinstance(annotation, typing.ForwardRef):
        return annotation.__forward_arg__
    return inspect.formatannotation(annotation)


def _protocol_checker(protocol):
    members = frozenset(typing_extensions.get_protocol_members(protocol))
    return lambda value: all(hasattr(value, member) for member in members)


def type_checker(annotation) -> typing.Optional[typing.Callable[[typing.Any], bool]]:
    """Build a predicate telling whether a value fits `annotation`.

    Returns None when the annotation can't be checked at run time (or accepts
    anything), so generated code can skip the check altogether.
    """
    if any(annotation is unchecked for unchecked in _UNCHECKED):
        return None
    if isinstance(annotation, (str, typing.ForwardRef)):
        return None
    if isinstance(annotation, typing.TypeVar):
        if annotation.__bound__ is not None:
            return type_checker(annotation.__bound__)
        if annotation.__constraints__:
            return type_checker(typing.Union[annotation.__constraints__])
        return None
    if annotation is None or annotation is type(None):
        return lambda value: value is None
    if isinstance(annotation, typing.NewType):
        return type_checker(annotation.__supertype__)

    # numeric tower, as type checkers see it
    if annotation is float:
        return lambda value: isinstance(value, (int, float))
    if annotation is complex:
        return lambda value: isinstance(value, (int, float, complex))

    origin = typing_extensions.get_origin(annotation)
    if origin in _UNION_ORIGINS:
        checkers = [type_checker(arg) for arg in typing_extensions.get_args(annotation)]
        if any(checker is None for checker in checkers):
            return None
        return lambda value: any(checker(value) for checker in checkers)
    if origin is typing_extensions.Literal:
        allowed = typing_extensions.get_args(annotation)
        return lambda value: any(value == option and type(value) is type(option) for option in allowed)
    if origin is typing_extensions.Annotated:
        return type_checker(typing_extensions.get_args(annotation)[0])
    if origin is not None:
        # parameterized generics are only checked against their origin
        if not isinstance(origin, type):
            return None
        annotation = origin

    if isinstance(annotation, type):
        if typing_extensions.is_protocol(annotation):
            return _protocol_checker(annotation)
        return lambda value: isinstance(value, annotation)
    return None


def conforms(obj, interface) -> bool:
    """True if `obj` can stand in for `interface`, nominally or (for protocols) structurally."""
    checker = type_checker(interface)
    return checker is None or checker(obj)
