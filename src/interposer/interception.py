import typing

from .exceptions import ProxyError, TypeMismatch

# Instance storage of every proxy. Written through __dict__ so a __setattr__
# inherited from the primary type never sees them.
TARGET_ATTR = "_proxy_target"
INTERCEPTOR_ATTR = "_proxy_interceptor"
TARGET_CHECKER_ATTR = "_proxy_target_checker"
PRIMARY_TYPE_ATTR = "_proxy_primary_type"

RESERVED_NAMES = frozenset(
    ["proxy_target", "proxy_interceptor", TARGET_ATTR, INTERCEPTOR_ATTR, TARGET_CHECKER_ATTR, PRIMARY_TYPE_ATTR]
)


class InvocationContext:
    """Everything an interceptor gets to see about one intercepted call.

    `arguments` has one slot per declared parameter, out and by-ref ones included, and
    may be changed freely: the slots are what `proceed()` passes on, and the final
    contents of out/by-ref slots are written back into the caller's cells.
    """

    __slots__ = ("method", "target", "arguments", "_entry")

    def __init__(self, entry, target, arguments: list):
        self._entry = entry
        self.method = entry.descriptor
        self.target = target
        self.arguments = arguments

    def proceed(self):
        """Call the target method with the current argument slots and return its result.

        May be called any number of times. The first call on a given method compiles its thunk.
        """
        return self._entry.thunk(self.target, self.arguments)

    def __repr__(self):
        return f"InvocationContext({self.method}, arguments={self.arguments!r})"


@typing.runtime_checkable
class Interceptor(typing.Protocol):
    def invoke(self, context: InvocationContext) -> typing.Any: ...


class TransparentInterceptor:
    """Proceeds exactly once and returns the target's result unchanged."""

    def invoke(self, context: InvocationContext) -> typing.Any:
        return context.proceed()


class ProxyObject:
    """The capability shared by every synthesized proxy: access to its target and interceptor."""

    _proxy_target: typing.Any = None
    _proxy_interceptor: typing.Optional[Interceptor] = None
    _proxy_target_checker: typing.ClassVar[typing.Optional[typing.Callable[[typing.Any], bool]]] = None
    _proxy_primary_type: typing.ClassVar[typing.Any] = object

    @property
    def proxy_target(self) -> typing.Any:
        return self._proxy_target

    @proxy_target.setter
    def proxy_target(self, target) -> None:
        checker = type(self)._proxy_target_checker
        if target is not None and checker is not None and not checker(target):
            raise TypeMismatch(
                f"{target!r} can't be the target of {type(self).__name__}",
                expected=type(self)._proxy_primary_type,
                value=target,
            )
        self.__dict__[TARGET_ATTR] = target

    @property
    def proxy_interceptor(self) -> typing.Optional[Interceptor]:
        return self._proxy_interceptor

    @proxy_interceptor.setter
    def proxy_interceptor(self, interceptor: typing.Optional[Interceptor]) -> None:
        if interceptor is not None and not callable(getattr(interceptor, "invoke", None)):
            raise TypeMismatch(f"{interceptor!r} has no invoke() method", expected=Interceptor, value=interceptor)
        self.__dict__[INTERCEPTOR_ATTR] = interceptor


def is_proxy(obj) -> bool:
    return isinstance(obj, ProxyObject)


def missing_interceptor(proxy) -> typing.NoReturn:
    raise ProxyError(f"{type(proxy).__name__} has no interceptor to handle an intercepted call")
