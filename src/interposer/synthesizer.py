import dataclasses
import enum
import functools
import logging
import os
import threading
import types
import typing

from .annotations import type_checker
from .codegen.compile import compile_intercepted_member, compile_pass_through_member
from .descriptor import MemberKind, MethodDescriptor, collect_members, unalias
from .exceptions import SignatureUnsupported, UnimplementedCapability
from .generics import SpecializationCache
from .interception import PRIMARY_TYPE_ATTR, RESERVED_NAMES, TARGET_CHECKER_ATTR, ProxyObject
from .thunks import ThunkCache, ThunkCacheEntry, default_thunk_cache

logger = logging.getLogger(__name__)

MethodFilter = typing.Callable[[MethodDescriptor], bool]


def default_method_filter(descriptor: MethodDescriptor) -> bool:
    """Intercept everything the interfaces declare. Members of `object` itself are left alone."""
    return descriptor.declaring_type is not object


@dataclasses.dataclass(frozen=True)
class ProxyDescriptor:
    """What a synthesized proxy type is memoized by."""

    primary: typing.Any
    interfaces: tuple
    method_filter: MethodFilter


class BuildState(enum.IntEnum):
    UNINITIALIZED = 0
    CONTEXT_BUILT = 1
    INTERFACE_CONTRACT_IMPLEMENTED = 2
    METHODS_IMPLEMENTED = 3
    FINALIZED = 4


@dataclasses.dataclass
class BuildContext:
    """All state of one proxy type under construction, handed from stage to stage."""

    key: ProxyDescriptor
    state: BuildState = BuildState.UNINITIALIZED
    name: str = ""
    members: list = dataclasses.field(default_factory=list)
    namespace: dict = dataclasses.field(default_factory=dict)
    taken_names: set = dataclasses.field(default_factory=set)
    # thunk cache entries created for this type, registered only once it is finalized
    new_entries: list = dataclasses.field(default_factory=list)
    proxy_type: typing.Optional[type] = None

    def advance(self, expected: BuildState, new: BuildState) -> None:
        if self.state is not expected:
            raise RuntimeError(f"Proxy build of {self.name or self.key.primary} is {self.state.name}, not {expected.name}")
        self.state = new

    def unique_member_name(self, name: str) -> str:
        """Returns `name`, or `name0`, `name1`, ... if something on the proxy already uses it."""
        candidate = name
        counter = 0
        while candidate in self.taken_names:
            candidate = f"{name}{counter}"
            counter += 1
        self.taken_names.add(candidate)
        return candidate


class ProxyBuilder:
    """Synthesizes proxy types implementing a primary interface plus any supplementary interfaces.

    Each member of the interfaces gets a generated body: intercepted members hand an
    InvocationContext to the proxy's interceptor, pass-through members call the target directly.
    The method filter decides which is which.
    """

    def __init__(self, cache_types: typing.Optional[bool] = None, thunk_cache: typing.Optional[ThunkCache] = None):
        if cache_types is None:
            cache_types = os.getenv("INTERPOSER_CACHE_TYPES", "1") != "0"
        self._cache_types = cache_types
        self._thunk_cache = thunk_cache if thunk_cache is not None else default_thunk_cache()
        self._types: dict[ProxyDescriptor, type] = {}
        self._types_lock = threading.Lock()

    @property
    def thunk_cache(self) -> ThunkCache:
        return self._thunk_cache

    def get_proxy_type(
        self,
        primary,
        interfaces: typing.Sequence = (),
        method_filter: typing.Optional[MethodFilter] = None,
        target_factory=None,
    ) -> type:
        """
        Get the proxy type for `primary` and `interfaces`.

        Args:
            primary: The interface the proxy type subclasses first, and its targets must conform to
            interfaces: Supplementary interfaces, added as further bases
            method_filter: `filter(descriptor) -> bool`, True for members to intercept
            target_factory: Reserved for proxies that create their target lazily

        Returns:
            A subclass of `primary`, `*interfaces` and ProxyObject

        Raises:
            SignatureUnsupported: some member can't be proxied
            UnimplementedCapability: a target factory was given
        """
        if target_factory is not None:
            raise UnimplementedCapability("Proxies with a lazily created target are not supported")
        key = ProxyDescriptor(primary, tuple(interfaces), method_filter or default_method_filter)
        if not self._cache_types:
            return self._build(key)

        proxy_type = self._types.get(key)
        if proxy_type is None:
            with self._types_lock:
                proxy_type = self._types.get(key)
                if proxy_type is None:
                    proxy_type = self._build(key)
                    self._types[key] = proxy_type
        return proxy_type

    def _build(self, key: ProxyDescriptor) -> type:
        context = BuildContext(key)
        self._build_context(context)
        self._implement_interface_contract(context)
        self._implement_methods(context)
        self._finalize(context)
        for entry in context.new_entries:
            self._thunk_cache.register(entry)
        logger.debug("Synthesized %s with %d member(s)", context.name, len(context.members))
        return context.proxy_type

    def _build_context(self, context: BuildContext) -> None:
        key = context.key
        origin, _ = unalias(key.primary)
        context.name = f"{origin.__name__}Proxy"
        context.members = collect_members(key.primary, key.interfaces)
        for descriptor in context.members:
            if descriptor.name in RESERVED_NAMES:
                raise SignatureUnsupported(
                    f"{descriptor.qualname} can't be proxied, the name is used by the proxy itself", method=descriptor
                )
        context.taken_names.update(RESERVED_NAMES)
        context.taken_names.update(descriptor.name for descriptor in context.members)
        context.advance(BuildState.UNINITIALIZED, BuildState.CONTEXT_BUILT)

    def _implement_interface_contract(self, context: BuildContext) -> None:
        primary = context.key.primary
        context.namespace.update(
            {
                "__init__": self._proxy_constructor(context),
                TARGET_CHECKER_ATTR: type_checker(primary),
                PRIMARY_TYPE_ATTR: primary,
            }
        )
        context.advance(BuildState.CONTEXT_BUILT, BuildState.INTERFACE_CONTRACT_IMPLEMENTED)

    def _proxy_constructor(self, context: BuildContext):
        """Returns a custom __init__ for the proxy type."""

        def my_init(self, target=None, interceptor=None):
            # through the descriptors, so a __setattr__ of the interface never sees these
            ProxyObject.proxy_target.__set__(self, target)
            ProxyObject.proxy_interceptor.__set__(self, interceptor)

        my_init.__qualname__ = f"{context.name}.__init__"
        return my_init

    def _implement_methods(self, context: BuildContext) -> None:
        method_filter = context.key.method_filter
        accessors: dict[str, dict[MemberKind, typing.Callable]] = {}

        for descriptor in context.members:
            intercepted = bool(method_filter(descriptor))
            if descriptor.declaring_type is object and not intercepted:
                # the proxy keeps its own identity
                continue
            if intercepted:
                function = self._intercepted_member(context, descriptor)
            else:
                function = compile_pass_through_member(descriptor)
            self._update_wrapper(function, descriptor, context)

            if descriptor.kind is MemberKind.METHOD:
                context.namespace[descriptor.name] = function
            else:
                accessors.setdefault(descriptor.name, {})[descriptor.kind] = function

        for name, functions in accessors.items():
            context.namespace[name] = property(functions.get(MemberKind.GETTER), functions.get(MemberKind.SETTER))

        if "__eq__" in context.namespace and "__hash__" not in context.namespace:
            # defining __eq__ alone would make the proxy unhashable
            context.namespace["__hash__"] = object.__hash__

        context.advance(BuildState.INTERFACE_CONTRACT_IMPLEMENTED, BuildState.METHODS_IMPLEMENTED)

    def _intercepted_member(self, context: BuildContext, descriptor: MethodDescriptor):
        if descriptor.is_generic_definition:
            source = SpecializationCache(descriptor)
            suffix = "specializations"
        else:
            source = self._thunk_cache.lookup(descriptor)
            if source is None:
                source = ThunkCacheEntry(descriptor)
                context.new_entries.append(source)
            suffix = "entry"
        if descriptor.kind is MemberKind.METHOD:
            attr = f"_{descriptor.name}_{suffix}"
        else:
            attr = f"_{descriptor.name}_{descriptor.kind.value}_{suffix}"
        # kept on the type for introspection, the generated body holds its own reference
        context.namespace[context.unique_member_name(attr)] = source
        return compile_intercepted_member(descriptor, source)

    def _update_wrapper(self, function, descriptor: MethodDescriptor, context: BuildContext) -> None:
        """Very similar to functools.update_wrapper"""
        if descriptor.function is not None:
            # no __dict__ update: it would copy __isabstractmethod__ over from the interface
            functools.update_wrapper(function, descriptor.function, updated=())
        function.__name__ = descriptor.name
        function.__qualname__ = f"{context.name}.{descriptor.name}"

    def _finalize(self, context: BuildContext) -> None:
        key = context.key
        origin, _ = unalias(key.primary)
        bases = _proxy_bases(key.primary, key.interfaces)
        namespace = context.namespace
        try:
            proxy_type = types.new_class(context.name, bases, exec_body=lambda ns: ns.update(namespace))
        except TypeError as exc:
            raise SignatureUnsupported(f"Can't combine {', '.join(map(repr, bases[:-1]))} in one proxy: {exc}") from exc
        proxy_type.__module__ = origin.__module__
        proxy_type.__doc__ = origin.__doc__
        context.proxy_type = proxy_type
        context.advance(BuildState.METHODS_IMPLEMENTED, BuildState.FINALIZED)


def _proxy_bases(primary, interfaces) -> tuple:
    bases = []
    origins = []
    for interface in (primary, *interfaces):
        origin, _ = unalias(interface)
        if origin in origins:
            continue
        bases.append(interface)
        origins.append(origin)
    # an interface that another one already extends is implemented through it
    kept = [
        base
        for base, origin in zip(bases, origins)
        if not any(other is not origin and origin in other.__mro__ for other in origins)
    ]
    return (*kept, ProxyObject)


_default_builder: typing.Optional[ProxyBuilder] = None
_default_builder_lock = threading.Lock()


def default_builder() -> ProxyBuilder:
    global _default_builder
    if _default_builder is None:
        with _default_builder_lock:
            if _default_builder is None:
                _default_builder = ProxyBuilder()
    return _default_builder
