import logging
import threading
import typing

from .annotations import type_checker
from .codegen.compile import Thunk, compile_thunk
from .descriptor import MethodDescriptor

logger = logging.getLogger(__name__)

T = typing.TypeVar("T")

_MISSING = object()


class Lazy(typing.Generic[T]):
    """A value computed on first use, at most once even when first used from several threads.

    If the computation raises, nothing is stored and the next use tries again.
    """

    __slots__ = ("_factory", "_value", "_lock")

    def __init__(self, factory: typing.Callable[[], T]):
        self._factory = factory
        self._value: typing.Any = _MISSING
        self._lock = threading.Lock()

    @property
    def is_evaluated(self) -> bool:
        return self._value is not _MISSING

    @property
    def value(self) -> T:
        value = self._value
        if value is _MISSING:
            with self._lock:
                value = self._value
                if value is _MISSING:
                    value = self._factory()
                    self._value = value
        return value


class ThunkCacheEntry:
    """A member and its thunk, compiled the first time someone proceeds through it."""

    def __init__(self, descriptor: MethodDescriptor):
        self.descriptor = descriptor
        self.return_checker = None if descriptor.is_void else type_checker(descriptor.return_annotation)
        # compile_thunk is resolved when the thunk is first needed, not when the entry is created
        self._thunk: Lazy[Thunk] = Lazy(lambda: compile_thunk(descriptor))

    @property
    def thunk(self) -> Thunk:
        return self._thunk.value

    @property
    def is_compiled(self) -> bool:
        return self._thunk.is_evaluated

    def __repr__(self):
        state = "compiled" if self.is_compiled else "pending"
        return f"{type(self).__name__}({self.descriptor}, {state})"


class ThunkCache:
    """Maps method identity to compiled thunks, creating each entry exactly once.

    Lookups of existing entries don't take the lock. A miss takes it, looks again, and only
    then creates the entry, so concurrent first uses of a member still share one entry (and
    therefore one compilation).
    """

    def __init__(self):
        self._entries: dict[MethodDescriptor, ThunkCacheEntry] = {}
        self._lock = threading.Lock()

    def entry(self, descriptor: MethodDescriptor) -> ThunkCacheEntry:
        entry = self._entries.get(descriptor)
        if entry is None:
            with self._lock:
                entry = self._entries.get(descriptor)
                if entry is None:
                    entry = ThunkCacheEntry(descriptor)
                    self._entries[descriptor] = entry
                    logger.debug("New thunk cache entry for %s", descriptor)
        return entry

    def lookup(self, descriptor: MethodDescriptor) -> typing.Optional[ThunkCacheEntry]:
        return self._entries.get(descriptor)

    def register(self, entry: ThunkCacheEntry) -> ThunkCacheEntry:
        """Add an entry created elsewhere. If the descriptor already has one, that one is kept and returned."""
        with self._lock:
            existing = self._entries.setdefault(entry.descriptor, entry)
        if existing is entry:
            logger.debug("New thunk cache entry for %s", entry.descriptor)
        return existing

    def get_or_compile(self, descriptor: MethodDescriptor) -> Thunk:
        return self.entry(descriptor).thunk

    def __contains__(self, descriptor) -> bool:
        return descriptor in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class MethodInvoker:
    """Invokes members through compiled thunks instead of generic reflection."""

    def __init__(self, cache: typing.Optional[ThunkCache] = None):
        self._cache = cache if cache is not None else ThunkCache()

    @property
    def cache(self) -> ThunkCache:
        return self._cache

    def invoke(self, descriptor: MethodDescriptor, instance, arguments: list):
        """Call `descriptor` on `instance`. Out/by-ref results are written back into `arguments`."""
        return self._cache.get_or_compile(descriptor)(instance, arguments)

    def create_delegate(self, descriptor: MethodDescriptor) -> Thunk:
        """Compile a fresh thunk for `descriptor`, bypassing the cache."""
        return compile_thunk(descriptor)


_default_invoker = MethodInvoker()


def default_thunk_cache() -> ThunkCache:
    return _default_invoker.cache


def invoke(descriptor: MethodDescriptor, instance, arguments: list):
    return _default_invoker.invoke(descriptor, instance, arguments)


def create_delegate(descriptor: MethodDescriptor) -> Thunk:
    return _default_invoker.create_delegate(descriptor)
