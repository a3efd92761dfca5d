import concurrent.futures
import threading

import pytest

from interposer import MethodInvoker
from interposer.descriptor import describe_method
from interposer.thunks import Lazy, ThunkCache


class Greeter:
    def greet(self, name: str) -> str:
        return f"hello {name}"

    def shout(self, name: str) -> str:
        return f"HELLO {name.upper()}"


GREET = describe_method(Greeter, Greeter.greet)
SHOUT = describe_method(Greeter, Greeter.shout)


def test_entries_are_shared(thunk_cache):
    entry = thunk_cache.entry(GREET)
    assert thunk_cache.entry(describe_method(Greeter, Greeter.greet)) is entry
    assert thunk_cache.entry(SHOUT) is not entry
    assert len(thunk_cache) == 2
    assert GREET in thunk_cache


def test_entry_compiles_lazily(thunk_cache, compile_counter):
    entry = thunk_cache.entry(GREET)
    assert not entry.is_compiled
    assert compile_counter == []

    assert entry.thunk(Greeter(), ["bob"]) == "hello bob"
    assert entry.is_compiled
    assert entry.thunk is thunk_cache.get_or_compile(GREET)
    assert compile_counter == [GREET]


def test_concurrent_first_use_compiles_once(thunk_cache, compile_counter):
    # Make sure there's no race condition when many threads hit a cold entry
    with concurrent.futures.ThreadPoolExecutor(max_workers=16) as executor:
        thunks = list(executor.map(lambda i: thunk_cache.get_or_compile(GREET), range(1000)))

    assert len(set(thunks)) == 1
    assert compile_counter == [GREET]
    assert thunks[0](Greeter(), ["x"]) == "hello x"


def test_failed_compilation_is_not_cached(thunk_cache, monkeypatch):
    import interposer.thunks

    original = interposer.thunks.compile_thunk
    attempts = []

    def flaky_compile_thunk(descriptor):
        attempts.append(descriptor)
        if len(attempts) == 1:
            raise RuntimeError("first attempt fails")
        return original(descriptor)

    monkeypatch.setattr(interposer.thunks, "compile_thunk", flaky_compile_thunk)

    entry = thunk_cache.entry(GREET)
    with pytest.raises(RuntimeError):
        entry.thunk
    assert not entry.is_compiled
    assert entry.thunk(Greeter(), ["again"]) == "hello again"
    assert len(attempts) == 2


def test_clear(thunk_cache):
    thunk_cache.get_or_compile(GREET)
    thunk_cache.clear()
    assert len(thunk_cache) == 0
    assert GREET not in thunk_cache


def test_lazy_evaluates_once():
    calls = []
    barrier = threading.Barrier(8)

    def compute():
        calls.append(1)
        return object()

    lazy = Lazy(compute)

    def use(_):
        barrier.wait()
        return lazy.value

    with concurrent.futures.ThreadPoolExecutor(max_workers=8) as executor:
        values = list(executor.map(use, range(8)))

    assert len(set(map(id, values))) == 1
    assert calls == [1]
    assert lazy.is_evaluated


def test_method_invoker(thunk_cache, compile_counter):
    invoker = MethodInvoker(thunk_cache)
    greeter = Greeter()
    assert invoker.invoke(GREET, greeter, ["a"]) == "hello a"
    assert invoker.invoke(GREET, greeter, ["b"]) == "hello b"
    assert compile_counter == [GREET]

    delegate = invoker.create_delegate(SHOUT)
    assert delegate(greeter, ["c"]) == "HELLO C"
    assert invoker.create_delegate(SHOUT) is not delegate
    assert len(compile_counter) == 3
    assert SHOUT not in invoker.cache
