import pytest

from interposer import ProxyBuilder, ProxyFactory
from interposer.thunks import ThunkCache


class RecordingInterceptor:
    def __init__(self, proceed=True):
        self.calls = []
        self._proceed = proceed

    def invoke(self, context):
        self.calls.append((context.method.name, list(context.arguments)))
        if self._proceed:
            return context.proceed()


@pytest.fixture()
def recorder():
    return RecordingInterceptor()


@pytest.fixture()
def thunk_cache():
    return ThunkCache()


@pytest.fixture()
def factory(thunk_cache):
    # fresh caches, so compile counts don't depend on what other tests built
    return ProxyFactory(ProxyBuilder(cache_types=True, thunk_cache=thunk_cache))


@pytest.fixture()
def compile_counter(monkeypatch):
    import interposer.thunks

    compiled = []
    original = interposer.thunks.compile_thunk

    def counting_compile_thunk(descriptor):
        compiled.append(descriptor)
        return original(descriptor)

    monkeypatch.setattr(interposer.thunks, "compile_thunk", counting_compile_thunk)
    return compiled
