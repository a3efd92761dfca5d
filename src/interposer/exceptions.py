class ProxyError(Exception):
    """Base class for everything interposer raises on its own behalf.

    Exceptions raised by targets and interceptors are never wrapped in this."""


class SignatureUnsupported(ProxyError, TypeError):
    """A method shape that can't be turned into a thunk or a proxy member.

    Raised while compiling or synthesizing, never during a call. The attempt that
    raised it leaves no trace in any cache."""

    def __init__(self, message, method=None):
        super().__init__(message)
        self.method = method


class TypeMismatch(ProxyError, TypeError):
    """An argument, target or return value doesn't fit the declared type."""

    def __init__(self, message, expected=None, value=None):
        super().__init__(message)
        self.expected = expected
        self.value = value


class UnimplementedCapability(ProxyError, NotImplementedError):
    pass
