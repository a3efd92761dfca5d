from .annotations import Out, Ref, conforms
from .descriptor import NO_VALUE, MethodDescriptor, describe_method
from .exceptions import ProxyError, SignatureUnsupported, TypeMismatch, UnimplementedCapability
from .factory import ProxyFactory, create_proxy, get_proxy_type
from .interception import Interceptor, InvocationContext, ProxyObject, TransparentInterceptor, is_proxy
from .synthesizer import ProxyBuilder
from .thunks import MethodInvoker, create_delegate, invoke

__all__ = [
    "NO_VALUE",
    "Interceptor",
    "InvocationContext",
    "MethodDescriptor",
    "MethodInvoker",
    "Out",
    "ProxyBuilder",
    "ProxyError",
    "ProxyFactory",
    "ProxyObject",
    "Ref",
    "SignatureUnsupported",
    "TransparentInterceptor",
    "TypeMismatch",
    "UnimplementedCapability",
    "conforms",
    "create_delegate",
    "create_proxy",
    "describe_method",
    "get_proxy_type",
    "invoke",
    "is_proxy",
]
