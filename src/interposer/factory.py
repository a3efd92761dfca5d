import typing

from .synthesizer import MethodFilter, ProxyBuilder, default_builder


class ProxyFactory:
    """Creates proxy instances: the synthesized type for the interfaces, wired to a target and interceptor."""

    def __init__(self, builder: typing.Optional[ProxyBuilder] = None):
        self._builder = builder

    @property
    def builder(self) -> ProxyBuilder:
        return self._builder if self._builder is not None else default_builder()

    def get_proxy_type(
        self,
        primary,
        interfaces: typing.Sequence = (),
        method_filter: typing.Optional[MethodFilter] = None,
        target_factory=None,
    ) -> type:
        return self.builder.get_proxy_type(primary, interfaces, method_filter, target_factory=target_factory)

    def create_proxy(
        self,
        primary,
        interfaces: typing.Sequence = (),
        target=None,
        interceptor=None,
        method_filter: typing.Optional[MethodFilter] = None,
    ):
        """
        Create a proxy for `target` that implements `primary` and `interfaces`.

        Args:
            primary: The primary interface. `target` has to conform to it
            interfaces: Supplementary interfaces
            target: The object calls are ultimately routed to
            interceptor: Anything with an `invoke(context)` method; sees every intercepted call
            method_filter: `filter(descriptor) -> bool`, True for members to intercept.
                By default everything but the members of `object` is intercepted

        Returns:
            An instance of the proxy type

        Raises:
            SignatureUnsupported: some member of the interfaces can't be proxied
            TypeMismatch: `target` doesn't conform to `primary`
        """
        proxy_type = self.get_proxy_type(primary, interfaces, method_filter)
        return proxy_type(target, interceptor)


_default_factory = ProxyFactory()


def create_proxy(primary, interfaces=(), target=None, interceptor=None, method_filter=None):
    return _default_factory.create_proxy(primary, interfaces, target, interceptor, method_filter)


def get_proxy_type(primary, interfaces=(), method_filter=None, target_factory=None):
    return _default_factory.get_proxy_type(primary, interfaces, method_filter, target_factory=target_factory)
