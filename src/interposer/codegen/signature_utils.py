"""Utilities for emitting parameter lists and call expressions in generated source."""

import inspect
import typing

from ..descriptor import MethodDescriptor
from ..exceptions import SignatureUnsupported

# Every name the generated code introduces starts with this prefix
PREFIX = "_ip_"


def check_names(descriptor: MethodDescriptor) -> None:
    """Reject members whose names can't appear verbatim in generated source."""
    if not descriptor.name.isidentifier():
        raise SignatureUnsupported(f"{descriptor.name!r} is not a valid identifier", method=descriptor)
    for param in descriptor.parameters:
        if param.name.startswith(PREFIX):
            raise SignatureUnsupported(
                f"Parameter {param.name!r} of {descriptor.qualname} uses the reserved prefix {PREFIX!r}",
                method=descriptor,
            )


def parameter_list(descriptor: MethodDescriptor, self_name: str) -> tuple[str, dict[str, typing.Any]]:
    """
    Format the parameter list of a proxy member, keeping names, kinds and defaults.

    Args:
        descriptor: The member to format
        self_name: Name to use for the instance parameter

    Returns:
        Tuple of (parameter source, namespace entries holding the default values)
    """
    parts = [self_name]
    defaults: dict[str, typing.Any] = {}
    positional_only = False
    keyword_marker = False

    for index, param in enumerate(descriptor.parameters):
        if param.kind is inspect.Parameter.POSITIONAL_ONLY:
            positional_only = True
        elif positional_only:
            parts.append("/")
            positional_only = False
        if param.kind is inspect.Parameter.KEYWORD_ONLY and not keyword_marker:
            parts.append("*")
            keyword_marker = True

        if param.default is inspect.Parameter.empty:
            parts.append(param.name)
        else:
            default_name = f"{PREFIX}default_{index}"
            defaults[default_name] = param.default
            parts.append(f"{param.name}={default_name}")

    if positional_only:
        parts.append("/")
    return ", ".join(parts), defaults


def call_arguments(descriptor: MethodDescriptor, names: typing.Sequence[str]) -> str:
    """Format the arguments of a direct call, passing keyword-only parameters by keyword."""
    parts = []
    for param, name in zip(descriptor.parameters, names):
        if param.kind is inspect.Parameter.KEYWORD_ONLY:
            parts.append(f"{param.name}={name}")
        else:
            parts.append(name)
    return ", ".join(parts)
