"""Source generation for thunks and proxy member bodies.

Every callable produced here starts life as a small piece of Python source, specialized to one
MethodDescriptor: argument slots are unpacked by index, checks are emitted only for annotations
that can be checked, and the target member is called by name. The source is compiled once, so a
call through a thunk costs about as much as the direct call plus a few index operations.
"""

import functools
import itertools
import linecache
import logging
import os
import typing

import typing_extensions

from ..annotations import Direction, Ref, format_annotation, type_checker
from ..descriptor import NO_VALUE, MemberKind, MethodDescriptor
from ..exceptions import SignatureUnsupported, TypeMismatch
from ..interception import INTERCEPTOR_ATTR, TARGET_ATTR, InvocationContext, missing_interceptor
from .signature_utils import PREFIX, call_arguments, check_names, parameter_list

logger = logging.getLogger(__name__)

_source_ids = itertools.count()

Thunk = typing.Callable[[typing.Any, list], typing.Any]


def _build_function(name: str, source: str, namespace: dict, label: str):
    filename = f"<interposer {label} #{next(_source_ids)}>"
    if os.getenv("INTERPOSER_KEEP_SOURCE", "1") != "0":
        # lets tracebacks and inspect.getsource() show the generated lines
        linecache.cache[filename] = (len(source), None, source.splitlines(keepends=True), filename)
    exec(compile(source, filename, "exec"), namespace)
    return namespace[name]


def _count_mismatch(descriptor: MethodDescriptor, arguments) -> typing.NoReturn:
    raise TypeMismatch(
        f"{descriptor.qualname} takes {len(descriptor.parameters)} argument slot(s), got {len(arguments)}",
        value=arguments,
    )


def _instance_mismatch(descriptor: MethodDescriptor, instance) -> typing.NoReturn:
    raise TypeMismatch(
        f"{descriptor.qualname} can't be called on an instance of {type(instance).__qualname__}",
        expected=descriptor.declaring_type,
        value=instance,
    )


def _argument_mismatch(descriptor: MethodDescriptor, index: int, value) -> typing.NoReturn:
    param = descriptor.parameters[index]
    raise TypeMismatch(
        f"Argument {param.name!r} of {descriptor.qualname} must be {format_annotation(param.annotation)}, "
        f"got {type(value).__qualname__}",
        expected=param.annotation,
        value=value,
    )


def _not_a_cell(descriptor: MethodDescriptor, index: int, value) -> typing.NoReturn:
    param = descriptor.parameters[index]
    raise TypeMismatch(
        f"Argument {param.name!r} of {descriptor.qualname} is passed by reference and must be a Ref cell, "
        f"got {type(value).__qualname__}",
        expected=Ref,
        value=value,
    )


def _return_mismatch(descriptor: MethodDescriptor, value) -> typing.NoReturn:
    raise TypeMismatch(
        f"Interceptor of {descriptor.qualname} must return {format_annotation(descriptor.return_annotation)}, "
        f"got {type(value).__qualname__}",
        expected=descriptor.return_annotation,
        value=value,
    )


def _instance_check(descriptor: MethodDescriptor, name: str) -> typing.Optional[str]:
    declaring_type = descriptor.declaring_type
    if declaring_type is object:
        return None
    if typing_extensions.is_protocol(declaring_type):
        # structural interfaces: all a direct call needs is the member itself
        return f"hasattr({name}, {descriptor.name!r})"
    return f"isinstance({name}, {PREFIX}declaring_type)"


def compile_thunk(descriptor: MethodDescriptor) -> Thunk:
    """
    Compile a thunk `thunk(instance, arguments) -> result` that calls `descriptor` directly.

    `arguments` holds one slot per parameter. In parameters are checked against their
    annotation and passed on. Out and by-ref parameters get a scratch `Ref` cell seeded from
    their slot, and the cell's final value is written back into the slot after the call.
    Void members return NO_VALUE.

    Args:
        descriptor: A non-generic or closed generic member

    Returns:
        The compiled thunk

    Raises:
        SignatureUnsupported: the descriptor is an open generic definition or has names that
            can't be emitted. Argument problems are only detected when the thunk is called,
            and raise TypeMismatch.
    """
    if descriptor.is_generic_definition:
        raise SignatureUnsupported(f"{descriptor} is an open generic method, specialize it first", method=descriptor)
    check_names(descriptor)

    namespace: dict[str, typing.Any] = {
        f"{PREFIX}declaring_type": descriptor.declaring_type,
        f"{PREFIX}Ref": Ref,
        f"{PREFIX}NO_VALUE": NO_VALUE,
        f"{PREFIX}count_mismatch": functools.partial(_count_mismatch, descriptor),
        f"{PREFIX}instance_mismatch": functools.partial(_instance_mismatch, descriptor),
        f"{PREFIX}argument_mismatch": functools.partial(_argument_mismatch, descriptor),
    }
    lines = [
        f"def {PREFIX}thunk({PREFIX}instance, {PREFIX}arguments):",
        f"    if len({PREFIX}arguments) != {len(descriptor.parameters)}:",
        f"        {PREFIX}count_mismatch({PREFIX}arguments)",
    ]
    instance_check = _instance_check(descriptor, f"{PREFIX}instance")
    if instance_check:
        lines.append(f"    if not {instance_check}:")
        lines.append(f"        {PREFIX}instance_mismatch({PREFIX}instance)")

    names = []
    for index, param in enumerate(descriptor.parameters):
        local = f"{PREFIX}{index}"
        names.append(local)
        if param.direction is Direction.IN:
            lines.append(f"    {local} = {PREFIX}arguments[{index}]")
            value = local
        else:
            # seeded even for pure out parameters, so every cell starts from its slot
            lines.append(f"    {local} = {PREFIX}Ref({PREFIX}arguments[{index}])")
            value = f"{local}.value"

        checker = type_checker(param.annotation)
        if checker is not None and param.direction is not Direction.OUT:
            namespace[f"{PREFIX}check_{index}"] = checker
            lines.append(f"    if not {PREFIX}check_{index}({value}):")
            lines.append(f"        {PREFIX}argument_mismatch({index}, {value})")

    member = f"{PREFIX}instance.{descriptor.name}"
    if descriptor.kind is MemberKind.GETTER:
        lines.append(f"    {PREFIX}result = {member}")
    elif descriptor.kind is MemberKind.SETTER:
        lines.append(f"    {member} = {names[0]}")
    elif descriptor.is_void:
        lines.append(f"    {member}({call_arguments(descriptor, names)})")
    else:
        lines.append(f"    {PREFIX}result = {member}({call_arguments(descriptor, names)})")

    for index, param in enumerate(descriptor.parameters):
        if param.is_by_ref:
            lines.append(f"    {PREFIX}arguments[{index}] = {PREFIX}{index}.value")

    if descriptor.is_void or descriptor.kind is MemberKind.SETTER:
        lines.append(f"    return {PREFIX}NO_VALUE")
    else:
        lines.append(f"    return {PREFIX}result")

    thunk = _build_function(f"{PREFIX}thunk", "\n".join(lines) + "\n", namespace, f"thunk {descriptor.qualname}")
    logger.debug("Compiled thunk for %s", descriptor)
    return thunk


def compile_intercepted_member(descriptor: MethodDescriptor, source):
    """
    Compile the body of an intercepted proxy member.

    The body reads the interceptor, copies its parameters into argument slots (the current
    contents of the caller's cells for out/by-ref parameters), hands an InvocationContext to
    `interceptor.invoke()`, copies out/by-ref slots back into the caller's cells and returns
    the interceptor's result checked against the declared return type.

    Args:
        descriptor: The member as declared by its interface
        source: For non-generic members, the ThunkCacheEntry the context proceeds through.
            For generic definitions, a SpecializationCache whose `resolve(arguments)` picks
            the specialization from the live arguments of each call.

    Returns:
        A function to be installed on the proxy type
    """
    check_names(descriptor)
    params, namespace = parameter_list(descriptor, f"{PREFIX}self")
    namespace.update(
        {
            f"{PREFIX}Ref": Ref,
            f"{PREFIX}InvocationContext": InvocationContext,
            f"{PREFIX}missing_interceptor": missing_interceptor,
            f"{PREFIX}not_a_cell": functools.partial(_not_a_cell, descriptor),
            f"{PREFIX}return_mismatch": functools.partial(_return_mismatch, descriptor),
        }
    )

    lines = [
        f"def {descriptor.name}({params}):",
        f"    {PREFIX}interceptor = {PREFIX}self.{INTERCEPTOR_ATTR}",
        f"    if {PREFIX}interceptor is None:",
        f"        {PREFIX}missing_interceptor({PREFIX}self)",
    ]
    slots = []
    for index, param in enumerate(descriptor.parameters):
        if param.is_by_ref:
            lines.append(f"    if not isinstance({param.name}, {PREFIX}Ref):")
            lines.append(f"        {PREFIX}not_a_cell({index}, {param.name})")
            slots.append(f"{param.name}.value")
        else:
            slots.append(param.name)
    lines.append(f"    {PREFIX}arguments = [{', '.join(slots)}]")

    if descriptor.is_generic_definition:
        namespace[f"{PREFIX}specializations"] = source
        lines.append(f"    {PREFIX}entry = {PREFIX}specializations.resolve({PREFIX}arguments)")
    else:
        namespace[f"{PREFIX}entry"] = source
    lines.append(
        f"    {PREFIX}result = {PREFIX}interceptor.invoke("
        f"{PREFIX}InvocationContext({PREFIX}entry, {PREFIX}self.{TARGET_ATTR}, {PREFIX}arguments))"
    )

    for index, param in enumerate(descriptor.parameters):
        if param.is_by_ref:
            lines.append(f"    {param.name}.value = {PREFIX}arguments[{index}]")

    if descriptor.is_void or descriptor.kind is MemberKind.SETTER:
        lines.append("    return None")
    else:
        if descriptor.is_generic_definition:
            # the return type depends on the specialization picked for this call
            lines.append(f"    {PREFIX}check_return = {PREFIX}entry.return_checker")
            lines.append(f"    if {PREFIX}check_return is not None and not {PREFIX}check_return({PREFIX}result):")
            namespace[f"{PREFIX}mismatch_for"] = _return_mismatch
            lines.append(f"        {PREFIX}mismatch_for({PREFIX}entry.descriptor, {PREFIX}result)")
        else:
            checker = type_checker(descriptor.return_annotation)
            if checker is not None:
                namespace[f"{PREFIX}check_return"] = checker
                lines.append(f"    if not {PREFIX}check_return({PREFIX}result):")
                lines.append(f"        {PREFIX}return_mismatch({PREFIX}result)")
        lines.append(f"    return {PREFIX}result")

    return _build_function(descriptor.name, "\n".join(lines) + "\n", namespace, f"intercepted {descriptor.qualname}")


def compile_pass_through_member(descriptor: MethodDescriptor):
    """Compile a proxy member that forwards straight to the target, without any interception."""
    check_names(descriptor)
    params, namespace = parameter_list(descriptor, f"{PREFIX}self")
    member = f"{PREFIX}self.{TARGET_ATTR}.{descriptor.name}"

    lines = [f"def {descriptor.name}({params}):"]
    if descriptor.kind is MemberKind.GETTER:
        lines.append(f"    return {member}")
    elif descriptor.kind is MemberKind.SETTER:
        lines.append(f"    {member} = {descriptor.parameters[0].name}")
    else:
        names = [param.name for param in descriptor.parameters]
        lines.append(f"    return {member}({call_arguments(descriptor, names)})")

    return _build_function(descriptor.name, "\n".join(lines) + "\n", namespace, f"pass-through {descriptor.qualname}")
