import logging
import threading
import typing

from .annotations import Direction
from .descriptor import MethodDescriptor
from .exceptions import SignatureUnsupported
from .thunks import ThunkCacheEntry

logger = logging.getLogger(__name__)


class Specialization(ThunkCacheEntry):
    """A generic method closed over concrete type arguments, with its own lazily compiled thunk."""

    def __init__(self, type_arguments: tuple, descriptor: MethodDescriptor):
        super().__init__(descriptor)
        self.type_arguments = type_arguments


def infer_type_arguments(descriptor: MethodDescriptor, arguments: typing.Sequence) -> tuple:
    """Pick the type arguments of a generic call from the runtime types of its arguments.

    Each type parameter is bound to the type of the first argument declared exactly as that
    parameter (`value: T` or `value: Ref[T]`). Out parameters carry no incoming value and are
    skipped. A type parameter no argument pins down falls back to its bound, or `object`.
    """
    inferred = []
    for type_parameter in descriptor.type_parameters:
        for param, value in zip(descriptor.parameters, arguments):
            if param.annotation is type_parameter and param.direction is not Direction.OUT:
                inferred.append(type(value))
                break
        else:
            bound = type_parameter.__bound__
            inferred.append(bound if isinstance(bound, type) else object)
    return tuple(inferred)


class SpecializationCache:
    """Per generic method definition: type arguments -> Specialization.

    Like ThunkCache, entries are read without locking and created under the lock after a
    second look. A specialization's thunk is only compiled when something proceeds through it.
    """

    def __init__(self, descriptor: MethodDescriptor):
        if not descriptor.is_generic_definition:
            raise SignatureUnsupported(f"{descriptor} is not an open generic method", method=descriptor)
        self.descriptor = descriptor
        self._specializations: dict[tuple, Specialization] = {}
        self._lock = threading.Lock()

    def get_or_create(self, type_arguments: typing.Sequence) -> Specialization:
        type_arguments = tuple(type_arguments)
        specialization = self._specializations.get(type_arguments)
        if specialization is None:
            with self._lock:
                specialization = self._specializations.get(type_arguments)
                if specialization is None:
                    # raises on arity mismatch, before anything is stored
                    closed = self.descriptor.specialize(type_arguments)
                    specialization = Specialization(type_arguments, closed)
                    self._specializations[type_arguments] = specialization
                    logger.debug("New specialization %s", closed)
        return specialization

    def resolve(self, arguments: typing.Sequence) -> Specialization:
        return self.get_or_create(infer_type_arguments(self.descriptor, arguments))

    def __len__(self) -> int:
        return len(self._specializations)

    def __repr__(self):
        return f"SpecializationCache({self.descriptor}, {len(self)} specialization(s))"
