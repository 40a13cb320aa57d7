"""``Candidate`` — one dispatchable operation with its binding plan.

A candidate is immutable except for three pieces of per-call state:

* the lazily compiled binding expression (compiled once, under the
  candidate's lock);
* ``failure_count`` — consecutive recoverable structured failures;
* ``expression_only`` — one-way switch to binding-expression invocation.
"""

from __future__ import annotations

import threading
from collections import abc
from typing import Any, Optional

from .binding import BindingExpressionGenerator
from .core import ArgumentRole, EvaluatorMode, ExpressionEvaluator, Role, Void
from .descriptors import ArgumentDescriptor, OperationDescriptor
from .errors import IneligibleOperationError

_PRIMARY_ROLES = frozenset({
    ArgumentRole.PAYLOAD,
    ArgumentRole.WHOLE_UNIT,
    ArgumentRole.MESSAGES,
    ArgumentRole.COLLECTION,
    ArgumentRole.ITERATOR,
})


def _is_primary(arg: ArgumentDescriptor) -> bool:
    return arg.role in _PRIMARY_ROLES and not arg.qualified


def _dispatch_key(arg: Optional[ArgumentDescriptor]) -> Any:
    if arg is None:
        return Void
    if arg.role is ArgumentRole.ITERATOR:
        return abc.Iterator
    if arg.role is ArgumentRole.UNQUALIFIED_MAP and arg.value_type is object:
        return abc.Mapping
    return arg.value_type


class Candidate:
    """See module docstring.

    Attributes:
        descriptor:            The operation's ``OperationDescriptor``.
        target:                Object the binding expression calls into.
        call_name:             Attribute name used by the binding expression.
        role:                  ``Role.PRIMARY`` or ``Role.FALLBACK``.
        primary:               The payload-determining argument, if any.
        dispatch_key:          Lookup key in the dispatch table.
        accepts_whole_message: The primary argument is the whole message.
        expression_text:       Binding expression source.
    """

    def __init__(
            self,
            descriptor: OperationDescriptor,
            *,
            target: Any,
            call_name: str,
            role: Role,
            primary: Optional[ArgumentDescriptor],
            expression_text: str,
    ) -> None:
        self.descriptor = descriptor
        self.target = target
        self.call_name = call_name
        self.role = role
        self.primary = primary
        self.dispatch_key = _dispatch_key(primary)
        self.accepts_whole_message = primary is not None and primary.role is ArgumentRole.WHOLE_UNIT
        self.expression_text = expression_text
        self.failure_count = 0
        self.expression_only = descriptor.expression_only
        self._compiled: Any = None
        self._lock = threading.Lock()

    @classmethod
    def from_operation(
            cls,
            descriptor: OperationDescriptor,
            *,
            target: Any,
            generator: BindingExpressionGenerator,
            call_name: Optional[str] = None,
            role: Role = Role.PRIMARY,
    ) -> 'Candidate':
        """Pick the primary argument, generate the binding expression.

        Raises ``IneligibleOperationError`` when two arguments both claim the
        payload.
        """
        primary: Optional[ArgumentDescriptor] = None
        for arg in descriptor.arguments:
            if not _is_primary(arg):
                continue
            if primary is not None:
                raise IneligibleOperationError(
                    f"Found more than one parameter type candidate: [{primary.name}] and [{arg.name}] "
                    f"in '{descriptor}' (ambiguous parameter type candidate)."
                )
            primary = arg
        if primary is None:
            primary = next((a for a in descriptor.arguments if a.role is ArgumentRole.UNQUALIFIED_MAP), None)

        call_name = call_name or descriptor.name
        return cls(
            descriptor,
            target=target,
            call_name=call_name,
            role=role,
            primary=primary,
            expression_text=generator.generate(descriptor, call_name),
        )

    # -- descriptor shortcuts -----------------------------------------------

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def function(self) -> Any:
        return self.descriptor.function

    @property
    def is_default(self) -> bool:
        return self.descriptor.is_default

    @property
    def evaluator_mode(self) -> Optional[EvaluatorMode]:
        return self.descriptor.evaluator_mode

    # -- per-call state -----------------------------------------------------

    @property
    def compiled(self) -> bool:
        return self._compiled is not None

    def compiled_expression(self, evaluator: ExpressionEvaluator) -> Any:
        """Compile the binding expression on first use; later callers (and
        racing callers) get the same compiled object."""
        compiled = self._compiled
        if compiled is None:
            with self._lock:
                if self._compiled is None:
                    self._compiled = evaluator.compile(self.expression_text, self.evaluator_mode)
                compiled = self._compiled
        return compiled

    def record_failure(self, threshold: int) -> bool:
        """Count a recoverable structured failure.  Returns ``True`` exactly
        once: on the call that switches the candidate to expression-only."""
        with self._lock:
            self.failure_count += 1
            if not self.expression_only and self.failure_count >= threshold:
                self.expression_only = True
                return True
        return False

    def record_success(self) -> None:
        self.failure_count = 0

    def __str__(self) -> str:
        return str(self.descriptor)

    def __repr__(self) -> str:
        key = getattr(self.dispatch_key, "__qualname__", repr(self.dispatch_key))
        return f"Candidate({self.descriptor}, key={key}, role={self.role.value})"
