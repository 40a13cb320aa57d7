"""Candidate discovery: from a target and a selection rule to a ``DispatchTable``.

Selection rules (exactly one applies):

* ``method=`` — an explicit callable; the table holds that single candidate.
* ``method_name=`` — operations with that name.
* ``marker=`` — marked operations are *primary* candidates, other eligible
  operations are *fallback* candidates.  Without a marker every eligible
  operation is primary.

Primary duplicates fail the build at once.  Fallback duplicates are recorded
and only matter when no primary candidate exists, in which case the
``RescuePolicy`` may still turn the target into a single-candidate table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, List, Optional, Tuple

from .binding import BindingExpressionGenerator
from .candidates import Candidate
from .core import OperationSource, RequestReplyExchanger, Role
from .descriptors import capability_surface, target_class
from .errors import (
    DispatchConfigurationError, DuplicateDefaultError, IneligibleOperationError,
    NoEligibleOperationsError,
)
from .markers import Marker, markers_of, service_activator
from .matchers import is_subclass
from .table import DispatchTable, Tier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RescuePolicy:
    """When fallback candidates are ambiguous, use a single exchange-style
    operation instead.

    Applies when the scan's marker is one of *markers* and the target (or its
    declared capability surface) implements *capability*, whose *operation*
    takes exactly one argument.
    """

    markers: FrozenSet[Marker] = field(default_factory=lambda: frozenset({service_activator}))
    capability: type = RequestReplyExchanger
    operation: str = "exchange"

    def applies(self, marker: Optional[Marker]) -> bool:
        return marker is not None and marker in self.markers

    def implemented_by(self, target: Any) -> bool:
        declared = [c for c in capability_surface(target) if is_subclass(c, self.capability)]
        return is_subclass(target_class(target), self.capability) or len(declared) == 1


class CandidateBuilder:
    """Build the ``DispatchTable`` of a target.

    Args:
        operation_source: Enumerates and describes the target's operations.
        generator:        Binding expression generator.
        requires_reply:   Skip (or, when explicitly selected, reject)
                          operations annotated ``-> None``.
        rescue_policy:    ``None`` → ``RescuePolicy()``.
    """

    def __init__(
            self,
            *,
            operation_source: OperationSource,
            generator: BindingExpressionGenerator,
            requires_reply: bool = False,
            rescue_policy: Optional[RescuePolicy] = None,
    ) -> None:
        self.source = operation_source
        self.generator = generator
        self.requires_reply = requires_reply
        self.rescue_policy = rescue_policy or RescuePolicy()

    def build(
            self,
            target: Any,
            *,
            method: Optional[Callable[..., Any]] = None,
            method_name: Optional[str] = None,
            marker: Optional[Marker] = None,
    ) -> DispatchTable:
        if method is not None:
            return DispatchTable.for_single(self._explicit(target, method))

        primary, fallback = Tier(Role.PRIMARY), Tier(Role.FALLBACK)
        default: Optional[Candidate] = None
        skipped: Optional[IneligibleOperationError] = None

        operations = self.source.operations(
            target, method_name=method_name, marker=marker, requires_reply=self.requires_reply,
        )
        for name, function in operations:
            selected = marker is None or marker in markers_of(function)
            try:
                candidate = self._candidate(
                    target, name, function, role=Role.PRIMARY if selected else Role.FALLBACK,
                )
            except IneligibleOperationError as exc:
                if method_name is not None or (marker is not None and selected):
                    raise
                logger.debug("Skipping ineligible operation '%s' of %s: %s", name, _describe(target), exc)
                skipped = exc
                continue
            if candidate.is_default:
                if default is not None:
                    raise DuplicateDefaultError(
                        f"Only one operation can be marked default, but there are more for: {_describe(target)}"
                    )
                default = candidate
            (primary if selected else fallback).add(candidate, eager=selected)

        if not primary and not fallback:
            for candidate in self._declared(target, method_name):
                primary.add(candidate, eager=True)

        if not primary and not fallback:
            raise NoEligibleOperationsError(
                f"Target object of type [{target_class(target).__qualname__}] has no eligible operations "
                f"for handling messages."
            ) from skipped

        if primary:
            return DispatchTable.from_tier(primary, default)

        table = DispatchTable.from_tier(fallback, default)
        if table.ambiguity is not None and self.rescue_policy.applies(marker):
            rescued = self._rescue(target)
            if rescued is not None:
                logger.debug("Ambiguous fallback operations of %s; using '%s'", _describe(target), rescued)
                return DispatchTable.for_single(rescued)
        return table

    # -- helpers ------------------------------------------------------------

    def _candidate(
            self,
            target: Any,
            name: str,
            function: Callable[..., Any],
            *,
            role: Role = Role.PRIMARY,
            declared: Optional[Callable[..., Any]] = None,
    ) -> Candidate:
        call_target, call_name = _call_site(target, name, function)
        if declared is not None:
            descriptor = self.source.describe(name, function, declared)
        else:
            descriptor = self.source.describe(name, function)
        return Candidate.from_operation(
            descriptor, target=call_target, generator=self.generator, call_name=call_name, role=role,
        )

    def _explicit(self, target: Any, method: Callable[..., Any]) -> Candidate:
        if not callable(method):
            raise DispatchConfigurationError(f"{method!r} is not callable")
        candidate = self._candidate(target, getattr(method, "__name__", "__call__"), method)
        if self.requires_reply and not candidate.descriptor.returns_value:
            raise IneligibleOperationError(f"The operation '{candidate}' must have a return type")
        return candidate

    def _declared(self, target: Any, method_name: Optional[str]) -> List[Candidate]:
        declared_operations = getattr(self.source, "declared_operations", None)
        if declared_operations is None:
            return []
        found = declared_operations(target, method_name)
        if len(found) > 1:
            raise DispatchConfigurationError(
                f"Ambiguous operation '{method_name}' on the capability surface of {_describe(target)}"
            )
        return [self._candidate(target, name, fn, declared=decl) for name, fn, decl in found]

    def _rescue(self, target: Any) -> Optional[Candidate]:
        policy = self.rescue_policy
        if not policy.implemented_by(target):
            return None
        function = getattr(target, policy.operation, None)
        if not callable(function):
            return None
        try:
            candidate = self._candidate(target, policy.operation, function)
        except IneligibleOperationError as exc:
            logger.debug("Rescue operation '%s' is not eligible: %s", policy.operation, exc)
            return None
        if len(candidate.descriptor.arguments) != 1:
            return None
        candidate.dispatch_key = object
        return candidate


def _call_site(target: Any, name: str, function: Callable[..., Any]) -> Tuple[Any, str]:
    """Object and attribute the binding expression uses to reach *function*."""
    if getattr(target, name, None) == function:
        return target, name
    return function, "__call__"


def _describe(target: Any) -> str:
    cls = target_class(target)
    return f"{cls.__module__}.{cls.__qualname__}"
