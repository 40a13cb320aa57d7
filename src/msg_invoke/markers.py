"""Declarative tags for operations and their parameters.

Parameter tags go inside ``typing.Annotated``::

    def on_order(
            self,
            items: Annotated[list, Payload("items")],
            tenant: Annotated[str, Header("tenant-id")],
    ) -> Receipt: ...

Operation tags are decorators::

    @service_activator
    def handle(self, order: Order) -> Receipt: ...

    @default
    def anything_else(self) -> None: ...

    @use_expression_invoker(mode=EvaluatorMode.OFF)
    def legacy(self, payload) -> str: ...

Exports
-------
Payload, Payloads, Header, Headers
    Parameter tags.
Marker
    Operation tag used as the selection rule of a marker-filtered scan.
    Built-ins: ``service_activator``, ``transformer``, ``router``, ``splitter``.
default, use_expression_invoker
    Operation tags that change dispatch / invocation behaviour.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Optional, Union

from .core import EvaluatorMode

MARKERS_ATTR = "__msg_invoke_markers__"
DEFAULT_ATTR = "__msg_invoke_default__"
EXPRESSION_INVOKER_ATTR = "__msg_invoke_expression_invoker__"


# ─────────────────────────────────────────────────────────────────────────────
# Parameter tags
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Payload:
    """The payload, or a JMESPath *expression* evaluated against it.

    A qualified payload (``Payload("items")``) does not decide the dispatch
    key.
    """

    expression: Optional[str] = None


@dataclass(frozen=True)
class Payloads:
    """Payloads of every element of a batch.  Batch-capable engines only."""

    expression: Optional[str] = None


@dataclass(frozen=True)
class Header:
    """A single header.

    *name* defaults to the parameter name.  ``"order.id"`` reads header
    ``order`` and then the relative path ``id`` inside it.
    """

    name: Optional[str] = None
    required: bool = True


@dataclass(frozen=True)
class Headers:
    """The full header mapping."""


# ─────────────────────────────────────────────────────────────────────────────
# Operation tags
# ─────────────────────────────────────────────────────────────────────────────


class Marker:
    """Named operation tag.

    ::

        audited = Marker("audited")

        class Service:
            @audited
            def handle(self, payload: str) -> str: ...
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def __call__(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        setattr(fn, MARKERS_ATTR, markers_of(fn) | {self})
        return fn

    def __repr__(self) -> str:
        return f"Marker({self.name!r})"


service_activator = Marker("service_activator")
transformer = Marker("transformer")
router = Marker("router")
splitter = Marker("splitter")


def markers_of(fn: Any) -> FrozenSet[Marker]:
    """Markers attached to *fn* (bound methods see their function's tags)."""
    return frozenset(getattr(fn, MARKERS_ATTR, frozenset()))


def default(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Designate the operation used when no candidate matches the payload."""
    setattr(fn, DEFAULT_ATTR, True)
    return fn


def is_default(fn: Any) -> bool:
    return bool(getattr(fn, DEFAULT_ATTR, False))


@dataclass(frozen=True)
class ExpressionInvokerSettings:
    """Resolved ``@use_expression_invoker`` settings."""

    mode: Optional[EvaluatorMode] = None


def use_expression_invoker(
        obj: Any = None,
        *,
        mode: Union[EvaluatorMode, str, None] = None,
) -> Any:
    """Force expression-only invocation for a function or a whole class.

    Usable bare (``@use_expression_invoker``) or with a per-operation
    evaluator mode (``@use_expression_invoker(mode="off")``).
    """
    if isinstance(mode, str):
        mode = EvaluatorMode(mode.lower()) if mode else None
    settings = ExpressionInvokerSettings(mode)

    def decorate(target: Any) -> Any:
        setattr(target, EXPRESSION_INVOKER_ATTR, settings)
        return target

    if obj is not None:
        return decorate(obj)
    return decorate


def expression_invoker_of(fn: Any, owner: Optional[type] = None) -> Optional[ExpressionInvokerSettings]:
    """``@use_expression_invoker`` settings for *fn*, falling back to *owner*."""
    settings = getattr(fn, EXPRESSION_INVOKER_ATTR, None)
    if settings is None and owner is not None:
        settings = getattr(owner, EXPRESSION_INVOKER_ATTR, None)
    return settings
