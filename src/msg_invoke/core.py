"""Core abstractions, shared types, and the parameter-role registry.

This module owns every *interface* in the system.  Nothing here depends on a
concrete implementation — the concrete classes live in ``descriptors``,
``binding``, ``discovery``, ``resolver``, ``invokers``, ``evaluators`` and
``converters``, and are assembled by ``factory``.

Execution flow (``InvocationEngine.process`` entry point)::

    message
      │
      ▼
    IncomingUnit.of(message)                  ← fresh per call
      │
      ▼
    Resolver.resolve(unit) → Candidate        ← nearest-supertype match
      │
      ├─ candidate.expression_only ──────────────────────────┐
      ▼                                                      │
    StructuredInvoker.invoke(candidate, unit)                │
      │  recoverable failure → candidate.record_failure()    │
      ▼                                                      ▼
    ExpressionInvoker.invoke(candidate, unit)  ← compiled binding expression
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any, Callable, Generic, Iterable, List, Mapping, Optional, Tuple, TypeVar,
    TYPE_CHECKING,
)

from .errors import InvalidUnitError

if TYPE_CHECKING:
    from .candidates import Candidate
    from .descriptors import OperationDescriptor
    from .markers import Marker

T = TypeVar("T")

#: Header carrying the payload's media type (used by JSON auto-conversion).
CONTENT_TYPE = "content_type"

_MISSING = object()


# ─────────────────────────────────────────────────────────────────────────────
# Enumerations
# ─────────────────────────────────────────────────────────────────────────────


class ArgumentRole(enum.Enum):
    """How a single parameter is fed from the incoming unit."""

    PAYLOAD = "payload"
    WHOLE_UNIT = "message"
    MESSAGES = "messages"
    COLLECTION = "collection"
    ITERATOR = "iterator"
    HEADER_MAP = "headers"
    HEADER_NAMED = "header"
    UNQUALIFIED_MAP = "map"


class Role(enum.Enum):
    """Tier of a candidate: selected by the marker filter, or merely eligible."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


class EvaluatorMode(enum.Enum):
    """How the expression evaluator treats a compiled binding expression.

    * ``OFF``       – re-parse on every evaluation.
    * ``IMMEDIATE`` – parse once, at compile time.
    * ``MIXED``     – interpret the first evaluation, cache the parsed form.
    """

    OFF = "off"
    IMMEDIATE = "immediate"
    MIXED = "mixed"


class Void:
    """Dispatch key of operations that declare no payload argument."""


# ─────────────────────────────────────────────────────────────────────────────
# Message / IncomingUnit
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Message(Generic[T]):
    """A payload plus its headers.

    ``Message[Order]`` in a parameter annotation means "the whole message,
    dispatched on payload type ``Order``".
    """

    payload: T
    headers: Mapping[str, Any] = field(default_factory=dict)

    def with_payload(self, payload: Any) -> 'Message[Any]':
        """Return a copy carrying *payload* and the same headers."""
        return Message(payload, self.headers)


class IncomingUnit:
    """Per-call view over either one message or a batch with shared headers.

    Constructed fresh for every invocation and never shared between calls.
    The only mutation is ``substitute_payload`` (JSON auto-conversion).
    """

    __slots__ = ("_message", "_payload", "_headers", "_messages", "_synthetic")

    def __init__(
            self,
            *,
            message: Optional[Message[Any]] = None,
            messages: Optional[Iterable[Any]] = None,
            headers: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if message is not None:
            self._message: Optional[Message[Any]] = message
            self._payload: Any = message.payload
            self._headers: Mapping[str, Any] = message.headers
            self._messages: Optional[List[Any]] = None
        else:
            if messages is None:
                raise ValueError("either 'message' or 'messages' is required")
            self._message = None
            self._payload = _MISSING
            self._headers = dict(headers or {})
            self._messages = list(messages)
        self._synthetic: Optional[Message[Any]] = None

    @classmethod
    def of(cls, message: Message[Any]) -> 'IncomingUnit':
        return cls(message=message)

    @classmethod
    def batch(cls, messages: Iterable[Any], headers: Optional[Mapping[str, Any]] = None) -> 'IncomingUnit':
        return cls(messages=messages, headers=headers)

    # -- accessors ----------------------------------------------------------

    @property
    def is_batch(self) -> bool:
        return self._messages is not None

    @property
    def payload(self) -> Any:
        if self._payload is _MISSING:
            raise InvalidUnitError(
                "Invalid method parameter for payload: was expecting a single payload, got a batch."
            )
        return self._payload

    @property
    def messages(self) -> List[Any]:
        if self._messages is None:
            raise InvalidUnitError(
                "Invalid method parameter for messages: was expecting a batch, got a single payload."
            )
        return self._messages

    @property
    def headers(self) -> Mapping[str, Any]:
        return self._headers

    @property
    def message(self) -> Message[Any]:
        """The whole unit.  A batch is presented as one message whose payload
        is the list of batch elements, carrying the shared headers."""
        if self._message is not None:
            return self._message
        if self._synthetic is None:
            self._synthetic = Message(list(self._messages or ()), self._headers)
        return self._synthetic

    def payloads(self) -> List[Any]:
        """Payload of every batch element (raw elements are taken as-is)."""
        return [m.payload if isinstance(m, Message) else m for m in self.messages]

    @property
    def first_parameter_type(self) -> type:
        """Runtime type the resolver dispatches on."""
        if self._payload is not _MISSING:
            return type(self._payload)
        return type(self._messages)

    # -- mutation -----------------------------------------------------------

    def substitute_payload(self, payload: Any) -> None:
        """Replace the payload of a single-message unit (JSON conversion)."""
        if self._message is None:
            raise InvalidUnitError("cannot substitute the payload of a batch")
        self._payload = payload
        self._message = self._message.with_payload(payload)

    def __repr__(self) -> str:
        if self._messages is not None:
            return f"IncomingUnit(messages={self._messages!r}, headers={dict(self._headers)!r})"
        return f"IncomingUnit(message={self._message!r})"


# ─────────────────────────────────────────────────────────────────────────────
# Parameter classification — tree of role nodes, first match wins
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ParameterInfo:
    """Everything a ``ParameterMatcher`` may look at for one parameter.

    Attributes:
        name:        Parameter name.
        annotation:  Declared annotation with ``Annotated``/``Optional`` removed
                     (``object`` when absent).
        base_type:   Runtime class of the annotation (``list`` for
                     ``list[int]``); ``object`` when not a class.
        type_args:   Generic arguments of the annotation.
        markers:     ``Annotated`` metadata attached to the parameter.
        optional:    ``True`` for ``Optional[...]`` annotations.
        can_process_message_list: Whether the owning engine handles batches.
    """

    name: str
    annotation: Any
    base_type: Any
    type_args: Tuple[Any, ...] = ()
    markers: Tuple[Any, ...] = ()
    optional: bool = False
    can_process_message_list: bool = False

    def marker(self, kind: type) -> Any:
        """Return the first marker that is an instance of *kind*, or ``None``."""
        for m in self.markers:
            if isinstance(m, kind):
                return m
        return None


class ParameterMatcher(ABC):
    """Predicate: does this parameter belong to the given role node?

    Examples::

        MarkerMatcher(Headers)   → parameter is Annotated[..., Headers()]
        AlwaysMatcher()          → True
    """

    @abstractmethod
    def matches(self, param: ParameterInfo) -> bool: ...


@dataclass
class RoleNode:
    """One entry in the role registry."""

    name: str
    priority: int
    matcher: ParameterMatcher
    role: ArgumentRole


class RoleRegistry:
    """Priority-ordered registry with *first-match* classification.

    ::

        role = registry.resolve(param)
    """

    def __init__(self) -> None:
        self._nodes: List[RoleNode] = []

    def register(self, node: RoleNode) -> None:
        """Add a node to the registry."""
        self._nodes.append(node)

    def resolve(self, param: ParameterInfo) -> Optional[ArgumentRole]:
        """Return the role of the highest-priority matching node, or ``None``."""
        for node in self.nodes():
            if node.matcher.matches(param):
                return node.role
        return None

    def nodes(self) -> List[RoleNode]:
        """Return nodes sorted by descending priority."""
        return sorted(self._nodes, key=lambda n: n.priority, reverse=True)


# ─────────────────────────────────────────────────────────────────────────────
# Injected capabilities
# ─────────────────────────────────────────────────────────────────────────────


class ExpressionEvaluator(ABC):
    """Compiles and evaluates binding expressions.

    The evaluation context exposes ``target``, ``payload``, ``headers``,
    ``message`` and ``messages``.
    """

    @abstractmethod
    def compile(self, text: str, mode: Optional[EvaluatorMode] = None) -> Any:
        """Return a compiled form of *text*.  *mode* overrides the default."""

    @abstractmethod
    def evaluate(self, compiled: Any, context: Mapping[str, Any]) -> Any:
        """Evaluate a compiled expression against *context*."""


class Converter(ABC):
    """Converts values to a declared type.

    Raises ``ConverterNotFoundError`` when the target type is not supported at
    all, ``ConversionFailedError`` when the value is rejected.
    """

    @abstractmethod
    def convert(self, value: Any, target_type: Any) -> Any: ...


class Invoker(ABC):
    """One strategy for calling a candidate with arguments taken from a unit."""

    @abstractmethod
    def invoke(self, candidate: 'Candidate', unit: IncomingUnit) -> Any: ...


class OperationSource(ABC):
    """Enumerates and describes the callable surface of a target."""

    @abstractmethod
    def operations(
            self,
            target: Any,
            *,
            method_name: Optional[str] = None,
            marker: Optional['Marker'] = None,
            requires_reply: bool = False,
    ) -> List[Tuple[str, Callable[..., Any]]]:
        """Return ``(name, bound_callable)`` pairs that pass eligibility
        filtering, in a stable order."""

    @abstractmethod
    def describe(self, name: str, function: Callable[..., Any]) -> 'OperationDescriptor':
        """Build the descriptor of one operation.  May raise
        ``IneligibleOperationError``."""


# ─────────────────────────────────────────────────────────────────────────────
# Target capabilities
# ─────────────────────────────────────────────────────────────────────────────


class Lifecycle(ABC):
    """Targets with a lifecycle get ``start``/``stop`` calls forwarded.

    Any class defining callable ``start``, ``stop`` and ``is_running`` counts
    as a ``Lifecycle`` for ``isinstance`` checks, subclass or not.
    """

    _methods = ("start", "stop", "is_running")

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def is_running(self) -> bool: ...

    @classmethod
    def __subclasshook__(cls, subclass):
        if cls is not Lifecycle:
            return NotImplemented
        for name in cls._methods:
            if not any(callable(vars(base).get(name)) for base in subclass.__mro__):
                return NotImplemented
        return True


class RequestReplyExchanger(ABC):
    """Single exchange-style operation: message in, message out.

    Used as the last-resort candidate when fallback operations are ambiguous
    (see ``discovery.RescuePolicy``).
    """

    @abstractmethod
    def exchange(self, message: Message[Any]) -> Message[Any]: ...
