"""``InvocationEngine`` — resolve, invoke, fall back, demote.

Per-call flow::

    unit ──► Resolver.resolve ──► candidate
                                      │
        expression_only / global ─────┼──────────────────────────┐
                                      ▼                          │
                          StructuredInvoker.invoke               │
                                      │ recoverable failure      │
                                      ▼                          ▼
                          record_failure()  ──►  JSON auto-conversion
                                                        │
                                                        ▼
                                              ExpressionInvoker.invoke
                                                        │
                                                        ▼
                                            coerce to expected_type

Recoverable structured failures are ``ArgumentResolutionError``,
``MessageConversionError`` (unless no converter exists at all) and
``InvocationStateError`` raised by the structured invoker for a type
mismatch or a class cast.  Anything else propagates unchanged.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Iterable, Mapping, Optional

import regex

from .candidates import Candidate
from .converters import is_json_content_type
from .core import (
    ArgumentRole, Converter, IncomingUnit, Invoker, Lifecycle, Message,
)
from .descriptors import is_plain_callable, target_class
from .discovery import CandidateBuilder
from .errors import (
    ArgumentResolutionError, ConversionError, ConverterNotFoundError, DispatchConfigurationError,
    InvocationStateError, MessageConversionError, MessagingError, ResultConversionError,
)
from .invokers import StructuredInvoker
from .markers import Marker
from .matchers import is_subclass
from .resolver import Resolver
from .table import DispatchTable

logger = logging.getLogger(__name__)

#: Consecutive recoverable failures before a candidate stops trying the
#: structured invoker.
FAILED_ATTEMPTS_THRESHOLD = 100

_STATE_MISMATCH = regex.compile(r"argument type mismatch|class cast", regex.IGNORECASE)

StructuredProbe = Callable[[Candidate, IncomingUnit], None]


def _caused_by(exc: BaseException, kind: type) -> bool:
    seen = set()
    cause = exc.__cause__ or exc.__context__
    while cause is not None and id(cause) not in seen:
        if isinstance(cause, kind):
            return True
        seen.add(id(cause))
        cause = cause.__cause__ or cause.__context__
    return False


class InvocationEngine(Lifecycle):
    """Dispatch messages to the operations of one target.

    Args:
        target:                 Handler object (already unwrapped).
        builder:                Builds the dispatch table on ``initialize``.
        structured:             Structured invoker.
        expression:             Expression invoker.
        converter:              Used for JSON conversion and result coercion.
        method:                 Explicit operation (selection rule).
        method_name:            Operation name (selection rule).
        marker:                 Marker filter (selection rule).
        expected_type:          Coerce every result to this type.
        use_expression_invoker: Always use the binding expression.
        failure_threshold:      Recoverable failures before demotion.
        structured_probe:       Called before every structured attempt.
    """

    def __init__(
            self,
            target: Any,
            *,
            builder: CandidateBuilder,
            structured: Invoker,
            expression: Invoker,
            converter: Converter,
            method: Optional[Callable[..., Any]] = None,
            method_name: Optional[str] = None,
            marker: Optional[Marker] = None,
            expected_type: Any = None,
            use_expression_invoker: bool = False,
            failure_threshold: int = FAILED_ATTEMPTS_THRESHOLD,
            structured_probe: Optional[StructuredProbe] = None,
    ) -> None:
        if sum(rule is not None for rule in (method, method_name, marker)) > 1:
            raise DispatchConfigurationError("at most one of 'method', 'method_name' and 'marker' may be given")
        if failure_threshold < 1:
            raise DispatchConfigurationError("failure_threshold must be positive")
        self.target = target
        self.builder = builder
        self.structured = structured
        self.expression = expression
        self.converter = converter
        self.method = method
        self.method_name = method_name
        self.marker = marker
        self.expected_type = expected_type
        self.use_expression_invoker = use_expression_invoker
        self.failure_threshold = failure_threshold
        self.structured_probe = structured_probe
        self._table: Optional[DispatchTable] = None
        self._resolver: Optional[Resolver] = None
        self._init_lock = threading.Lock()

    # -- build --------------------------------------------------------------

    def initialize(self) -> None:
        """Build the dispatch table once; later calls are no-ops."""
        if self._resolver is not None:
            return
        with self._init_lock:
            if self._resolver is None:
                table = self.builder.build(
                    self.target, method=self.method, method_name=self.method_name, marker=self.marker,
                )
                self._table = table
                self._resolver = Resolver(table)

    @property
    def table(self) -> DispatchTable:
        self.initialize()
        return self._table

    # -- entry points -------------------------------------------------------

    def process(self, message: Message[Any]) -> Any:
        """Handle a single message and return the operation's result."""
        return self._process(IncomingUnit.of(message))

    def process_batch(self, messages: Iterable[Any], headers: Optional[Mapping[str, Any]] = None) -> Any:
        """Handle a batch of messages (or raw payloads) sharing *headers*."""
        return self._process(IncomingUnit.batch(messages, headers))

    def _process(self, unit: IncomingUnit) -> Any:
        self.initialize()
        candidate = self._resolver.resolve(unit)
        return self._coerce(self._invoke(candidate, unit))

    # -- invocation ---------------------------------------------------------

    def _invoke(self, candidate: Candidate, unit: IncomingUnit) -> Any:
        if self.use_expression_invoker or candidate.expression_only:
            return self._evaluate(candidate, unit)

        if self.structured_probe is not None:
            self.structured_probe(candidate, unit)
        try:
            result = self.structured.invoke(candidate, unit)
        except MessagingError as exc:
            if not self.is_recoverable(exc):
                raise
            logger.debug("Structured invocation of '%s' failed, using the binding expression: %s", candidate, exc)
            if candidate.record_failure(self.failure_threshold):
                logger.info(
                    "Failed to invoke '%s' with the structured invoker %d times; "
                    "switching to the binding expression permanently.",
                    candidate, self.failure_threshold,
                )
        else:
            candidate.record_success()
            return result
        return self._evaluate(candidate, unit)

    def is_recoverable(self, exc: BaseException) -> bool:
        """Whether a structured-invocation failure may fall back to the
        binding expression."""
        if isinstance(exc, ArgumentResolutionError):
            return True
        if isinstance(exc, MessageConversionError):
            return not _caused_by(exc, ConverterNotFoundError)
        if isinstance(exc, InvocationStateError):
            return self._from_structured(exc.origin) and _STATE_MISMATCH.search(str(exc)) is not None
        return False

    def _from_structured(self, origin: Any) -> bool:
        return (
            origin is self.structured
            or isinstance(origin, StructuredInvoker)
            or is_subclass(origin, StructuredInvoker)
        )

    def _evaluate(self, candidate: Candidate, unit: IncomingUnit) -> Any:
        self._convert_json_payload(candidate, unit)
        return self.expression.invoke(candidate, unit)

    def _convert_json_payload(self, candidate: Candidate, unit: IncomingUnit) -> None:
        primary = candidate.primary
        if (
                self._table.single is not candidate
                or primary is None
                or primary.role not in (ArgumentRole.PAYLOAD, ArgumentRole.WHOLE_UNIT)
                or unit.is_batch
        ):
            return
        payload = unit.payload
        target_type = candidate.dispatch_key
        if not isinstance(payload, (str, bytes, bytearray)) or isinstance(payload, target_type):
            return
        if not is_json_content_type(unit.headers):
            return
        try:
            converted = self.converter.convert(json.loads(payload), target_type)
        except (ValueError, ConversionError) as exc:
            logger.debug("Failed to convert from JSON to [%s]: %s", getattr(target_type, "__qualname__", target_type), exc)
            return
        unit.substitute_payload(converted)

    def _coerce(self, result: Any) -> Any:
        if self.expected_type is None or result is None:
            return result
        try:
            return self.converter.convert(result, self.expected_type)
        except ConversionError as exc:
            raise ResultConversionError(
                f"Failed to convert the result [{type(result).__qualname__}] to {self.expected_type!r}: {exc}"
            ) from exc

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        if isinstance(self.target, Lifecycle):
            self.target.start()

    def stop(self) -> None:
        if isinstance(self.target, Lifecycle):
            self.target.stop()

    def is_running(self) -> bool:
        return not isinstance(self.target, Lifecycle) or self.target.is_running()

    def __str__(self) -> str:
        single = self._table.single if self._table is not None else None
        if single is not None:
            operation = single.name
        elif self.method is not None:
            operation = getattr(self.method, "__name__", "__call__")
        else:
            operation = self.method_name or "*"
        if is_plain_callable(self.target):
            name = getattr(self.target, "__qualname__", type(self.target).__qualname__)
            return f"{getattr(self.target, '__module__', None) or type(self.target).__module__}.{name}"
        cls = target_class(self.target)
        return f"{cls.__module__}.{cls.__qualname__}.{operation}"
