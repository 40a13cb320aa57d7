"""Engine factory — the single place where all pieces are assembled.

``build_default_engine`` is the recommended entry point for users who want a
fully functional ``InvocationEngine`` without hand-wiring every component.

Customisation points:

* **evaluator**        – ``ExpressionEvaluator`` for binding expressions.
                         ``None`` → ``JmesExpressionEvaluator(evaluator_mode)``.
* **converter**        – ``Converter`` for argument, JSON and result
                         conversion.  ``None`` → ``DefaultConverter()``.
* **unwrap**           – hook that sees through wrapper objects.
                         ``None`` → ``default_unwrap``.
* **operation_source** – where operation descriptors come from.
                         ``None`` → ``IntrospectingOperationSource``.
* **rescue_policy**    – ambiguous-fallback rescue rule.
                         ``None`` → ``RescuePolicy()``.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from .binding import BindingExpressionGenerator
from .converters import DefaultConverter
from .core import Converter, EvaluatorMode, ExpressionEvaluator, OperationSource
from .descriptors import IntrospectingOperationSource, default_unwrap
from .discovery import CandidateBuilder, RescuePolicy
from .engine import FAILED_ATTEMPTS_THRESHOLD, InvocationEngine, StructuredProbe
from .evaluators import JmesExpressionEvaluator
from .invokers import ExpressionInvoker, StructuredInvoker
from .markers import Marker


def build_default_engine(
        target: Any,
        *,
        method: Optional[Callable[..., Any]] = None,
        method_name: Optional[str] = None,
        marker: Optional[Marker] = None,
        expected_type: Any = None,
        can_process_message_list: bool = False,
        evaluator: Optional[ExpressionEvaluator] = None,
        evaluator_mode: EvaluatorMode = EvaluatorMode.IMMEDIATE,
        converter: Optional[Converter] = None,
        unwrap: Optional[Callable[[Any], Any]] = None,
        operation_source: Optional[OperationSource] = None,
        use_expression_invoker: bool = False,
        failure_threshold: int = FAILED_ATTEMPTS_THRESHOLD,
        rescue_policy: Optional[RescuePolicy] = None,
        structured_probe: Optional[StructuredProbe] = None,
) -> InvocationEngine:
    """Assemble and initialize an ``InvocationEngine`` for *target*.

    What gets wired
    ---------------
    builder
        ``CandidateBuilder`` over the operation source, with a
        ``BindingExpressionGenerator``.  Operations annotated ``-> None`` are
        skipped (or rejected) when *expected_type* is given.

    invokers
        * ``StructuredInvoker``  – direct calls, converter-backed arguments.
        * ``ExpressionInvoker``  – compiled JMESPath binding expressions.

    The dispatch table is built before the engine is returned, so every
    configuration error surfaces here.

    Args:
        target:                   Handler object, function or callable.
        method:                   Explicit operation to call.
        method_name:              Only operations with this name.
        marker:                   Marked operations first, others as fallback.
        expected_type:            Coerce every result to this type.
        can_process_message_list: Collection parameters take whole batches.
        evaluator:                Custom expression evaluator.
        evaluator_mode:           Mode of the default evaluator.
        converter:                Custom converter.
        unwrap:                   Custom unwrap hook.
        operation_source:         Custom operation source.
        use_expression_invoker:   Never use structured invocation.
        failure_threshold:        Recoverable failures before a candidate is
                                  switched to its binding expression.
        rescue_policy:            Custom ambiguous-fallback rescue rule.
        structured_probe:         ``(candidate, unit)`` callback run before
                                  every structured attempt.

    Returns:
        Initialized ``InvocationEngine``.

    Example::

        class Greeter:
            def greet(self, name: str) -> str:
                return f"hello {name}"

        engine = build_default_engine(Greeter())
        engine.process(Message("world"))
        # → "hello world"
    """
    target = (unwrap or default_unwrap)(target)
    converter = converter or DefaultConverter()
    evaluator = evaluator or JmesExpressionEvaluator(evaluator_mode)
    source = operation_source or IntrospectingOperationSource(
        can_process_message_list=can_process_message_list,
    )

    builder = CandidateBuilder(
        operation_source=source,
        generator=BindingExpressionGenerator(can_process_message_list=can_process_message_list),
        requires_reply=expected_type is not None,
        rescue_policy=rescue_policy,
    )
    engine = InvocationEngine(
        target,
        builder=builder,
        structured=StructuredInvoker(converter, evaluator, can_process_message_list=can_process_message_list),
        expression=ExpressionInvoker(evaluator),
        converter=converter,
        method=method,
        method_name=method_name,
        marker=marker,
        expected_type=expected_type,
        use_expression_invoker=use_expression_invoker,
        failure_threshold=failure_threshold,
        structured_probe=structured_probe,
    )
    engine.initialize()
    return engine
