"""The two invocation strategies.

* ``StructuredInvoker`` builds the positional argument list itself, role by
  role, converting values with the injected ``Converter``, and calls the
  operation directly.
* ``ExpressionInvoker`` evaluates the candidate's binding expression against
  an ``EvaluationContext``.
"""

from __future__ import annotations

import typing
from collections import abc
from typing import Any, Iterator, List, Optional

from .candidates import Candidate
from .core import (
    ArgumentRole, Converter, ExpressionEvaluator, IncomingUnit, Invoker,
)
from .descriptors import ArgumentDescriptor
from .errors import (
    ArgumentResolutionError, ConversionError, InvalidUnitError, InvocationStateError,
    MessageConversionError, MissingHeaderError,
)


class EvaluationContext(abc.Mapping):
    """Lazy, read-only mapping over a unit.

    ``payload`` and ``messages`` are only read when an expression asks for
    them, so a batch-only expression never touches the payload accessor.
    """

    _KEYS = ("target", "payload", "headers", "message", "messages")

    def __init__(self, target: Any, unit: IncomingUnit) -> None:
        self._target = target
        self._unit = unit

    def __getitem__(self, key: str) -> Any:
        if key == "target":
            return self._target
        if key in self._KEYS:
            return getattr(self._unit, key)
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._KEYS)

    def __len__(self) -> int:
        return len(self._KEYS)


# ─────────────────────────────────────────────────────────────────────────────
# Structured
# ─────────────────────────────────────────────────────────────────────────────


class StructuredInvoker(Invoker):
    """Direct, typed invocation.

    Raises:
        ArgumentResolutionError: an argument cannot be produced from the unit.
        MessageConversionError:  a value cannot be converted to its type.
        InvocationStateError:    ``origin=StructuredInvoker`` — the converted
                                 value still has the wrong type, or is an
                                 instance of a same-named but distinct class.
        MissingHeaderError:      a required header is absent.
    """

    def __init__(
            self,
            converter: Converter,
            evaluator: Optional[ExpressionEvaluator] = None,
            *,
            can_process_message_list: bool = False,
    ) -> None:
        self.converter = converter
        self.evaluator = evaluator
        self.can_process_message_list = can_process_message_list

    def invoke(self, candidate: Candidate, unit: IncomingUnit) -> Any:
        return candidate.function(*self.resolve_arguments(candidate, unit))

    def resolve_arguments(self, candidate: Candidate, unit: IncomingUnit) -> List[Any]:
        try:
            return [self._argument(candidate, arg, unit) for arg in candidate.descriptor.arguments]
        except InvalidUnitError as exc:
            raise ArgumentResolutionError(f"Could not resolve arguments for '{candidate}': {exc}") from exc

    # -- per role -----------------------------------------------------------

    def _argument(self, candidate: Candidate, arg: ArgumentDescriptor, unit: IncomingUnit) -> Any:
        role = arg.role

        if role is ArgumentRole.PAYLOAD:
            value = unit.payload
            if arg.qualified:
                value = self._select(arg.expression, value)
            return self._convert(candidate, arg, value)

        if role is ArgumentRole.WHOLE_UNIT:
            message = unit.message
            if arg.value_type is object or isinstance(message.payload, arg.value_type):
                return message
            return message.with_payload(self._convert(candidate, arg, message.payload))

        if role is ArgumentRole.MESSAGES:
            return list(unit.messages)

        if role is ArgumentRole.COLLECTION:
            if arg.qualified:
                return [self._select(arg.expression, p) for p in unit.payloads()]
            if arg.element_is_message:
                # Payloads tag over a message list: payloads go through unconverted
                return unit.payloads()
            value = unit.payloads() if self.can_process_message_list else unit.payload
            return self._convert(candidate, arg, value)

        if role is ArgumentRole.ITERATOR:
            if self.can_process_message_list:
                return iter(unit.messages if arg.element_is_message else unit.payloads())
            try:
                return iter(unit.payload)
            except TypeError as exc:
                raise ArgumentResolutionError(
                    f"Payload of type [{type(unit.payload).__qualname__}] is not iterable"
                ) from exc

        if role is ArgumentRole.HEADER_MAP:
            return dict(unit.headers)

        if role is ArgumentRole.HEADER_NAMED:
            if arg.relative_path:
                raise ArgumentResolutionError(
                    f"Header path '{arg.header_name}.{arg.relative_path}' needs the binding expression"
                )
            if arg.header_name not in unit.headers:
                if arg.required:
                    raise MissingHeaderError(arg.header_name)
                return None
            return self._convert(candidate, arg, unit.headers[arg.header_name])

        if role is ArgumentRole.UNQUALIFIED_MAP:
            payload = unit.payload
            return payload if isinstance(payload, abc.Mapping) else dict(unit.headers)

        raise ArgumentResolutionError(f"Unsupported argument role {role!r} for '{arg.name}'")

    def _select(self, expression: str, value: Any) -> Any:
        if self.evaluator is None:
            raise ArgumentResolutionError(f"No evaluator for payload expression '{expression}'")
        return self.evaluator.evaluate(self.evaluator.compile(expression), value)

    def _convert(self, candidate: Candidate, arg: ArgumentDescriptor, value: Any) -> Any:
        base = arg.value_type
        if value is None or (base is object and arg.annotation is object):
            return value
        if isinstance(base, type) and base is not object:
            if isinstance(value, base) and typing.get_origin(arg.annotation) is None:
                return value
            if _same_name(type(value), base):
                raise InvocationStateError(
                    f"class cast: {_qualified(type(value))} cannot be cast to {_qualified(base)} "
                    f"(same name, different class) for parameter '{arg.name}' of '{candidate}'",
                    origin=StructuredInvoker,
                )
        target_type = base if arg.role is ArgumentRole.WHOLE_UNIT else arg.annotation
        try:
            converted = self.converter.convert(value, target_type)
        except ConversionError as exc:
            raise MessageConversionError(
                f"Failed to convert [{type(value).__qualname__}] for parameter '{arg.name}' of '{candidate}': {exc}"
            ) from exc
        if isinstance(base, type) and base is not object and not isinstance(converted, base):
            raise InvocationStateError(
                f"argument type mismatch: expected [{_qualified(base)}], got "
                f"[{_qualified(type(converted))}] for parameter '{arg.name}' of '{candidate}'",
                origin=StructuredInvoker,
            )
        return converted


def _qualified(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def _same_name(actual: type, expected: type) -> bool:
    return actual is not expected and _qualified(actual) == _qualified(expected)


# ─────────────────────────────────────────────────────────────────────────────
# Expression
# ─────────────────────────────────────────────────────────────────────────────


class ExpressionInvoker(Invoker):
    """Evaluate the candidate's binding expression (compiled once)."""

    def __init__(self, evaluator: ExpressionEvaluator) -> None:
        self.evaluator = evaluator

    def invoke(self, candidate: Candidate, unit: IncomingUnit) -> Any:
        compiled = candidate.compiled_expression(self.evaluator)
        return self.evaluator.evaluate(compiled, EvaluationContext(candidate.target, unit))


__all__ = [
    "EvaluationContext",
    "StructuredInvoker",
    "ExpressionInvoker",
]
