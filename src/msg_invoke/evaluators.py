"""JMESPath-backed ``ExpressionEvaluator``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

import jmespath
from jmespath import exceptions as _jp_exc
from jmespath import parser as _jp_parser

from .core import EvaluatorMode, ExpressionEvaluator
from .errors import ExpressionEvaluationError
from .jmes_ext import BINDING_OPTIONS, BindingInterpreter


@dataclass
class CompiledExpression:
    """Expression text plus, once available, its parsed form."""

    text: str
    mode: EvaluatorMode
    parsed: Optional[_jp_parser.ParsedResult] = None


class JmesExpressionEvaluator(ExpressionEvaluator):
    """Evaluates binding expressions with ``jmespath``.

    Args:
        mode:    Default ``EvaluatorMode`` for expressions compiled without an
                 explicit one.
        options: ``jmespath.Options``; ``None`` → the binding functions.
    """

    def __init__(
            self,
            mode: EvaluatorMode = EvaluatorMode.IMMEDIATE,
            options: Optional[jmespath.Options] = None,
    ) -> None:
        self.mode = mode
        self.options = options or BINDING_OPTIONS
        self._interpreter = BindingInterpreter(self.options)

    def compile(self, text: str, mode: Optional[EvaluatorMode] = None) -> CompiledExpression:
        compiled = CompiledExpression(text=text, mode=mode or self.mode)
        if compiled.mode is EvaluatorMode.IMMEDIATE:
            compiled.parsed = self._parse(text)
        return compiled

    def evaluate(self, compiled: Any, context: Mapping[str, Any]) -> Any:
        if isinstance(compiled, str):
            compiled = self.compile(compiled)
        parsed = compiled.parsed or self._parse(compiled.text)
        try:
            result = self._interpreter.visit(parsed.parsed, context)
        except _jp_exc.JMESPathError as exc:
            raise ExpressionEvaluationError(f"Failed to evaluate '{compiled.text}': {exc}") from exc
        if compiled.mode is EvaluatorMode.MIXED and compiled.parsed is None:
            compiled.parsed = parsed
        return result

    @staticmethod
    def _parse(text: str) -> _jp_parser.ParsedResult:
        try:
            return jmespath.compile(text)
        except _jp_exc.JMESPathError as exc:
            raise ExpressionEvaluationError(f"Failed to parse '{text}': {exc}") from exc
