"""Binding expression generation.

Every candidate gets one JMESPath expression that rebuilds its positional
argument list from an incoming unit and calls it::

    invoke(target, 'on_order', [payload, required_header(headers, 'tenant')])

The expression is evaluated against a context exposing ``target``,
``payload``, ``headers``, ``message`` and ``messages`` (see
``invokers.EvaluationContext``); the custom functions live in ``jmes_ext``.
"""

from __future__ import annotations

import json
from collections import abc
from typing import List, Optional

from .core import ArgumentRole
from .descriptors import ArgumentDescriptor, OperationDescriptor
from .errors import IneligibleOperationError
from .matchers import is_subclass


def quote_identifier(name: str) -> str:
    """JMESPath quoted identifier: ``tenant-id`` → ``"tenant-id"``."""
    return json.dumps(name)


def raw_string(text: str) -> str:
    """JMESPath raw string literal: ``it's`` → ``'it\\'s'``."""
    return "'" + text.replace("'", "\\'") + "'"


class BindingExpressionGenerator:
    """Generate the binding expression of an operation.

    Args:
        can_process_message_list: Collection and iterator arguments read the
                                  batch (``messages``) instead of the payload.
    """

    def __init__(self, *, can_process_message_list: bool = False) -> None:
        self.can_process_message_list = can_process_message_list

    def generate(self, descriptor: OperationDescriptor, call_name: Optional[str] = None) -> str:
        """Return the full expression; raise ``IneligibleOperationError`` for
        ambiguous mapping parameters."""
        self._check_maps(descriptor)
        fragments = [self.fragment(arg) for arg in descriptor.arguments]
        name = raw_string(call_name or descriptor.name)
        args = f"[{', '.join(fragments)}]" if fragments else "`[]`"
        return f"invoke(target, {name}, {args})"

    def fragment(self, arg: ArgumentDescriptor) -> str:
        role = arg.role
        if role is ArgumentRole.WHOLE_UNIT:
            return "message"
        if role is ArgumentRole.MESSAGES:
            return "messages"
        if role is ArgumentRole.PAYLOAD:
            return f"(payload | {arg.expression})" if arg.qualified else "payload"
        if role is ArgumentRole.COLLECTION:
            # a Payloads tag always yields payloads, even for a list of messages
            if arg.qualified:
                return f"map(&({arg.expression}), payloads(messages))"
            return "payloads(messages)" if self.can_process_message_list else "payload"
        if role is ArgumentRole.ITERATOR:
            if not self.can_process_message_list:
                return "iterator(payload)"
            return "iterator(messages)" if arg.element_is_message else "iterator(payloads(messages))"
        if role is ArgumentRole.HEADER_MAP:
            return "headers"
        if role is ArgumentRole.HEADER_NAMED:
            if arg.required:
                base = f"required_header(headers, {raw_string(arg.header_name)})"
            else:
                base = f"headers.{quote_identifier(arg.header_name)}"
            if not arg.relative_path:
                return base
            return ".".join([base, *(quote_identifier(s) for s in arg.relative_path.split("."))])
        if role is ArgumentRole.UNQUALIFIED_MAP:
            return "map_or_headers(payload, headers)"
        raise IneligibleOperationError(f"Unsupported argument role {role!r} for '{arg.name}'")

    @staticmethod
    def _check_maps(descriptor: OperationDescriptor) -> None:
        maps: List[ArgumentDescriptor] = [
            a for a in descriptor.arguments if a.role is ArgumentRole.UNQUALIFIED_MAP
        ]
        if len(maps) > 1:
            raise IneligibleOperationError(
                f"Found more than one Map typed parameter without any qualification in '{descriptor}'. "
                "Consider using Payload or Headers on at least one of the parameters."
            )
        if maps and any(
                a.role is ArgumentRole.PAYLOAD and not a.qualified and is_subclass(a.value_type, abc.Mapping)
                for a in descriptor.arguments
        ):
            raise IneligibleOperationError(
                f"Ambiguous map-typed parameter in '{descriptor}': the payload is a Map and "
                f"'{maps[0].name}' has no qualification."
            )
