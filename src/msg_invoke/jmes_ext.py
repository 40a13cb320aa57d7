"""JMESPath extensions used by binding expressions.

Custom functions
----------------
``invoke(target, name, args)``
    Call ``target.<name>(*args)`` and return its result.
``required_header(headers, name)``
    The header value, or ``MissingHeaderError`` when absent.
``payloads(messages)``
    Payload of every batch element.
``iterator(value)``
    A Python iterator over *value*.
``map_or_headers(payload, headers)``
    The payload when it is a mapping, otherwise the headers.

``BindingInterpreter`` extends the tree interpreter so that field access also
reads attributes of plain objects (dataclasses, pydantic models), not only
mapping keys.
"""

from __future__ import annotations

from collections import abc
from typing import Any, List, Mapping

import jmespath
from jmespath import functions as _jp_funcs
from jmespath import visitor as _jp_visitor

from .core import Message
from .errors import MissingHeaderError


class _BindingFunctions(_jp_funcs.Functions):
    """Container for the custom JMESPath functions used by binding expressions."""

    @_jp_funcs.signature({'types': []}, {'types': ['string']}, {'types': ['array']})
    def _func_invoke(self, target: Any, name: str, args: List[Any]) -> Any:
        return getattr(target, name)(*args)

    @_jp_funcs.signature({'types': []}, {'types': ['string']})
    def _func_required_header(self, headers: Mapping[str, Any], name: str) -> Any:
        if headers is None or name not in headers:
            raise MissingHeaderError(name)
        return headers[name]

    @_jp_funcs.signature({'types': []})
    def _func_payloads(self, messages: Any) -> List[Any]:
        return [m.payload if isinstance(m, Message) else m for m in messages]

    @_jp_funcs.signature({'types': []})
    def _func_iterator(self, value: Any) -> Any:
        return iter(value)

    @_jp_funcs.signature({'types': []}, {'types': []})
    def _func_map_or_headers(self, payload: Any, headers: Mapping[str, Any]) -> Any:
        return payload if isinstance(payload, abc.Mapping) else headers


class BindingInterpreter(_jp_visitor.TreeInterpreter):
    """Tree interpreter whose field access falls back to public attributes."""

    def visit_field(self, node: dict, value: Any) -> Any:
        key = node['value']
        try:
            return value.get(key)
        except AttributeError:
            if key.startswith("_"):
                return None
            return getattr(value, key, None)


BINDING_FUNCTIONS = _BindingFunctions()
BINDING_OPTIONS = jmespath.Options(custom_functions=BINDING_FUNCTIONS)
