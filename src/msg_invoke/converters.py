"""Default ``Converter`` implementation.

Lookup order for ``DefaultConverter.convert(value, target_type)``:

1. ``object`` / ``Any`` / ``None`` targets and values that already are
   instances of the target class → returned unchanged.
2. A caster registered for the exact target type (``BUILTIN_CASTERS``).
3. A cached ``pydantic.TypeAdapter`` for the target type — dataclasses,
   pydantic models, ``TypedDict``, typed containers (``list[int]``) …

Classes pydantic cannot build a schema for raise ``ConverterNotFoundError``;
values the caster or adapter rejects raise ``ConversionFailedError``.
"""

from __future__ import annotations

import typing
from typing import Any, Callable, Dict, Mapping, Optional

import regex
from pydantic import PydanticSchemaGenerationError, TypeAdapter, ValidationError

from .casters import BUILTIN_CASTERS
from .core import CONTENT_TYPE, Converter
from .errors import ConversionFailedError, ConverterNotFoundError

_IDENTITY_TARGETS = (None, object, Any)

#: ``application/json``, ``text/json; charset=utf-8``, ``application/vnd.x+json`` …
JSON_CONTENT_TYPE = regex.compile(r"(?:^|[/+])json(?:$|[;\s+])", regex.IGNORECASE)


def is_json_content_type(headers: Mapping[str, Any]) -> bool:
    """``True`` when the ``content_type`` header names a JSON-family type."""
    value = headers.get(CONTENT_TYPE)
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("latin-1")
    return isinstance(value, str) and JSON_CONTENT_TYPE.search(value.strip()) is not None


class DefaultConverter(Converter):
    """Caster-then-pydantic converter.

    Args:
        casters: Mapping from target type to caster function.
                 ``None`` → ``BUILTIN_CASTERS``.
    """

    def __init__(self, casters: Optional[Mapping[type, Callable[[Any], Any]]] = None) -> None:
        self.casters: Dict[type, Callable[[Any], Any]] = dict(
            BUILTIN_CASTERS if casters is None else casters
        )
        self._adapters: Dict[Any, TypeAdapter] = {}

    def convert(self, value: Any, target_type: Any) -> Any:
        if target_type in _IDENTITY_TARGETS:
            return value
        if isinstance(target_type, type) and isinstance(value, target_type):
            return value

        caster = self.casters.get(target_type)
        if caster is not None:
            try:
                return caster(value)
            except (TypeError, ValueError) as exc:
                raise ConversionFailedError(
                    f"Failed to convert {type(value).__name__} to {_type_name(target_type)}: {exc}"
                ) from exc

        adapter = self._adapter(target_type)
        try:
            return adapter.validate_python(value)
        except ValidationError as exc:
            raise ConversionFailedError(
                f"Failed to convert {type(value).__name__} to {_type_name(target_type)}: {exc}"
            ) from exc

    def _adapter(self, target_type: Any) -> TypeAdapter:
        try:
            return self._adapters[target_type]
        except KeyError:
            pass
        except TypeError:
            # unhashable annotations are never cached
            return self._new_adapter(target_type)
        adapter = self._new_adapter(target_type)
        return self._adapters.setdefault(target_type, adapter)

    @staticmethod
    def _new_adapter(target_type: Any) -> TypeAdapter:
        try:
            return TypeAdapter(target_type)
        except PydanticSchemaGenerationError as exc:
            raise ConverterNotFoundError(f"No converter found for type {_type_name(target_type)}") from exc


def _type_name(tp: Any) -> str:
    if isinstance(tp, type) and typing.get_origin(tp) is None:
        return tp.__qualname__
    return repr(tp)
