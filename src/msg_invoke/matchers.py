"""ParameterMatcher implementations used by the default role registry.

Exports
-------
MarkerMatcher
    Match parameters carrying an ``Annotated`` tag of a given kind.

MessageTypeMatcher, MessageListMatcher
    Match ``Message`` parameters and (for batch-capable engines) collections
    of ``Message``.

CollectionMatcher, IteratorMatcher, MappingMatcher
    Match by the parameter's declared container type.

AlwaysMatcher
    Unconditional match — catch-all / fallback sentinel.
"""

from __future__ import annotations

from collections import abc
from typing import Any

from .core import ArgumentRole, Message, ParameterInfo, ParameterMatcher, RoleNode, RoleRegistry
from .markers import Header, Headers, Payload, Payloads

_SCALAR_SEQUENCES = (str, bytes, bytearray, memoryview)


def is_subclass(candidate: Any, parent: Any) -> bool:
    """``issubclass`` that answers ``False`` instead of raising for non-classes."""
    try:
        return isinstance(candidate, type) and issubclass(candidate, parent)
    except TypeError:
        return False


def is_collection_type(tp: Any) -> bool:
    """Collections that stand for "many payloads" (not strings, not mappings)."""
    return (
        is_subclass(tp, abc.Collection)
        and not is_subclass(tp, _SCALAR_SEQUENCES)
        and not is_subclass(tp, abc.Mapping)
    )


class MarkerMatcher(ParameterMatcher):
    """Match a parameter by an ``Annotated`` tag type.

    ::

        MarkerMatcher(Header).matches(<Annotated[str, Header("id")]>)   # True
    """

    def __init__(self, kind: type) -> None:
        self._kind = kind

    def matches(self, param: ParameterInfo) -> bool:
        return param.marker(self._kind) is not None


class MessageTypeMatcher(ParameterMatcher):
    """``Message`` or ``Message[T]``."""

    def matches(self, param: ParameterInfo) -> bool:
        return is_subclass(param.base_type, Message)


class MessageListMatcher(ParameterMatcher):
    """``list[Message]`` and friends, only when the engine processes batches."""

    def matches(self, param: ParameterInfo) -> bool:
        if not param.can_process_message_list or not is_collection_type(param.base_type):
            return False
        return bool(param.type_args) and is_subclass(_origin(param.type_args[0]), Message)


class CollectionMatcher(ParameterMatcher):
    def matches(self, param: ParameterInfo) -> bool:
        return is_collection_type(param.base_type)


class IteratorMatcher(ParameterMatcher):
    def matches(self, param: ParameterInfo) -> bool:
        return is_subclass(param.base_type, abc.Iterator)


class MappingMatcher(ParameterMatcher):
    def matches(self, param: ParameterInfo) -> bool:
        return is_subclass(param.base_type, abc.Mapping)


class AlwaysMatcher(ParameterMatcher):
    """Unconditional match — use as a catch-all / fallback node.

    ::

        AlwaysMatcher().matches(anything)   # True
    """

    def matches(self, param: ParameterInfo) -> bool:
        return True


def _origin(tp: Any) -> Any:
    return getattr(tp, "__origin__", None) or tp


# ─────────────────────────────────────────────────────────────────────────────
# Default registry
# ─────────────────────────────────────────────────────────────────────────────


def build_default_role_registry() -> RoleRegistry:
    """Build the standard parameter-role registry.

    Tags win over declared types; an untagged parameter of no recognised
    container type is a payload::

        Payload  > Payloads > Headers > Header
                 > Message > list[Message] > Collection > Iterator > Mapping
                 > payload (catch-all)
    """
    registry = RoleRegistry()
    nodes = [
        ("payload-tag", 100, MarkerMatcher(Payload), ArgumentRole.PAYLOAD),
        ("payloads-tag", 95, MarkerMatcher(Payloads), ArgumentRole.COLLECTION),
        ("headers-tag", 90, MarkerMatcher(Headers), ArgumentRole.HEADER_MAP),
        ("header-tag", 85, MarkerMatcher(Header), ArgumentRole.HEADER_NAMED),
        ("message", 50, MessageTypeMatcher(), ArgumentRole.WHOLE_UNIT),
        ("message-list", 45, MessageListMatcher(), ArgumentRole.MESSAGES),
        ("collection", 40, CollectionMatcher(), ArgumentRole.COLLECTION),
        ("iterator", 35, IteratorMatcher(), ArgumentRole.ITERATOR),
        ("mapping", 30, MappingMatcher(), ArgumentRole.UNQUALIFIED_MAP),
        ("payload", -999, AlwaysMatcher(), ArgumentRole.PAYLOAD),
    ]
    for name, priority, matcher, role in nodes:
        registry.register(RoleNode(name=name, priority=priority, matcher=matcher, role=role))
    return registry
