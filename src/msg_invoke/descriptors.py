"""Capability descriptors — what a target can do, in dispatch terms.

The rest of the engine never introspects a target directly: it consumes
``OperationDescriptor`` records, one per callable operation, each listing its
arguments with an ``ArgumentRole``.  ``IntrospectingOperationSource`` builds
them from ordinary Python objects with ``inspect`` and ``typing``; any other
``OperationSource`` may supply them instead (generated code, a registry, …).

Eligibility rules applied by ``IntrospectingOperationSource.operations``
-----------------------------------------------------------------------
* members defined on ``object`` and dunder members are never operations
  (``__call__`` only when the target is a callable object and no other
  selection rule applies);
* non-public members (``_name``) only when they carry the marker;
* properties and other non-routine attributes are skipped;
* operations annotated ``-> None`` are skipped when a reply is required;
* ``start`` / ``stop`` / ``is_running`` are skipped when neither a name nor a
  marker is given, unless one of them is the only operation left.
"""

from __future__ import annotations

import functools
import inspect
import logging
import types
import typing
from collections import abc
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, FrozenSet, List, Optional, Tuple, Union

from .core import (
    ArgumentRole, EvaluatorMode, Message, OperationSource, ParameterInfo,
    RoleRegistry,
)
from .errors import DispatchConfigurationError, IneligibleOperationError
from .markers import (
    Header, Marker, Payload, Payloads,
    expression_invoker_of, is_default, markers_of,
)
from .matchers import build_default_role_registry, is_collection_type, is_subclass

logger = logging.getLogger(__name__)

_LIFECYCLE_NAMES = frozenset({"start", "stop", "is_running"})
_OBJECT_MEMBERS = frozenset(dir(object))
_NONE_ANNOTATIONS = (None, type(None), "None")


# ─────────────────────────────────────────────────────────────────────────────
# Descriptor records
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ArgumentDescriptor:
    """One positional argument of an operation.

    Attributes:
        name:          Parameter name.
        position:      Index in the positional argument list.
        role:          How the argument is fed from the incoming unit.
        annotation:    Declared annotation (``Annotated``/``Optional`` removed).
        value_type:    Class the value must be an instance of.  For a
                       ``Message[T]`` parameter this is ``T``.
        header_name:   ``HEADER_NAMED`` only.
        relative_path: Dotted path read inside a header value.
        expression:    Qualifier expression of a ``Payload``/``Payloads`` tag.
        required:      ``HEADER_NAMED`` only — absent header is an error.
        element_is_message: Collection/iterator elements are whole messages.
    """

    name: str
    position: int
    role: ArgumentRole
    annotation: Any = object
    value_type: Any = object
    header_name: Optional[str] = None
    relative_path: str = ""
    expression: Optional[str] = None
    required: bool = False
    element_is_message: bool = False

    @property
    def qualified(self) -> bool:
        """A qualified argument reads *part* of the payload and never decides
        the dispatch key."""
        return self.expression is not None


@dataclass(frozen=True)
class OperationDescriptor:
    """Everything the engine needs to know about one operation."""

    name: str
    function: Callable[..., Any]
    arguments: Tuple[ArgumentDescriptor, ...] = ()
    markers: FrozenSet[Marker] = frozenset()
    is_default: bool = False
    expression_only: bool = False
    evaluator_mode: Optional[EvaluatorMode] = None
    returns_value: bool = True
    owner: Optional[type] = field(default=None, compare=False)

    def __str__(self) -> str:
        owner = f"{self.owner.__qualname__}." if self.owner is not None else ""
        args = ", ".join(a.name for a in self.arguments)
        return f"{owner}{self.name}({args})"


# ─────────────────────────────────────────────────────────────────────────────
# Target helpers
# ─────────────────────────────────────────────────────────────────────────────


def default_unwrap(target: Any) -> Any:
    """Follow ``__wrapped__`` on wrapper objects (not on functions — a
    decorated function must still run its decorator)."""
    seen = set()
    while not inspect.isroutine(target) and id(target) not in seen:
        seen.add(id(target))
        inner = inspect.getattr_static(target, "__wrapped__", None)
        if inner is None:
            break
        target = inner
    return target


def target_class(target: Any) -> type:
    """Class used for introspection; honours ``__class__`` overrides (a mock
    built from a class reports that class)."""
    cls = getattr(target, "__class__", None)
    return cls if isinstance(cls, type) else type(target)


def capability_surface(target: Any) -> Tuple[type, ...]:
    """Classes a wrapper/proxy declares in ``__capabilities__``."""
    return tuple(inspect.getattr_static(target, "__capabilities__", ()))


def is_plain_callable(target: Any) -> bool:
    return inspect.isroutine(target) or isinstance(target, functools.partial)


def returns_none(function: Any) -> bool:
    try:
        return inspect.signature(function).return_annotation in _NONE_ANNOTATIONS
    except (TypeError, ValueError):
        return False


def _routine_of(member: Any) -> Any:
    if isinstance(member, (staticmethod, classmethod)):
        return member.__func__
    if isinstance(member, property):
        return None
    return member if inspect.isroutine(member) else None


def _type_hints(function: Any) -> dict:
    hint_source = getattr(function, "__func__", function)
    if not inspect.isroutine(hint_source) and callable(hint_source):
        hint_source = type(hint_source).__call__
    try:
        return typing.get_type_hints(hint_source, include_extras=True)
    except (NameError, TypeError, AttributeError) as exc:
        logger.debug("Resolving annotations of %r one by one: %s", function, exc)
    return _hints_one_by_one(hint_source)


def _hints_one_by_one(source: Any) -> dict:
    """Resolve each annotation on its own; unresolvable ones stay raw."""
    annotations = getattr(source, "__annotations__", None) or {}
    globalns = getattr(inspect.unwrap(source), "__globals__", {}) if inspect.isroutine(source) else {}
    hints = {}
    for name, annotation in annotations.items():
        holder = types.SimpleNamespace(__annotations__={name: annotation})
        try:
            hints.update(typing.get_type_hints(holder, globalns=globalns, include_extras=True))
        except (NameError, TypeError, AttributeError) as exc:
            logger.debug("Cannot resolve annotation %r of parameter '%s': %s", annotation, name, exc)
    return hints


# ─────────────────────────────────────────────────────────────────────────────
# Parameter analysis
# ─────────────────────────────────────────────────────────────────────────────


def parameter_info(name: str, hint: Any, *, can_process_message_list: bool = False) -> ParameterInfo:
    """Normalise a raw annotation into a ``ParameterInfo``.

    ``Annotated`` metadata becomes ``markers``; ``Optional[X]`` becomes ``X``
    with ``optional=True``; ``Any`` and missing annotations become ``object``.
    """
    annotation = object if hint is inspect.Parameter.empty else hint
    markers: Tuple[Any, ...] = ()
    optional = False
    for _ in range(2):
        if typing.get_origin(annotation) is Annotated:
            annotation, *meta = typing.get_args(annotation)
            markers += tuple(meta)
        origin = typing.get_origin(annotation)
        if origin is Union or origin is getattr(types, "UnionType", None):
            members = typing.get_args(annotation)
            non_none = [a for a in members if a is not type(None)]
            optional = optional or len(non_none) < len(members)
            if len(non_none) == 1:
                annotation = non_none[0]
                continue
        break
    if annotation is Any or isinstance(annotation, str):
        annotation = object
    base = typing.get_origin(annotation) or annotation
    if not isinstance(base, type):
        base = object
    return ParameterInfo(
        name=name,
        annotation=annotation,
        base_type=base,
        type_args=typing.get_args(annotation),
        markers=markers,
        optional=optional,
        can_process_message_list=can_process_message_list,
    )


def _first_arg_is_message(info: ParameterInfo) -> bool:
    if not info.type_args:
        return False
    return is_subclass(typing.get_origin(info.type_args[0]) or info.type_args[0], Message)


def _argument(info: ParameterInfo, position: int, role: ArgumentRole) -> ArgumentDescriptor:
    common = dict(name=info.name, position=position, role=role, annotation=info.annotation)

    if role is ArgumentRole.PAYLOAD:
        tag = info.marker(Payload)
        return ArgumentDescriptor(
            **common, value_type=info.base_type,
            expression=tag.expression if tag is not None else None,
        )

    if role is ArgumentRole.COLLECTION:
        tag = info.marker(Payloads)
        if tag is not None:
            if not info.can_process_message_list:
                raise IneligibleOperationError(
                    "The Payloads tag can only be applied if the engine can process message lists."
                )
            if not is_collection_type(info.base_type):
                raise IneligibleOperationError(
                    "The Payloads tag can only be applied to a collection-typed parameter."
                )
        return ArgumentDescriptor(
            **common, value_type=info.base_type,
            expression=tag.expression if tag is not None else None,
            element_is_message=_first_arg_is_message(info),
        )

    if role is ArgumentRole.HEADER_MAP:
        if info.base_type is not object and not is_subclass(info.base_type, abc.Mapping):
            raise IneligibleOperationError("The Headers tag can only be applied to a Mapping-typed parameter.")
        return ArgumentDescriptor(**common, value_type=info.base_type)

    if role is ArgumentRole.HEADER_NAMED:
        tag = info.marker(Header)
        header_name, _, relative_path = (tag.name or info.name).partition(".")
        if not header_name:
            raise IneligibleOperationError(f"Cannot determine header name for parameter '{info.name}'.")
        return ArgumentDescriptor(
            **common, value_type=info.base_type,
            header_name=header_name, relative_path=relative_path,
            required=tag.required and not info.optional,
        )

    if role is ArgumentRole.WHOLE_UNIT:
        payload_type = info.type_args[0] if info.type_args else object
        payload_type = typing.get_origin(payload_type) or payload_type
        if payload_type is Any or not isinstance(payload_type, type):
            payload_type = object
        return ArgumentDescriptor(**common, value_type=payload_type)

    if role in (ArgumentRole.ITERATOR, ArgumentRole.MESSAGES):
        return ArgumentDescriptor(
            **common, value_type=info.base_type,
            element_is_message=role is ArgumentRole.MESSAGES or _first_arg_is_message(info),
        )

    return ArgumentDescriptor(**common, value_type=info.base_type)


# ─────────────────────────────────────────────────────────────────────────────
# IntrospectingOperationSource
# ─────────────────────────────────────────────────────────────────────────────


class IntrospectingOperationSource(OperationSource):
    """Default ``OperationSource``: reads signatures and type hints.

    Args:
        can_process_message_list: Classify collection parameters for batch
                                  processing (``Payloads``, ``list[Message]``).
        roles:                    Parameter-role registry.  ``None`` → the
                                  default registry.
    """

    def __init__(
            self,
            *,
            can_process_message_list: bool = False,
            roles: Optional[RoleRegistry] = None,
    ) -> None:
        self.can_process_message_list = can_process_message_list
        self.roles = roles or build_default_role_registry()

    # -- enumeration --------------------------------------------------------

    def operations(
            self,
            target: Any,
            *,
            method_name: Optional[str] = None,
            marker: Optional[Marker] = None,
            requires_reply: bool = False,
    ) -> List[Tuple[str, Callable[..., Any]]]:
        if is_plain_callable(target):
            if marker is None and method_name in (None, "__call__"):
                return [(getattr(target, "__name__", "__call__"), target)]
            return []

        cls = target_class(target)
        name_filter = method_name
        if name_filter is None and marker is None and callable(target) and "__call__" in dir(cls):
            name_filter = "__call__"

        found: List[Tuple[str, Callable[..., Any]]] = []
        lifecycle: List[Tuple[str, Callable[..., Any]]] = []
        for name in sorted(dir(cls)):
            if name_filter is not None and name != name_filter:
                continue
            if name != name_filter and (name in _OBJECT_MEMBERS or (name.startswith("__") and name.endswith("__"))):
                continue
            routine = _routine_of(inspect.getattr_static(cls, name, None))
            if routine is None:
                continue
            marked = marker is not None and marker in markers_of(routine)
            if not marked and name.startswith("_") and name != name_filter:
                continue
            if requires_reply and returns_none(routine):
                continue
            entry = (name, getattr(target, name))
            if name_filter is None and marker is None and name in _LIFECYCLE_NAMES:
                lifecycle.append(entry)
                continue
            found.append(entry)

        if not found and len(lifecycle) == 1:
            return lifecycle
        return found

    def declared_operations(self, target: Any, method_name: Optional[str]) -> List[Tuple[str, Callable[..., Any], Any]]:
        """Operations named *method_name* on the target's declared capability
        surface, as ``(name, callable_on_target, declaring_function)``."""
        if method_name is None:
            return []
        found = []
        for capability in capability_surface(target):
            member = inspect.getattr_static(capability, method_name, None)
            routine = _routine_of(member)
            if routine is None:
                continue
            if not isinstance(member, staticmethod):
                # drop self / cls from the declared signature
                routine = types.MethodType(routine, capability)
            found.append((method_name, getattr(target, method_name), routine))
        return found

    # -- description --------------------------------------------------------

    def describe(
            self,
            name: str,
            function: Callable[..., Any],
            declared: Optional[Callable[..., Any]] = None,
    ) -> OperationDescriptor:
        """Describe *function*; *declared* (the capability's callable, with
        ``self`` already bound) supplies the signature when the callable itself
        hides it."""
        source = declared if declared is not None else function
        try:
            signature = inspect.signature(source)
        except (TypeError, ValueError) as exc:
            raise IneligibleOperationError(f"Cannot read the signature of '{name}': {exc}") from exc
        hints = _type_hints(declared if declared is not None else function)
        bound_to = getattr(function, "__self__", None)
        if bound_to is None or inspect.ismodule(bound_to):
            owner = None
        else:
            owner = bound_to if isinstance(bound_to, type) else target_class(bound_to)

        arguments: List[ArgumentDescriptor] = []
        for param in signature.parameters.values():
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            if param.kind is param.KEYWORD_ONLY:
                if param.default is param.empty:
                    raise IneligibleOperationError(
                        f"Keyword-only parameter '{param.name}' of '{name}' has no default."
                    )
                continue
            info = parameter_info(
                param.name, hints.get(param.name, param.annotation),
                can_process_message_list=self.can_process_message_list,
            )
            role = self.roles.resolve(info) or ArgumentRole.PAYLOAD
            arguments.append(_argument(info, len(arguments), role))

        settings = expression_invoker_of(function, owner)
        return OperationDescriptor(
            name=name,
            function=function,
            arguments=tuple(arguments),
            markers=markers_of(function),
            is_default=is_default(function),
            expression_only=settings is not None or any(a.relative_path for a in arguments),
            evaluator_mode=settings.mode if settings is not None else None,
            returns_value=not returns_none(declared if declared is not None else function),
            owner=owner,
        )


def describe_callable(
        function: Callable[..., Any],
        *,
        can_process_message_list: bool = False,
        roles: Optional[RoleRegistry] = None,
) -> OperationDescriptor:
    """Descriptor for an explicitly selected operation."""
    if not callable(function):
        raise DispatchConfigurationError(f"{function!r} is not callable")
    source = IntrospectingOperationSource(can_process_message_list=can_process_message_list, roles=roles)
    return source.describe(getattr(function, "__name__", "__call__"), function)


__all__ = [
    "ArgumentDescriptor",
    "OperationDescriptor",
    "IntrospectingOperationSource",
    "describe_callable",
    "default_unwrap",
    "target_class",
    "capability_surface",
    "parameter_info",
]
