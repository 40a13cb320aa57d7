"""Resolver: incoming unit → candidate.

Lookup order for ``Resolver.resolve(unit)``:

1. The single candidate, when the target was narrowed to one at build time.
2. Nearest-supertype match of the unit's payload type, payload-keyed map
   first, then message-keyed map.
3. The ``Iterator``-keyed candidate, for iterable payloads.
4. The ``Void``-keyed candidate.
5. The ``@default`` candidate.

Otherwise ``NoCandidateError``.
"""

from __future__ import annotations

from collections import abc
from typing import Any, Mapping, Optional, Tuple

from .candidates import Candidate
from .core import IncomingUnit, Void
from .errors import AmbiguousParameterTypeError, NoCandidateError
from .table import DispatchTable

_NOT_ITERABLE = (str, bytes, bytearray, memoryview, abc.Mapping)


def type_distance(payload_type: type, key: Any) -> Optional[float]:
    """How far *key* is from *payload_type*, or ``None`` if unrelated.

    The distance is the key's index in the payload type's MRO.  A key that is
    only a *virtual* supertype (an ABC the class is registered with, or that
    matches structurally) ranks half a step after the deepest MRO class that
    is still its subclass.
    """
    if not isinstance(key, type):
        return None
    mro = payload_type.__mro__
    if key in mro:
        return float(mro.index(key))
    try:
        if not issubclass(payload_type, key):
            return None
        deepest = max(i for i, cls in enumerate(mro) if issubclass(cls, key))
    except TypeError:
        return None
    return deepest + 0.5


def _rank(payload_type: type, key: Any) -> Optional[Tuple[float, int, str]]:
    distance = type_distance(payload_type, key)
    if distance is None:
        return None
    return distance, -len(key.__mro__), f"{key.__module__}.{key.__qualname__}"


def closest_match(candidates: Mapping[Any, Candidate], payload_type: type) -> Optional[Candidate]:
    """Candidate whose key is the nearest supertype of *payload_type*.

    Ties (two ABCs at the same distance) go to the more specific key, then to
    the key's qualified name, so the answer never depends on map order.
    """
    best: Optional[Candidate] = None
    best_rank: Optional[Tuple[float, int, str]] = None
    for key, candidate in candidates.items():
        if key is Void:
            continue
        rank = _rank(payload_type, key)
        if rank is not None and (best_rank is None or rank < best_rank):
            best, best_rank = candidate, rank
    return best


class Resolver:
    """Read-only view over a ``DispatchTable``; safe to share between threads."""

    def __init__(self, table: DispatchTable) -> None:
        self.table = table

    def resolve(self, unit: IncomingUnit) -> Candidate:
        table = self.table
        if table.single is not None:
            return table.single
        if table.ambiguity is not None:
            raise AmbiguousParameterTypeError(table.ambiguity)

        payload_type = unit.first_parameter_type
        for mapping in table.maps:
            candidate = closest_match(mapping, payload_type)
            if candidate is not None:
                return candidate

        if issubclass(payload_type, abc.Iterable) and not issubclass(payload_type, _NOT_ITERABLE):
            candidate = table.lookup(abc.Iterator)
            if candidate is not None:
                return candidate

        candidate = table.lookup(Void) or table.default
        if candidate is None:
            raise NoCandidateError(
                f"No candidate methods found for messages with payload type [{payload_type.__qualname__}]."
            )
        return candidate
