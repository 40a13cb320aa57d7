"""Dispatch table: dispatch-key → candidate maps, one set per tier."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .candidates import Candidate
from .core import Role
from .errors import AmbiguousParameterTypeError


def _key_name(key: Any) -> str:
    return getattr(key, "__qualname__", repr(key))


class Tier:
    """Payload-keyed and message-keyed maps for one ``Role``.

    ``add(..., eager=True)`` raises on a duplicate key; otherwise the first
    conflict is recorded and only reported if the tier is ever used.
    """

    def __init__(self, role: Role) -> None:
        self.role = role
        self.payload_map: Dict[Any, Candidate] = {}
        self.message_map: Dict[Any, Candidate] = {}
        self.conflicts: List[str] = []

    def add(self, candidate: Candidate, *, eager: bool) -> None:
        mapping = self.message_map if candidate.accepts_whole_message else self.payload_map
        existing = mapping.get(candidate.dispatch_key)
        if existing is None:
            mapping[candidate.dispatch_key] = candidate
            return
        message = (
            f"Found more than one method match for type [{_key_name(candidate.dispatch_key)}]: "
            f"'{existing}' and '{candidate}'"
        )
        if eager:
            raise AmbiguousParameterTypeError(message)
        self.conflicts.append(message)

    def candidates(self) -> List[Candidate]:
        return [*self.payload_map.values(), *self.message_map.values()]

    def __len__(self) -> int:
        return len(self.payload_map) + len(self.message_map)


@dataclass(frozen=True)
class DispatchTable:
    """Build-time result consumed by the resolver.

    Attributes:
        maps:      Active tier's maps in lookup order (payload-keyed first).
        role:      Which tier is active.
        single:    The only candidate, when the target was narrowed to one.
        default:   The ``@default`` candidate, if any.
        ambiguity: First unresolved duplicate of the active fallback tier.
    """

    maps: Tuple[Mapping[Any, Candidate], ...]
    role: Role = Role.PRIMARY
    single: Optional[Candidate] = None
    default: Optional[Candidate] = None
    ambiguity: Optional[str] = None
    candidates: Tuple[Candidate, ...] = field(default=(), repr=False)

    @classmethod
    def from_tier(cls, tier: Tier, default: Optional[Candidate] = None) -> 'DispatchTable':
        candidates = tuple(tier.candidates())
        ambiguity = tier.conflicts[0] if tier.conflicts else None
        return cls(
            maps=(dict(tier.payload_map), dict(tier.message_map)),
            role=tier.role,
            single=candidates[0] if len(candidates) == 1 and ambiguity is None else None,
            default=default,
            ambiguity=ambiguity,
            candidates=candidates,
        )

    @classmethod
    def for_single(cls, candidate: Candidate) -> 'DispatchTable':
        tier = Tier(candidate.role)
        tier.add(candidate, eager=True)
        return cls.from_tier(tier, default=candidate if candidate.is_default else None)

    def lookup(self, key: Any) -> Optional[Candidate]:
        """Exact-key lookup across the active maps, in order."""
        for mapping in self.maps:
            candidate = mapping.get(key)
            if candidate is not None:
                return candidate
        return None
