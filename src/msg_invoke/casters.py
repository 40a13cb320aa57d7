"""Built-in scalar casters used by ``DefaultConverter``.

Scalars are cast directly rather than validated, so that header values such
as ``"42"`` or ``"true"`` reach ``int`` / ``bool`` parameters the way they
would from a text-based transport.

Exports
-------
BUILTIN_CASTERS
    Dictionary mapping target types to caster functions.
    Default types: int, float, bool, str, bytes.

Custom casters can be registered by passing a custom casters dict to
``DefaultConverter(casters=...)`` or ``build_default_engine(converter=...)``.
"""

from __future__ import annotations

from typing import Any, Callable

_TRUE = frozenset({"true", "yes", "on", "1"})
_FALSE = frozenset({"false", "no", "off", "0", ""})


def _to_bool(x: Any) -> bool:
    if isinstance(x, str):
        text = x.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"cannot interpret {x!r} as a boolean")
    return bool(int(x)) if isinstance(x, int) else bool(x)


def _to_bytes(x: Any) -> bytes:
    return x.encode("utf-8") if isinstance(x, str) else bytes(x)


def _to_str(x: Any) -> str:
    return x.decode("utf-8") if isinstance(x, (bytes, bytearray)) else str(x)


# ─────────────────────────────────────────────────────────────────────────────
# Built-in casters
# ─────────────────────────────────────────────────────────────────────────────

BUILTIN_CASTERS: dict[type, Callable[[Any], Any]] = {
    int: lambda x: int(x),
    float: lambda x: float(x),
    bool: _to_bool,
    str: _to_str,
    bytes: _to_bytes,
}
