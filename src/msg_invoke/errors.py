"""Exception hierarchy for dispatch and invocation.

Three families, matching the three ways a call can go wrong:

* ``DispatchConfigurationError`` – the target was wired badly.  Raised while
  the dispatch table is built, before any message is processed.
* ``MessageHandlingError`` – a particular message could not be handled.
  ``ArgumentResolutionError`` and ``MessageConversionError`` are the
  *recoverable* members: the engine answers them by falling back to the
  binding expression.
* ``InvocationStateError`` – an invalid-state failure.  Recoverable only when
  its ``origin`` is the structured invoker itself and its message reports a
  type mismatch or a class cast.

Errors raised by the target's own code are never wrapped in any of these.
"""

from __future__ import annotations

from typing import Any, Optional


class MessagingError(Exception):
    """Root of every error raised by ``msg_invoke``."""


# ─────────────────────────────────────────────────────────────────────────────
# Build-time
# ─────────────────────────────────────────────────────────────────────────────


class DispatchConfigurationError(MessagingError, ValueError):
    """The target cannot be turned into a usable dispatch table."""


class IneligibleOperationError(DispatchConfigurationError):
    """A single operation cannot be bound to a message (e.g. two parameters
    both claim the payload)."""


class AmbiguousParameterTypeError(DispatchConfigurationError):
    """Two candidates share a dispatch key within one tier."""


class NoEligibleOperationsError(DispatchConfigurationError):
    """The target exposes nothing that can handle a message."""


class DuplicateDefaultError(DispatchConfigurationError):
    """More than one operation is marked ``@default``."""


# ─────────────────────────────────────────────────────────────────────────────
# Invocation-time
# ─────────────────────────────────────────────────────────────────────────────


class MessageHandlingError(MessagingError):
    """Failure while handling one particular message."""


class NoCandidateError(MessageHandlingError):
    """No candidate matches the incoming payload and no default exists."""


class MissingHeaderError(MessageHandlingError):
    """A required header is absent from the incoming message."""

    def __init__(self, header: str) -> None:
        self.header = header
        super().__init__(f"required header not available: {header}")


class InvalidUnitError(MessageHandlingError):
    """An accessor was used on the wrong kind of unit (single vs. batch)."""


class ArgumentResolutionError(MessageHandlingError):
    """An argument could not be produced for a parameter.  Recoverable."""


class MessageConversionError(MessageHandlingError):
    """An argument could not be converted to its declared type.  Recoverable
    unless a converter was not found at all."""


class ResultConversionError(MessageHandlingError):
    """The operation's result could not be coerced to the expected type."""


class ExpressionEvaluationError(MessageHandlingError):
    """The binding expression itself failed to parse or evaluate."""


class InvocationStateError(MessagingError, RuntimeError):
    """Invalid state detected while invoking an operation.

    Attributes:
        origin: The component that raised it.  The engine only treats the
                error as recoverable when the origin is the structured invoker.
    """

    def __init__(self, message: str, origin: Optional[Any] = None) -> None:
        self.origin = origin
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# Converter capability
# ─────────────────────────────────────────────────────────────────────────────


class ConversionError(MessagingError):
    """Base for failures reported by a ``Converter``."""


class ConversionFailedError(ConversionError):
    """A converter exists for the target type but rejected the value."""


class ConverterNotFoundError(ConversionError):
    """No converter exists for the requested target type."""
