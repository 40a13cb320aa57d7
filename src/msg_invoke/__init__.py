from .core import (
    CONTENT_TYPE,
    ArgumentRole,
    EvaluatorMode,
    IncomingUnit,
    Lifecycle,
    Message,
    RequestReplyExchanger,
    Role,
    Void,
)
from .discovery import RescuePolicy
from .engine import FAILED_ATTEMPTS_THRESHOLD, InvocationEngine
from .errors import (
    AmbiguousParameterTypeError,
    ArgumentResolutionError,
    DispatchConfigurationError,
    DuplicateDefaultError,
    ExpressionEvaluationError,
    IneligibleOperationError,
    InvocationStateError,
    MessageConversionError,
    MessageHandlingError,
    MessagingError,
    MissingHeaderError,
    NoCandidateError,
    NoEligibleOperationsError,
    ResultConversionError,
)
from .factory import build_default_engine
from .markers import (
    Header,
    Headers,
    Marker,
    Payload,
    Payloads,
    default,
    router,
    service_activator,
    splitter,
    transformer,
    use_expression_invoker,
)

__all__ = [
    "CONTENT_TYPE",
    "FAILED_ATTEMPTS_THRESHOLD",
    "ArgumentRole",
    "EvaluatorMode",
    "IncomingUnit",
    "InvocationEngine",
    "Lifecycle",
    "Message",
    "RequestReplyExchanger",
    "RescuePolicy",
    "Role",
    "Void",
    "build_default_engine",
    # markers
    "Header",
    "Headers",
    "Marker",
    "Payload",
    "Payloads",
    "default",
    "router",
    "service_activator",
    "splitter",
    "transformer",
    "use_expression_invoker",
    # errors
    "AmbiguousParameterTypeError",
    "ArgumentResolutionError",
    "DispatchConfigurationError",
    "DuplicateDefaultError",
    "ExpressionEvaluationError",
    "IneligibleOperationError",
    "InvocationStateError",
    "MessageConversionError",
    "MessageHandlingError",
    "MessagingError",
    "MissingHeaderError",
    "NoCandidateError",
    "NoEligibleOperationsError",
    "ResultConversionError",
]
