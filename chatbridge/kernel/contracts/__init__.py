from chatbridge.kernel.contracts.contracts import (
    BackendType,
    BridgeEventSink,
    ChatBridge,
    ChatEngineError,
    DomainError,
    EngineConfiguration,
    EngineState,
    ErrorCode,
    FieldError,
    GenerationMetrics,
    GenerationRequest,
    StreamingResponse,
)

__all__ = [
    "BackendType",
    "BridgeEventSink",
    "ChatBridge",
    "ChatEngineError",
    "DomainError",
    "EngineConfiguration",
    "EngineState",
    "ErrorCode",
    "FieldError",
    "GenerationMetrics",
    "GenerationRequest",
    "StreamingResponse",
]
