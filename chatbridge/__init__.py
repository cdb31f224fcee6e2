"""
chatbridge: an asynchronous client facade for a native chat engine.
"""
from chatbridge.kernel.contracts import (
    BackendType,
    ChatBridge,
    ChatEngineError,
    DomainError,
    EngineConfiguration,
    EngineState,
    ErrorCode,
    GenerationMetrics,
    StreamingResponse,
)
from chatbridge.kernel.engine import ChatEngine
from chatbridge.kernel.events import EventChannel, EventName, Subscription

__all__ = [
    "BackendType",
    "ChatBridge",
    "ChatEngine",
    "ChatEngineError",
    "DomainError",
    "EngineConfiguration",
    "EngineState",
    "ErrorCode",
    "EventChannel",
    "EventName",
    "GenerationMetrics",
    "StreamingResponse",
    "Subscription",
]
