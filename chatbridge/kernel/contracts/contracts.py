from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Protocol, Union


class BackendType(IntEnum):
    CPU = 0
    GPU = 1


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    GENERATING = "generating"
    DESTROYED = "destroyed"


class ErrorCode(str, Enum):
    CONFIGURATION_INVALID = "CONFIGURATION_INVALID"
    INPUT_INVALID = "INPUT_INVALID"
    ALREADY_INITIALIZED = "ALREADY_INITIALIZED"
    NOT_INITIALIZED = "NOT_INITIALIZED"
    ENGINE_DESTROYED = "ENGINE_DESTROYED"
    GENERATION_IN_PROGRESS = "GENERATION_IN_PROGRESS"
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"
    GENERATION_FAILED = "GENERATION_FAILED"
    BRIDGE_CALL_FAILED = "BRIDGE_CALL_FAILED"
    CONNECTIVITY_TEST_FAILED = "CONNECTIVITY_TEST_FAILED"


@dataclass(frozen=True)
class EngineConfiguration:
    """
    Settings handed to the native engine on creation.

    Construction performs no checks so that every invalid field can be
    reported at once by the validator; the facade validates before use.
    """
    model_path: str
    backend: Union[BackendType, int] = BackendType.CPU
    max_tokens: int = 1024
    temperature: float = 0.7
    thread_count: int = 4


@dataclass(frozen=True)
class GenerationRequest:
    text: str


@dataclass(frozen=True)
class StreamingResponse:
    """
    One step of a streamed answer. `accumulated_text` is the whole answer
    so far, not a delta.
    """
    accumulated_text: str
    is_final: bool = False


@dataclass(frozen=True)
class GenerationMetrics:
    total_time_ms: float = 0.0
    prefill_time_ms: float = 0.0
    decode_time_ms: float = 0.0
    tokens_per_second: float = 0.0
    prefill_tokens: int = 0
    decode_tokens: int = 0


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str
    value: Any = None


@dataclass(frozen=True)
class DomainError:
    """
    A normalized failure. Published as data on the `error` channel and
    carried by ChatEngineError when an operation is rejected.
    """
    code: ErrorCode
    message: str
    cause: Any = field(default=None, compare=False)


class ChatEngineError(Exception):
    """Raised when the facade rejects an operation."""

    def __init__(self, code: ErrorCode, message: str, cause: Any = None):
        super().__init__(message)
        self.error = DomainError(code=code, message=message, cause=cause)

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @property
    def message(self) -> str:
        return self.error.message

    def __str__(self) -> str:
        return f"[{self.error.code.value}] {self.error.message}"


class BridgeEventSink(Protocol):
    """
    Receives asynchronous notifications from a bridge. The engine facade
    implements this and attaches itself to the bridge it is given.
    """

    def on_response(self, response: StreamingResponse) -> None:
        ...

    def on_metrics(self, metrics: GenerationMetrics) -> None:
        ...

    def on_error(self, message: str, cause: Any = None) -> None:
        ...


class ChatBridge(Protocol):
    """
    Defines the contract for the native chat engine collaborator.
    The facade interacts with the engine ONLY through this interface.
    """

    def attach(self, sink: BridgeEventSink) -> None:
        """
        Register the receiver of streaming responses, metrics and error
        notifications. A bridge holds at most one sink.
        """
        ...

    def detach(self) -> None:
        ...

    async def create_engine(self, config: EngineConfiguration) -> None:
        """
        Create and load the native engine. Only called with a configuration
        that passed validation.
        """
        ...

    async def destroy_engine(self) -> None:
        ...

    async def is_ready(self) -> bool:
        ...

    async def generate_async(self, text: str) -> None:
        """
        Start generating an answer for `text`. Returns once the request has
        been accepted; results arrive through the attached sink.
        """
        ...

    async def stop_generation(self) -> None:
        ...

    async def is_generating(self) -> bool:
        ...

    async def clear_history(self) -> None:
        ...

    async def get_model_info(self) -> str:
        ...

    async def get_debug_message(self) -> str:
        ...

    async def get_debug_history(self) -> str:
        ...

    async def clear_debug_history(self) -> None:
        ...

    async def log_message(self, text: str) -> None:
        ...

    async def test_connectivity(self) -> Union[int, float]:
        """
        Liveness probe that does not depend on an engine having been created.
        """
        ...
