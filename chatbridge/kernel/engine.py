"""
This module defines the chat engine facade.
It owns the lifecycle state of one native engine, decides which operations
are legal in which state, validates input before it reaches the bridge and
republishes bridge callbacks as typed events on an EventChannel.
"""
from typing import Any, Awaitable, Callable, Optional, Union

from chatbridge.internal.logging import get_logger
from chatbridge.kernel.contracts import (
    ChatBridge,
    ChatEngineError,
    DomainError,
    EngineConfiguration,
    EngineState,
    ErrorCode,
    GenerationMetrics,
    GenerationRequest,
    StreamingResponse,
)
from chatbridge.kernel.events import EventChannel, EventName, Handler, Subscription
from chatbridge.kernel.policy import policy_for
from chatbridge.kernel.validation import (
    format_field_errors,
    validate_configuration,
    validate_generation_text,
)

_LIVE_STATES = (EngineState.READY, EngineState.GENERATING)


def _describe(cause: BaseException) -> str:
    return str(cause) or cause.__class__.__name__


class ChatEngine:
    """
    Client-side facade over a ChatBridge.

    One instance serves one conversation session:
    UNINITIALIZED -> INITIALIZING -> READY <-> GENERATING -> DESTROYED.
    At most one generation is in flight; DESTROYED is final.
    """

    def __init__(self, bridge: ChatBridge, events: Optional[EventChannel] = None):
        self.logger = get_logger(self.__class__.__name__)
        self.bridge = bridge
        self.events = events if events is not None else EventChannel()
        self._state = EngineState.UNINITIALIZED
        # Whether responses for the latest request are still expected
        self._request_open = False
        self._metrics_pending = False
        self._last_response_length = 0
        # Incremented per accepted request
        self._generation = 0
        self.bridge.attach(self)

    @property
    def state(self) -> EngineState:
        return self._state

    async def __aenter__(self) -> "ChatEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.destroy()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, config: EngineConfiguration) -> None:
        """
        Validate `config` and create the native engine.

        Raises:
            ChatEngineError: ENGINE_DESTROYED, ALREADY_INITIALIZED,
                CONFIGURATION_INVALID (listing every invalid field) or
                INITIALIZATION_FAILED when the bridge refuses.
        """
        if self._state is EngineState.DESTROYED:
            raise self._reject(
                ErrorCode.ENGINE_DESTROYED,
                "ChatEngine has been destroyed and cannot be reinitialized",
            )
        if self._state is not EngineState.UNINITIALIZED:
            raise self._reject(ErrorCode.ALREADY_INITIALIZED, "ChatEngine is already initialized")

        field_errors = validate_configuration(config)
        if field_errors:
            raise self._reject(
                ErrorCode.CONFIGURATION_INVALID,
                f"Configuration validation failed: {format_field_errors(field_errors)}",
                field_errors,
            )

        self._set_state(EngineState.INITIALIZING)
        try:
            await self.bridge.create_engine(config)
        except Exception as e:
            if self._state is EngineState.INITIALIZING:
                self._set_state(EngineState.UNINITIALIZED)
            self._handle_failure("initialize", e)

        if self._state is EngineState.DESTROYED:
            # destroy() ran while the native engine was being created
            await self._call_bridge("destroy", self.bridge.destroy_engine)
            raise self._reject(
                ErrorCode.ENGINE_DESTROYED,
                "ChatEngine was destroyed during initialization",
            )

        self._set_state(EngineState.READY)
        self.logger.info(
            "Chat engine ready",
            model_path=config.model_path,
            backend=int(config.backend),
            max_tokens=config.max_tokens,
            thread_count=config.thread_count,
        )
        self.events.publish(EventName.READY)

    async def destroy(self) -> None:
        """
        Release the native engine. Safe to call any number of times.
        """
        if self._state is EngineState.DESTROYED:
            return

        previous = self._state
        self._set_state(EngineState.DESTROYED)
        self._request_open = False
        self._metrics_pending = False

        if previous in _LIVE_STATES:
            await self._call_bridge("destroy", self.bridge.destroy_engine)
        if previous is EngineState.GENERATING:
            self.events.publish(EventName.GENERATING, False)

        self.bridge.detach()
        self.logger.info("Chat engine destroyed", previous_state=previous.value)

    async def is_ready(self) -> bool:
        if self._state not in _LIVE_STATES:
            return False
        return bool(await self._call_bridge("is_ready", self.bridge.is_ready))

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_async(self, text: str) -> None:
        """
        Start generating an answer for `text`.

        Returns once the bridge accepted the request. Partial and final
        answers arrive as `response` events; `generating` flips back to
        False only after the final response, an engine error, stop or
        destroy.
        """
        if self._state is EngineState.DESTROYED:
            raise self._reject(ErrorCode.ENGINE_DESTROYED, "ChatEngine has been destroyed")
        if self._state is EngineState.GENERATING:
            raise self._reject(ErrorCode.GENERATION_IN_PROGRESS, "A generation is already in progress")
        if self._state is not EngineState.READY:
            raise self._reject(
                ErrorCode.NOT_INITIALIZED,
                "ChatEngine must be initialized before generating responses",
            )

        field_errors = validate_generation_text(text)
        if field_errors:
            raise self._reject(
                ErrorCode.INPUT_INVALID,
                f"Input validation failed: {format_field_errors(field_errors)}",
                field_errors,
            )

        request = GenerationRequest(text=text)
        self._generation += 1
        generation = self._generation
        self._set_state(EngineState.GENERATING)
        self._request_open = True
        self._metrics_pending = True
        self._last_response_length = 0
        self.events.publish(EventName.GENERATING, True)

        try:
            await self.bridge.generate_async(request.text)
        except Exception as e:
            if self._state is EngineState.GENERATING and generation == self._generation:
                self._finish_generation()
            self._handle_failure("generate_async", e)

    async def stop_generation(self) -> None:
        """
        Ask the engine to abort the running generation. Local state returns
        to READY before the bridge is asked, whatever it answers; a late
        response may still be delivered afterwards.
        """
        if self._state is not EngineState.GENERATING:
            self.logger.debug("stop_generation ignored", state=self._state.value)
            return

        # Reset before suspending so a request accepted meanwhile keeps its state
        self._set_state(EngineState.READY)
        self.events.publish(EventName.GENERATING, False)

        await self._call_bridge("stop_generation", self.bridge.stop_generation)
        self.logger.info("Generation stopped")

    async def is_generating(self) -> bool:
        if self._state not in _LIVE_STATES:
            return False
        return bool(await self._call_bridge("is_generating", self.bridge.is_generating))

    # ------------------------------------------------------------------
    # Queries and housekeeping
    # ------------------------------------------------------------------

    async def clear_history(self) -> None:
        if self._state in _LIVE_STATES:
            await self._call_bridge("clear_history", self.bridge.clear_history)

    async def get_model_info(self) -> str:
        if self._state is EngineState.DESTROYED:
            raise self._reject(ErrorCode.ENGINE_DESTROYED, "ChatEngine has been destroyed")
        if self._state not in _LIVE_STATES:
            raise self._reject(
                ErrorCode.NOT_INITIALIZED,
                "ChatEngine must be initialized before getting model info",
            )
        return await self._call_bridge("get_model_info", self.bridge.get_model_info)

    async def get_debug_message(self) -> str:
        if self._state not in _LIVE_STATES:
            return ""
        return await self._call_bridge("get_debug_message", self.bridge.get_debug_message)

    async def get_debug_history(self) -> str:
        if self._state not in _LIVE_STATES:
            return ""
        return await self._call_bridge("get_debug_history", self.bridge.get_debug_history)

    async def clear_debug_history(self) -> None:
        if self._state in _LIVE_STATES:
            await self._call_bridge("clear_debug_history", self.bridge.clear_debug_history)

    async def log_message(self, text: str) -> None:
        if self._state in _LIVE_STATES:
            await self._call_bridge("log_message", lambda: self.bridge.log_message(text))

    async def test_connectivity(self) -> Union[int, float]:
        """Liveness probe; allowed in every state."""
        return await self._call_bridge("test_connectivity", self.bridge.test_connectivity)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, event_name, handler: Handler) -> Subscription:
        return self.events.subscribe(event_name, handler)

    def unsubscribe(self, subscription: Optional[Subscription]) -> None:
        if subscription is not None:
            subscription.unsubscribe()

    def unsubscribe_all(self, event_name) -> None:
        self.events.unsubscribe_all(event_name)

    # ------------------------------------------------------------------
    # BridgeEventSink
    # ------------------------------------------------------------------

    def on_response(self, response: StreamingResponse) -> None:
        if self._state is EngineState.DESTROYED:
            self.logger.debug("Dropping response after destroy")
            return
        if not self._request_open:
            self.logger.debug("Dropping response for a completed request", is_final=response.is_final)
            return

        length = len(response.accumulated_text)
        if length < self._last_response_length:
            self.logger.warning(
                "Streaming response shorter than its predecessor",
                previous_length=self._last_response_length,
                length=length,
            )
        self._last_response_length = length

        if not response.is_final:
            self.events.publish(EventName.RESPONSE, response)
            return

        self._request_open = False
        if self._state is EngineState.GENERATING:
            self._set_state(EngineState.READY)
            self.events.publish(EventName.RESPONSE, response)
            self.events.publish(EventName.GENERATING, False)
        else:
            # Straggler after stop_generation
            self.events.publish(EventName.RESPONSE, response)

    def on_metrics(self, metrics: GenerationMetrics) -> None:
        if self._state is EngineState.DESTROYED or not self._metrics_pending:
            self.logger.debug("Dropping unexpected metrics", state=self._state.value)
            return
        self._metrics_pending = False
        self.logger.info(
            "Generation metrics",
            total_time_ms=metrics.total_time_ms,
            tokens_per_second=metrics.tokens_per_second,
            decode_tokens=metrics.decode_tokens,
        )
        self.events.publish(EventName.METRICS, metrics)

    def on_error(self, message: str, cause: Any = None) -> None:
        if self._state is EngineState.DESTROYED:
            self.logger.debug("Dropping engine error after destroy", message=message)
            return

        code = ErrorCode.BRIDGE_CALL_FAILED
        if self._state is EngineState.GENERATING:
            code = ErrorCode.GENERATION_FAILED
            self._finish_generation()
        elif self._request_open:
            code = ErrorCode.GENERATION_FAILED
            self._request_open = False

        self._report(DomainError(code=code, message=message, cause=cause))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_state(self, new_state: EngineState) -> None:
        if new_state is self._state:
            return
        self.logger.debug("Engine state transition", from_state=self._state.value, to_state=new_state.value)
        self._state = new_state

    def _finish_generation(self) -> None:
        self._set_state(EngineState.READY)
        self._request_open = False
        self._metrics_pending = False
        self.events.publish(EventName.GENERATING, False)

    def _reject(self, code: ErrorCode, message: str, cause: Any = None) -> ChatEngineError:
        self.logger.info("Operation rejected", code=code.value, reason=message)
        return ChatEngineError(code, message, cause)

    def _report(self, error: DomainError) -> None:
        self.logger.warning(
            "Engine failure",
            code=error.code.value,
            reason=error.message,
            cause=repr(error.cause),
        )
        self.events.publish(EventName.ERROR, error)

    def _handle_failure(self, operation: str, cause: Exception) -> Any:
        policy = policy_for(operation)
        error = DomainError(
            code=policy.code,
            message=f"{policy.summary}: {_describe(cause)}",
            cause=cause,
        )
        self._report(error)
        if policy.propagates:
            raise ChatEngineError(error.code, error.message, cause) from cause
        return policy.default

    async def _call_bridge(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await call()
        except Exception as e:
            return self._handle_failure(operation, e)
