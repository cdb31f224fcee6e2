import asyncio
from typing import Any, Callable, List, Optional

from chatbridge.kernel.contracts import (
    BridgeEventSink,
    EngineConfiguration,
    EngineState,
    GenerationMetrics,
    StreamingResponse,
)
from chatbridge.kernel.engine import ChatEngine
from chatbridge.kernel.events import EventName


class MockChatBridge:
    """A scriptable ChatBridge for testing."""
    def __init__(self, auto_responses: Optional[List[StreamingResponse]] = None, auto_metrics: Optional[GenerationMetrics] = None):
        self.sink: Optional[BridgeEventSink] = None
        self.calls: List[tuple] = []
        self.attach_calls = 0
        self.detach_calls = 0
        self.failing_operations: set = set()
        self.ready = True
        self.generating = False
        self.model_info = '{"model": "mock-model.bin"}'
        self.connectivity_result = 42
        self.debug_history: List[str] = []
        # When set, create_engine waits on it
        self.create_gate: Optional[asyncio.Event] = None
        # When set, stop_generation waits on it
        self.stop_gate: Optional[asyncio.Event] = None
        # Called from inside stop_generation, before it returns
        self.on_stop: Optional[Callable[[], None]] = None
        # Emitted with call_soon after every accepted generate_async
        self._auto_responses = auto_responses or []
        self._auto_metrics = auto_metrics

    # --- helpers ---

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        if operation in self.failing_operations:
            raise RuntimeError(f"Mock {operation} error")

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def emit_response(self, text: str, is_final: bool = False) -> None:
        if self.sink is not None:
            self.sink.on_response(StreamingResponse(accumulated_text=text, is_final=is_final))

    def emit_metrics(self, metrics: Optional[GenerationMetrics] = None) -> None:
        if self.sink is not None:
            self.sink.on_metrics(metrics or GenerationMetrics(total_time_ms=10.0, decode_tokens=3))

    def emit_error(self, message: str, cause: Any = None) -> None:
        if self.sink is not None:
            self.sink.on_error(message, cause)

    def _play_script(self) -> None:
        loop = asyncio.get_running_loop()
        for response in self._auto_responses:
            loop.call_soon(self.emit_response, response.accumulated_text, response.is_final)
        if self._auto_metrics is not None:
            loop.call_soon(self.emit_metrics, self._auto_metrics)

    # --- ChatBridge ---

    def attach(self, sink: BridgeEventSink) -> None:
        self.attach_calls += 1
        self.sink = sink

    def detach(self) -> None:
        self.detach_calls += 1
        self.sink = None

    async def create_engine(self, config: EngineConfiguration) -> None:
        self._record("create_engine", config)
        if self.create_gate is not None:
            await self.create_gate.wait()

    async def destroy_engine(self) -> None:
        self._record("destroy_engine")

    async def is_ready(self) -> bool:
        self._record("is_ready")
        return self.ready

    async def generate_async(self, text: str) -> None:
        self._record("generate_async", text)
        self.generating = True
        self._play_script()

    async def stop_generation(self) -> None:
        self._record("stop_generation")
        if self.stop_gate is not None:
            await self.stop_gate.wait()
        self.generating = False
        if self.on_stop is not None:
            self.on_stop()

    async def is_generating(self) -> bool:
        self._record("is_generating")
        return self.generating

    async def clear_history(self) -> None:
        self._record("clear_history")

    async def get_model_info(self) -> str:
        self._record("get_model_info")
        return self.model_info

    async def get_debug_message(self) -> str:
        self._record("get_debug_message")
        return self.debug_history[-1] if self.debug_history else ""

    async def get_debug_history(self) -> str:
        self._record("get_debug_history")
        return "\n".join(self.debug_history)

    async def clear_debug_history(self) -> None:
        self._record("clear_debug_history")
        self.debug_history.clear()

    async def log_message(self, text: str) -> None:
        self._record("log_message", text)
        self.debug_history.append(text)

    async def test_connectivity(self) -> int:
        self._record("test_connectivity")
        return self.connectivity_result


class EventRecorder:
    """
    Subscribes to every event of an engine and records
    (event name, payload, engine state at delivery).
    """
    def __init__(self, engine: ChatEngine):
        self.engine = engine
        self.events: List[tuple] = []
        self.subscriptions = []
        for name in EventName:
            if name is EventName.READY:
                handler = self._ready_handler()
            else:
                handler = self._payload_handler(name)
            self.subscriptions.append(engine.subscribe(name, handler))

    def _ready_handler(self):
        def handler():
            self.events.append((EventName.READY.value, None, self.engine.state))
        return handler

    def _payload_handler(self, name: EventName):
        def handler(payload):
            self.events.append((name.value, payload, self.engine.state))
        return handler

    def names(self) -> List[str]:
        return [name for name, _, _ in self.events]

    def payloads(self, name: str) -> list:
        return [payload for event_name, payload, _ in self.events if event_name == name]

    def of(self, name: str) -> List[tuple]:
        return [event for event in self.events if event[0] == name]


def valid_configuration(**changes) -> EngineConfiguration:
    values = dict(
        model_path="/models/gemma-3n.litertlm",
        backend=0,
        max_tokens=512,
        temperature=0.8,
        thread_count=4,
    )
    values.update(changes)
    return EngineConfiguration(**values)


def assert_state(engine: ChatEngine, state: EngineState) -> None:
    assert engine.state is state, f"expected {state}, engine is {engine.state}"
