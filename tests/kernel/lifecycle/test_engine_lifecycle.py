import asyncio

import pytest

from chatbridge.kernel.contracts import ChatEngineError, EngineState, ErrorCode
from chatbridge.kernel.engine import ChatEngine
from tests.kernel.mocks import EventRecorder, MockChatBridge, assert_state, valid_configuration


# --- Construction ---

def test_engine_attaches_itself_to_the_bridge(engine, mock_bridge):
    assert mock_bridge.sink is engine
    assert mock_bridge.attach_calls == 1
    assert_state(engine, EngineState.UNINITIALIZED)


# --- initialize ---

@pytest.mark.asyncio
async def test_initialize_moves_to_ready_and_publishes_ready(engine, mock_bridge, recorder, valid_config):
    await engine.initialize(valid_config)

    assert_state(engine, EngineState.READY)
    assert mock_bridge.count("create_engine") == 1
    assert mock_bridge.calls[0] == ("create_engine", (valid_config,))
    # the state change is visible to the ready handler
    assert recorder.events == [("ready", None, EngineState.READY)]


@pytest.mark.asyncio
@pytest.mark.parametrize("field, value", [
    ("model_path", ""),
    ("backend", 3),
    ("max_tokens", 0),
    ("temperature", 2.0001),
    ("thread_count", -1),
])
async def test_initialize_rejects_each_invalid_field(engine, mock_bridge, recorder, field, value):
    with pytest.raises(ChatEngineError) as excinfo:
        await engine.initialize(valid_configuration(**{field: value}))

    assert excinfo.value.code is ErrorCode.CONFIGURATION_INVALID
    assert field in excinfo.value.message
    assert_state(engine, EngineState.UNINITIALIZED)
    assert mock_bridge.calls == []
    assert recorder.events == []


@pytest.mark.asyncio
async def test_initialize_reports_all_invalid_fields_in_one_message(engine, mock_bridge):
    config = valid_configuration(model_path="", backend=9, max_tokens=-1, temperature=-0.0001, thread_count=0)

    with pytest.raises(ChatEngineError) as excinfo:
        await engine.initialize(config)

    message = excinfo.value.message
    assert message.startswith("Configuration validation failed:")
    for field in ("model_path", "backend", "max_tokens", "temperature", "thread_count"):
        assert field in message
    assert [error.field for error in excinfo.value.error.cause] == [
        "model_path", "backend", "max_tokens", "temperature", "thread_count",
    ]
    assert mock_bridge.calls == []


@pytest.mark.asyncio
async def test_initialize_twice_rejects_with_already_initialized(engine, mock_bridge, valid_config):
    await engine.initialize(valid_config)

    with pytest.raises(ChatEngineError) as excinfo:
        await engine.initialize(valid_config)

    assert excinfo.value.code is ErrorCode.ALREADY_INITIALIZED
    assert_state(engine, EngineState.READY)
    assert mock_bridge.count("create_engine") == 1


@pytest.mark.asyncio
async def test_initialize_while_generating_rejects(engine, valid_config):
    await engine.initialize(valid_config)
    await engine.generate_async("hello")

    with pytest.raises(ChatEngineError) as excinfo:
        await engine.initialize(valid_config)

    assert excinfo.value.code is ErrorCode.ALREADY_INITIALIZED
    assert_state(engine, EngineState.GENERATING)


@pytest.mark.asyncio
async def test_initialize_while_initializing_rejects(engine, mock_bridge, valid_config):
    mock_bridge.create_gate = asyncio.Event()
    first = asyncio.create_task(engine.initialize(valid_config))
    await asyncio.sleep(0)
    assert_state(engine, EngineState.INITIALIZING)

    with pytest.raises(ChatEngineError) as excinfo:
        await engine.initialize(valid_config)
    assert excinfo.value.code is ErrorCode.ALREADY_INITIALIZED

    mock_bridge.create_gate.set()
    await first
    assert_state(engine, EngineState.READY)
    assert mock_bridge.count("create_engine") == 1


@pytest.mark.asyncio
async def test_initialize_after_destroy_rejects(engine, mock_bridge, valid_config):
    await engine.destroy()

    with pytest.raises(ChatEngineError) as excinfo:
        await engine.initialize(valid_config)

    assert excinfo.value.code is ErrorCode.ENGINE_DESTROYED
    assert_state(engine, EngineState.DESTROYED)
    assert mock_bridge.count("create_engine") == 0


@pytest.mark.asyncio
async def test_bridge_failure_during_initialize(engine, mock_bridge, recorder, valid_config):
    mock_bridge.failing_operations.add("create_engine")

    with pytest.raises(ChatEngineError) as excinfo:
        await engine.initialize(valid_config)

    assert excinfo.value.code is ErrorCode.INITIALIZATION_FAILED
    assert "Mock create_engine error" in excinfo.value.message
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert_state(engine, EngineState.UNINITIALIZED)

    errors = recorder.payloads("error")
    assert len(errors) == 1
    assert errors[0].code is ErrorCode.INITIALIZATION_FAILED
    assert errors[0].cause is excinfo.value.__cause__
    assert recorder.payloads("ready") == []


@pytest.mark.asyncio
async def test_initialize_can_be_retried_after_bridge_failure(engine, mock_bridge, valid_config):
    mock_bridge.failing_operations.add("create_engine")
    with pytest.raises(ChatEngineError):
        await engine.initialize(valid_config)

    mock_bridge.failing_operations.clear()
    await engine.initialize(valid_config)

    assert_state(engine, EngineState.READY)


@pytest.mark.asyncio
async def test_destroy_during_initialize_releases_the_native_engine(engine, mock_bridge, recorder, valid_config):
    mock_bridge.create_gate = asyncio.Event()
    pending = asyncio.create_task(engine.initialize(valid_config))
    await asyncio.sleep(0)

    await engine.destroy()
    assert_state(engine, EngineState.DESTROYED)
    assert mock_bridge.count("destroy_engine") == 0

    mock_bridge.create_gate.set()
    with pytest.raises(ChatEngineError) as excinfo:
        await pending

    assert excinfo.value.code is ErrorCode.ENGINE_DESTROYED
    assert mock_bridge.count("destroy_engine") == 1
    assert_state(engine, EngineState.DESTROYED)
    assert recorder.payloads("ready") == []


# --- destroy ---

@pytest.mark.asyncio
async def test_destroy_twice_is_a_no_op(engine, mock_bridge, valid_config):
    await engine.initialize(valid_config)

    await engine.destroy()
    await engine.destroy()

    assert_state(engine, EngineState.DESTROYED)
    assert mock_bridge.count("destroy_engine") == 1
    assert mock_bridge.detach_calls == 1
    assert mock_bridge.sink is None


@pytest.mark.asyncio
async def test_destroy_before_initialize_skips_the_bridge(engine, mock_bridge):
    await engine.destroy()

    assert_state(engine, EngineState.DESTROYED)
    assert mock_bridge.count("destroy_engine") == 0


@pytest.mark.asyncio
async def test_destroy_swallows_bridge_failure(engine, mock_bridge, recorder, valid_config):
    await engine.initialize(valid_config)
    mock_bridge.failing_operations.add("destroy_engine")

    await engine.destroy()

    assert_state(engine, EngineState.DESTROYED)
    errors = recorder.payloads("error")
    assert [error.code for error in errors] == [ErrorCode.BRIDGE_CALL_FAILED]


@pytest.mark.asyncio
async def test_destroy_while_generating_clears_the_generating_flag(engine, mock_bridge, recorder, valid_config):
    await engine.initialize(valid_config)
    await engine.generate_async("hello")

    await engine.destroy()

    assert recorder.payloads("generating") == [True, False]
    assert recorder.of("generating")[-1][2] is EngineState.DESTROYED
    assert mock_bridge.count("destroy_engine") == 1


@pytest.mark.asyncio
async def test_operations_after_destroy(engine, mock_bridge, valid_config):
    await engine.initialize(valid_config)
    await engine.destroy()
    calls_before = list(mock_bridge.calls)

    with pytest.raises(ChatEngineError) as excinfo:
        await engine.generate_async("hello")
    assert excinfo.value.code is ErrorCode.ENGINE_DESTROYED

    with pytest.raises(ChatEngineError) as excinfo:
        await engine.get_model_info()
    assert excinfo.value.code is ErrorCode.ENGINE_DESTROYED

    assert await engine.clear_history() is None
    assert await engine.stop_generation() is None
    assert await engine.get_debug_message() == ""
    assert await engine.get_debug_history() == ""
    assert await engine.clear_debug_history() is None
    assert await engine.log_message("after destroy") is None
    assert await engine.is_ready() is False
    assert await engine.is_generating() is False
    assert mock_bridge.calls == calls_before


@pytest.mark.asyncio
async def test_async_context_manager_destroys_on_exit(mock_bridge, valid_config):
    async with ChatEngine(mock_bridge) as engine:
        await engine.initialize(valid_config)
        assert_state(engine, EngineState.READY)

    assert_state(engine, EngineState.DESTROYED)
    assert mock_bridge.count("destroy_engine") == 1


# --- readiness ---

@pytest.mark.asyncio
async def test_is_ready_follows_the_lifecycle(engine, mock_bridge, valid_config):
    assert await engine.is_ready() is False
    assert mock_bridge.count("is_ready") == 0

    await engine.initialize(valid_config)
    assert await engine.is_ready() is True

    mock_bridge.ready = False
    assert await engine.is_ready() is False

    await engine.destroy()
    assert await engine.is_ready() is False


@pytest.mark.asyncio
async def test_operations_before_initialize(engine, mock_bridge):
    with pytest.raises(ChatEngineError) as excinfo:
        await engine.generate_async("hello")
    assert excinfo.value.code is ErrorCode.NOT_INITIALIZED

    with pytest.raises(ChatEngineError) as excinfo:
        await engine.get_model_info()
    assert excinfo.value.code is ErrorCode.NOT_INITIALIZED

    assert await engine.get_debug_message() == ""
    assert await engine.clear_history() is None
    assert mock_bridge.calls == []


@pytest.mark.asyncio
async def test_single_session_lifecycle_never_resurrects():
    bridge = MockChatBridge()
    engine = ChatEngine(bridge)
    recorder = EventRecorder(engine)

    await engine.initialize(valid_configuration())
    await engine.generate_async("one")
    bridge.emit_response("done", is_final=True)
    await engine.destroy()

    assert recorder.names() == ["ready", "generating", "response", "generating"]
    with pytest.raises(ChatEngineError):
        await engine.initialize(valid_configuration())
    assert_state(engine, EngineState.DESTROYED)
