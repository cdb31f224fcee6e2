import asyncio
import contextlib
import json
import subprocess
import time
from collections import deque
from pathlib import Path
from typing import Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from chatbridge.internal import paths
from chatbridge.internal.constants import (
    DEBUG_HISTORY_LIMIT,
    GPU_OFFLOAD_ALL_LAYERS,
    LLAMA_SERVER_REQUEST_TIMEOUT_SEC,
    LLAMA_SERVER_STARTUP_TIMEOUT_SEC,
    LLAMA_SERVER_URL,
)
from chatbridge.internal.logging import get_logger
from chatbridge.kernel.contracts import (
    BackendType,
    BridgeEventSink,
    EngineConfiguration,
    GenerationMetrics,
    StreamingResponse,
)


# ---------------------------------------------------------------------
# Stream payloads (OpenAI-compatible chunks as sent by llama-server)
# ---------------------------------------------------------------------

class ChatDelta(BaseModel):
    content: Optional[str] = None


class ChatChoice(BaseModel):
    delta: ChatDelta = Field(default_factory=ChatDelta)
    finish_reason: Optional[str] = None


class Timings(BaseModel):
    prompt_n: int = 0
    prompt_ms: float = 0.0
    predicted_n: int = 0
    predicted_ms: float = 0.0
    predicted_per_second: float = 0.0

    def to_metrics(self) -> GenerationMetrics:
        return GenerationMetrics(
            total_time_ms=max(self.prompt_ms + self.predicted_ms, 0.0),
            prefill_time_ms=max(self.prompt_ms, 0.0),
            decode_time_ms=max(self.predicted_ms, 0.0),
            tokens_per_second=max(self.predicted_per_second, 0.0),
            prefill_tokens=max(self.prompt_n, 0),
            decode_tokens=max(self.predicted_n, 0),
        )


class ChatChunk(BaseModel):
    choices: list[ChatChoice] = Field(default_factory=list)
    timings: Optional[Timings] = None


class LlamaServerBridge:
    """
    A ChatBridge backed by a llama.cpp `llama-server`.

    The server is either already running at `base_url` or, when
    `server_binary` is given, spawned by create_engine(). The conversation
    is held here and replayed to /v1/chat/completions on every turn.
    """
    HEALTH_ENDPOINT = "/health"
    PROPS_ENDPOINT = "/props"
    CHAT_ENDPOINT = "/v1/chat/completions"

    def __init__(
        self,
        base_url: str = LLAMA_SERVER_URL,
        server_binary: Optional[Path] = None,
        startup_timeout: float = LLAMA_SERVER_STARTUP_TIMEOUT_SEC,
        request_timeout: float = LLAMA_SERVER_REQUEST_TIMEOUT_SEC,
        poll_interval: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.logger = get_logger(self.__class__.__name__)
        self.base_url = base_url.rstrip("/")
        self.server_binary = Path(server_binary) if server_binary else None
        self.startup_timeout = startup_timeout
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._sink: Optional[BridgeEventSink] = None
        self._config: Optional[EngineConfiguration] = None
        self._messages: list[dict] = []
        self._stream_task: Optional[asyncio.Task] = None
        self.process: Optional[subprocess.Popen] = None
        self.server_ready = False
        self._debug_history: deque[str] = deque(maxlen=DEBUG_HISTORY_LIMIT)

    # ------------------------------------------------------------------
    # Sink
    # ------------------------------------------------------------------

    def attach(self, sink: BridgeEventSink) -> None:
        self._sink = sink

    def detach(self) -> None:
        self._sink = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_engine(self, config: EngineConfiguration) -> None:
        self._config = config
        if self.server_binary is not None:
            self._spawn_server(config)
        await self._wait_for_ready()
        self._debug(f"Engine created with model {config.model_path}")

    async def destroy_engine(self) -> None:
        await self.stop_generation()
        await self._close_client()
        await self._terminate_server()
        self.server_ready = False
        self._messages.clear()
        self._debug("Engine destroyed")

    async def is_ready(self) -> bool:
        return self.server_ready

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_async(self, text: str) -> None:
        if not self.server_ready:
            raise RuntimeError("llama-server is not ready. Call create_engine() first.")
        if await self.is_generating():
            raise RuntimeError("A generation is already running")

        self._stream_task = asyncio.create_task(self._stream_completion(text))
        self._debug(f"Generation started ({len(text)} chars)")

    async def stop_generation(self) -> None:
        task = self._stream_task
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._debug("Generation stopped")

    async def is_generating(self) -> bool:
        return self._stream_task is not None and not self._stream_task.done()

    async def clear_history(self) -> None:
        self._messages.clear()
        self._debug("Conversation history cleared")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_model_info(self) -> str:
        response = await self._http().get(self.PROPS_ENDPOINT)
        response.raise_for_status()
        return json.dumps(response.json())

    async def test_connectivity(self) -> int:
        # Own client: the probe is valid before create_engine and after destroy_engine
        async with self._new_client() as client:
            response = await client.get(self.HEALTH_ENDPOINT)
            response.raise_for_status()
        return 1

    async def get_debug_message(self) -> str:
        return self._debug_history[-1] if self._debug_history else ""

    async def get_debug_history(self) -> str:
        return "\n".join(self._debug_history)

    async def clear_debug_history(self) -> None:
        self._debug_history.clear()

    async def log_message(self, text: str) -> None:
        self._debug(text)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.request_timeout,
            transport=self._transport,
        )

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._new_client()
        return self._client

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _debug(self, message: str) -> None:
        self._debug_history.append(message)
        self.logger.debug(message)

    def _spawn_server(self, config: EngineConfiguration) -> None:
        if not self.server_binary.exists():
            raise FileNotFoundError(f"llama-server not found at {self.server_binary}")

        url = httpx.URL(self.base_url)
        gpu_layers = GPU_OFFLOAD_ALL_LAYERS if config.backend == BackendType.GPU else 0
        command = [
            str(self.server_binary),
            "-m", str(config.model_path),
            "-t", str(int(config.thread_count)),
            "-n", str(int(config.max_tokens)),
            "-ngl", str(gpu_layers),
            "--host", url.host,
            "--port", str(url.port or 80),
        ]

        self.logger.info("Starting llama-server", model=str(config.model_path), command=command)
        try:
            # Log to a file instead of DEVNULL to allow for debugging
            with open(paths.get_llama_server_log_file(), "ab") as log_file:
                self.process = subprocess.Popen(
                    command,
                    stdout=log_file,
                    stderr=log_file,
                    close_fds=True,
                )
        except OSError as e:
            self.logger.exception("Failed to start llama-server")
            raise RuntimeError(f"Failed to start llama-server: {e}") from e

    async def _terminate_server(self) -> None:
        if self.process is None:
            return
        if self.process.poll() is None:
            self.logger.info("Stopping llama-server", pid=self.process.pid)
            try:
                self.process.terminate()
                await asyncio.to_thread(self.process.wait, 5)
            except subprocess.TimeoutExpired:
                self.logger.warning("Graceful shutdown failed, killing llama-server")
                self.process.kill()
        self.process = None

    async def _wait_for_ready(self) -> None:
        deadline = time.monotonic() + self.startup_timeout
        attempt = 0
        while True:
            attempt += 1
            if self.process is not None and self.process.poll() is not None:
                self.process = None
                raise RuntimeError("llama-server process terminated unexpectedly.")
            try:
                response = await self._http().get(self.HEALTH_ENDPOINT)
                response.raise_for_status()
                if response.json().get("status") == "ok":
                    self.server_ready = True
                    self.logger.info("llama-server is ready", attempts=attempt)
                    return
            except (httpx.HTTPError, ValueError) as e:
                self.logger.debug("llama-server not ready", attempt=attempt, error=str(e))

            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(self.poll_interval)

        await self._terminate_server()
        await self._close_client()
        raise RuntimeError("llama-server failed to become ready.")

    async def _stream_completion(self, text: str) -> None:
        # The turn joins the history only once it has an answer
        user_turn = {"role": "user", "content": text}
        payload = {
            "messages": [*self._messages, user_turn],
            "stream": True,
            "max_tokens": int(self._config.max_tokens),
            "temperature": float(self._config.temperature),
        }
        accumulated = ""
        timings: Optional[Timings] = None

        try:
            async with self._http().stream("POST", self.CHAT_ENDPOINT, json=payload, timeout=None) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = ChatChunk.model_validate_json(data)
                    except ValidationError:
                        self.logger.warning("Failed to decode stream data", data=data)
                        continue

                    if chunk.timings is not None:
                        timings = chunk.timings
                    for choice in chunk.choices:
                        if choice.delta.content:
                            accumulated += choice.delta.content
                            self._emit_response(accumulated, is_final=False)
        except asyncio.CancelledError:
            if accumulated:
                self._messages.extend([user_turn, {"role": "assistant", "content": accumulated}])
            raise
        except httpx.HTTPError as e:
            self.logger.error("Inference request failed", error=str(e))
            self._debug(f"Inference request failed: {e}")
            if self._sink is not None:
                self._sink.on_error(f"Inference request failed: {e}", e)
            return

        self._messages.extend([user_turn, {"role": "assistant", "content": accumulated}])
        self._debug(f"Generation finished ({len(accumulated)} chars)")
        self._emit_response(accumulated, is_final=True)
        if timings is not None and self._sink is not None:
            self._sink.on_metrics(timings.to_metrics())

    def _emit_response(self, accumulated: str, is_final: bool) -> None:
        if self._sink is not None:
            self._sink.on_response(StreamingResponse(accumulated_text=accumulated, is_final=is_final))
