"""
Core, reusable logic for CLI commands, decoupled from Typer.
"""
import asyncio
from pathlib import Path
from typing import Optional

from chatbridge.adapters.llama_cpp.server import LlamaServerBridge
from chatbridge.internal import paths
from chatbridge.internal.config import load_engine_configuration, parse_backend
from chatbridge.internal.constants import LLAMA_SERVER_URL
from chatbridge.internal.logging import setup_logging
from chatbridge.kernel.contracts import EngineConfiguration, GenerationMetrics
from chatbridge.kernel.engine import ChatEngine


def run_async(coro):
    """
    Run a coroutine from sync code, whether or not an event loop exists.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        return loop.run_until_complete(coro)


def init_logging(log_level: str = "WARNING") -> None:
    # Console stays quiet so streamed text is readable; everything goes to the log file
    setup_logging(log_level_name=log_level, log_file_path=paths.get_log_file(), console_output=False)


def build_configuration(
    config_file: Optional[Path] = None,
    model: Optional[str] = None,
    backend: Optional[str] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
    threads: Optional[int] = None,
) -> EngineConfiguration:
    return load_engine_configuration(
        path=config_file,
        model_path=model,
        backend=parse_backend(backend) if backend is not None else None,
        max_tokens=max_tokens,
        temperature=temperature,
        thread_count=threads,
    )


def build_engine(server_url: str = LLAMA_SERVER_URL, server_binary: Optional[Path] = None) -> ChatEngine:
    return ChatEngine(LlamaServerBridge(base_url=server_url, server_binary=server_binary))


def format_metrics(metrics: GenerationMetrics) -> str:
    return (
        f"{metrics.decode_tokens} tokens in {metrics.total_time_ms / 1000:.2f}s "
        f"({metrics.tokens_per_second:.1f} tok/s, prefill {metrics.prefill_tokens} tokens "
        f"in {metrics.prefill_time_ms:.0f}ms)"
    )
