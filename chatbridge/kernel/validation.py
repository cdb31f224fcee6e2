"""
Checks applied to engine configuration and user input before anything is
handed to the bridge. All functions are pure and never raise on bad input;
problems are returned as FieldError entries.
"""
import math
from typing import Any

from chatbridge.kernel.contracts import BackendType, EngineConfiguration, FieldError

TEMPERATURE_MIN = 0.0
TEMPERATURE_MAX = 2.0


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a meaningful count or temperature
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, float)) and math.isfinite(value)


def _is_positive_count(value: Any) -> bool:
    return _is_number(value) and value > 0 and float(value).is_integer()


def validate_configuration(config: EngineConfiguration) -> list[FieldError]:
    errors: list[FieldError] = []

    model_path = getattr(config, "model_path", None)
    if not isinstance(model_path, str) or not model_path:
        errors.append(FieldError(
            field="model_path",
            message="Model path must be a non-empty string",
            value=model_path,
        ))

    backend = getattr(config, "backend", None)
    if isinstance(backend, bool) or not isinstance(backend, int) or backend not in (BackendType.CPU, BackendType.GPU):
        errors.append(FieldError(
            field="backend",
            message="Backend must be 0 (CPU) or 1 (GPU)",
            value=backend,
        ))

    max_tokens = getattr(config, "max_tokens", None)
    if not _is_positive_count(max_tokens):
        errors.append(FieldError(
            field="max_tokens",
            message="Max tokens must be a positive whole number",
            value=max_tokens,
        ))

    temperature = getattr(config, "temperature", None)
    if not _is_number(temperature) or not TEMPERATURE_MIN <= temperature <= TEMPERATURE_MAX:
        errors.append(FieldError(
            field="temperature",
            message=f"Temperature must be between {TEMPERATURE_MIN:g} and {TEMPERATURE_MAX:g}",
            value=temperature,
        ))

    thread_count = getattr(config, "thread_count", None)
    if not _is_positive_count(thread_count):
        errors.append(FieldError(
            field="thread_count",
            message="Thread count must be a positive whole number",
            value=thread_count,
        ))

    return errors


def validate_generation_text(text: Any) -> list[FieldError]:
    """
    Whitespace-only text is accepted here; the engine may still refuse it.
    """
    if not isinstance(text, str) or not text:
        return [FieldError(
            field="text",
            message="Input text must be a non-empty string",
            value=text,
        )]
    return []


def format_field_errors(errors: list[FieldError]) -> str:
    return ", ".join(f"{error.field}: {error.message}" for error in errors)
