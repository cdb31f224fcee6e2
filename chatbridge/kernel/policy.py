"""
What the facade does when a bridge call fails, per operation.

PROPAGATE operations define the functional contract: the failure is
published on the `error` channel and the call raises ChatEngineError.
DEGRADE operations are diagnostic or cleanup paths: the failure is
published on the `error` channel and the call returns `default`.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any

from chatbridge.kernel.contracts import ErrorCode


class FailureMode(Enum):
    PROPAGATE = "propagate"
    DEGRADE = "degrade"


@dataclass(frozen=True)
class OperationPolicy:
    mode: FailureMode
    code: ErrorCode
    summary: str
    default: Any = None

    @property
    def propagates(self) -> bool:
        return self.mode is FailureMode.PROPAGATE


_PROPAGATE = FailureMode.PROPAGATE
_DEGRADE = FailureMode.DEGRADE

OPERATION_POLICIES: dict[str, OperationPolicy] = {
    "initialize": OperationPolicy(_PROPAGATE, ErrorCode.INITIALIZATION_FAILED, "Failed to initialize chat engine"),
    "generate_async": OperationPolicy(_PROPAGATE, ErrorCode.GENERATION_FAILED, "Failed to generate response"),
    "get_model_info": OperationPolicy(_PROPAGATE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to get model info"),
    "test_connectivity": OperationPolicy(_PROPAGATE, ErrorCode.CONNECTIVITY_TEST_FAILED, "Connectivity test failed"),
    "is_ready": OperationPolicy(_DEGRADE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to query readiness", False),
    "is_generating": OperationPolicy(_DEGRADE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to query generation state", False),
    "stop_generation": OperationPolicy(_DEGRADE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to stop generation"),
    "clear_history": OperationPolicy(_DEGRADE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to clear history"),
    "get_debug_message": OperationPolicy(_DEGRADE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to get debug message", ""),
    "get_debug_history": OperationPolicy(_DEGRADE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to get debug history", ""),
    "clear_debug_history": OperationPolicy(_DEGRADE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to clear debug history"),
    "log_message": OperationPolicy(_DEGRADE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to log message"),
    "destroy": OperationPolicy(_DEGRADE, ErrorCode.BRIDGE_CALL_FAILED, "Failed to destroy chat engine"),
}


def policy_for(operation: str) -> OperationPolicy:
    try:
        return OPERATION_POLICIES[operation]
    except KeyError:
        raise KeyError(f"No failure policy registered for operation '{operation}'") from None
