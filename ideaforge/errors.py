"""Error taxonomy shared by the pipeline and the HTTP layer.

Every failure the pipeline surfaces carries a stable ``kind`` tag. The
transport layer maps kinds to status codes; nothing inspects message text.
"""
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    PHASE_VIOLATION = "PhaseViolation"
    VALIDATION_ERROR = "ValidationError"
    GENERATION_FAILURE = "GenerationFailure"
    RATE_LIMITED = "RateLimited"
    PARTIAL_BATCH_FAILURE = "PartialBatchFailure"


class PipelineError(Exception):
    kind: ErrorKind = ErrorKind.GENERATION_FAILURE

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "detail": self.message,
            "details": self.details,
        }


class NotFoundError(PipelineError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class PhaseViolationError(PipelineError):
    kind = ErrorKind.PHASE_VIOLATION

    def __init__(self, action: str, current_phase: str, required_phases: list[str]):
        super().__init__(
            f"Cannot {action} while session is in {current_phase}; "
            f"requires one of: {', '.join(required_phases)}",
            {
                "action": action,
                "current_phase": current_phase,
                "required_phases": required_phases,
            },
        )
        self.action = action
        self.current_phase = current_phase
        self.required_phases = required_phases


class ValidationError(PipelineError):
    kind = ErrorKind.VALIDATION_ERROR


class GenerationError(PipelineError):
    kind = ErrorKind.GENERATION_FAILURE


class UnparsableResponseError(GenerationError):
    """The generator answered, but its content could not be parsed."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message, {"response_preview": raw_response[:300]})
        self.raw_response = raw_response


class RateLimitedError(PipelineError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, attempts: int = 1, retry_after: float | None = None):
        super().__init__(message, {"attempts": attempts, "retry_after": retry_after})
        self.attempts = attempts
        self.retry_after = retry_after


class PartialBatchFailureError(PipelineError):
    """Every item of a multi-item batch failed.

    Batches where at least one item succeeded are not raised; their failures
    travel alongside the results instead.
    """

    kind = ErrorKind.PARTIAL_BATCH_FAILURE

    def __init__(self, operation: str, failures: list[dict[str, str]]):
        summary = "; ".join(f"{f['item_id']}: {f['message']}" for f in failures)
        super().__init__(
            f"All {len(failures)} items of {operation} failed: {summary}",
            {"operation": operation, "failures": failures},
        )
        self.operation = operation
        self.failures = failures
