from typing import Any, Dict, Optional


class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, error_code="VALIDATION_ERROR", details=details)


class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: Any = None):
        super().__init__(
            f"{entity} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"entity": entity, "id": str(entity_id) if entity_id is not None else None},
        )


class NotAuthorizedError(AppException):
    """Actor lacks the role an operation requires."""

    def __init__(self, message: str = "Not authorized", required_roles: list[str] | None = None, role: str | None = None):
        super().__init__(
            message,
            status_code=403,
            error_code="NOT_AUTHORIZED",
            details={"required_roles": sorted(required_roles or []), "role": role},
        )


class InvalidStateError(AppException):
    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_STATE",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, status_code=409, error_code=error_code, details=details)


class AlreadyStartedError(InvalidStateError):
    def __init__(self, current_phase: str):
        super().__init__(
            "Cycle has already been started",
            error_code="ALREADY_STARTED",
            details={"current_phase": current_phase},
        )


class AlreadyCompletedError(InvalidStateError):
    def __init__(self, current_phase: str = "completed"):
        super().__init__(
            "Cycle is already completed",
            error_code="ALREADY_COMPLETED",
            details={"current_phase": current_phase},
        )


class NoValidPhaseError(InvalidStateError):
    def __init__(self, review_types: dict | None = None):
        super().__init__(
            "No valid phases configured for this cycle",
            error_code="NO_VALID_PHASE",
            details={"review_types": review_types or {}},
        )


class TemplateRequiredError(InvalidStateError):
    def __init__(self, cycle_id: Any, phase: str | None = None):
        super().__init__(
            "Review template must be assigned to cycle before assigning reviews",
            error_code="TEMPLATE_REQUIRED",
            details={"cycle_id": str(cycle_id), "phase": phase},
        )


class StaleCycleError(InvalidStateError):
    def __init__(self, cycle_id: Any, expected: int | None = None, current: int | None = None):
        super().__init__(
            "Cycle was modified concurrently",
            error_code="STALE_VERSION",
            details={"cycle_id": str(cycle_id), "expected": expected, "current": current},
        )


class TransientStoreError(AppException):
    def __init__(self, message: str = "Storage temporarily unavailable, retry the request"):
        super().__init__(message, status_code=503, error_code="TRANSIENT_STORE_ERROR")
