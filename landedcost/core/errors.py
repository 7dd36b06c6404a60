"""
Domain error taxonomy.

Services raise these; the HTTP layer maps them to structured JSON responses
in ``landedcost.main``. ``ExtractionFailure`` and ``ConflictError`` are meant to
be absorbed inside the service layer and should never reach a client.
"""
from typing import Optional


class LandedCostError(Exception):
    """Base class for all domain errors."""

    code = "error"
    http_status = 500

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"ok": False, "reason": self.code, "error": self.message}


class ValidationError(LandedCostError):
    """Missing or malformed input; the caller's fault."""

    code = "validation_error"
    http_status = 400


class NotFoundError(LandedCostError):
    code = "not_found"
    http_status = 404


class VerificationActiveError(LandedCostError):
    """A sourcing job is already running for the report."""

    code = "verification_active"
    http_status = 409


class CooldownError(LandedCostError):
    """Rate-limited action; carries the remediation delay."""

    code = "cooldown"
    http_status = 429

    def __init__(self, retry_after_seconds: int, message: str = ""):
        super().__init__(message or f"Retry after {retry_after_seconds} seconds")
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retry_after_seconds"] = self.retry_after_seconds
        return payload


class ConflictError(LandedCostError):
    """Uniqueness race on a store write. Resolved by re-reading the winner."""

    code = "conflict"
    http_status = 409


class ExtractionFailure(LandedCostError):
    """A single extraction step failed. Recoverable: lowers confidence only."""

    code = "extraction_failed"
    http_status = 422

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class PipelineFailure(LandedCostError):
    """Unrecoverable failure for this attempt; recorded on the report."""

    http_status = 500

    def __init__(self, code: str, step: str, message: str = ""):
        super().__init__(message or f"{code} at {step}", code=code)
        self.step = step

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["step"] = self.step
        return payload
