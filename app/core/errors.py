"""
Application errors. Services raise these; app.main turns them into
JSON bodies of the form {"error": message, **payload}.
"""
from typing import Any


class AppError(Exception):
    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.payload}


class AuthError(AppError):
    status_code = 401


class ValidationError(AppError):
    status_code = 400


class ConflictError(AppError):
    """Business-rule conflict the caller can resolve (e.g. duplicate subscription)."""
    status_code = 400


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class InsufficientCreditsError(AppError):
    status_code = 403

    def __init__(self, required: int, current: int) -> None:
        super().__init__(
            "Insufficient credits",
            payload={
                "message": "You need to buy more credits to continue",
                "requiredCredits": required,
                "currentCredits": current,
            },
        )
        self.required = required
        self.current = current


class UpstreamError(AppError):
    """An external provider (Stripe, Replicate, S3, auth) failed."""
    status_code = 500


class PersistenceError(AppError):
    status_code = 500


class GenerationFailedError(AppError):
    """Single user-facing failure for every post-debit pipeline error."""
    status_code = 500

    def __init__(self, stage: str, timed_out: bool = False) -> None:
        super().__init__("Image generation failed", status_code=504 if timed_out else 500)
        self.stage = stage
        self.timed_out = timed_out
