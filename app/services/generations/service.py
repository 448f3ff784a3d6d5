"""
Logo-to-anything generation pipeline.

PENDING_CREDIT_CHECK -> CREDIT_DEDUCTED -> SUBMITTED -> POLLING
    -> (SUCCEEDED | FAILED | TIMED_OUT) -> DOWNLOADED -> UPLOADED -> RECORDED

Credits are debited before the prediction is submitted. Any failure after the
debit refunds exactly the debited amount and surfaces one generic error.
"""
import logging
import os
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    GenerationFailedError,
    InsufficientCreditsError,
    UpstreamError,
    ValidationError,
)
from app.models.generation import Generation
from app.services.image_generation import (
    ImageGenerationError,
    PredictionProvider,
    PredictionRequest,
    PredictionTimeoutError,
)
from app.services.profiles.service import ProfileService
from app.storage.base import Storage
from app.storage.s3 import LOGOS, RESULTS, StorageError
from app.utils.metrics import generations_total

logger = logging.getLogger(__name__)

_IMAGE_TYPE_RE = re.compile(r"[^a-zA-Z0-9_-]")

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
}


class GenerationStage(str, Enum):
    PENDING_CREDIT_CHECK = "pending_credit_check"
    CREDIT_DEDUCTED = "credit_deducted"
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    DOWNLOADED = "downloaded"
    UPLOADED = "uploaded"
    RECORDED = "recorded"


@dataclass
class GenerationInput:
    logo_url: str | None
    logo_description: str | None
    destination_prompt: str | None
    ip_address: str | None = None
    user_agent: str | None = None

    def validate(self) -> None:
        if not (self.logo_url and self.logo_description and self.destination_prompt):
            raise ValidationError("Missing required fields: logoUrl, logoDescription, destinationPrompt")


def _now_ms() -> int:
    return int(time.time() * 1000)


def list_generations(db: Session, user_id: str, limit: int = 50) -> list[Generation]:
    """Most recent first."""
    return (
        db.query(Generation)
        .filter(Generation.user_id == user_id)
        .order_by(Generation.created_at.desc())
        .limit(limit)
        .all()
    )


class GenerationService:
    def __init__(
        self,
        db: Session,
        provider: PredictionProvider,
        storage: Storage,
        profiles: ProfileService | None = None,
        cost: int | None = None,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        self.db = db
        self.provider = provider
        self.storage = storage
        self.profiles = profiles or ProfileService(db)
        self.cost = settings.generation_cost_credits if cost is None else cost
        self._clock_ms = clock_ms

    # ------------------------------------------------------------------
    # Logo upload
    # ------------------------------------------------------------------

    def upload_logo(
        self,
        user_id: str,
        filename: str | None,
        content: bytes | None,
        image_type: str | None = None,
        content_type: str | None = None,
    ) -> str:
        """Store an uploaded source image under logos/{user_id}/; returns its public URL."""
        if not filename or not content:
            raise ValidationError("No file provided")
        ext = os.path.splitext(filename)[1].lower()
        if ext not in settings.allowed_extensions_set:
            raise ValidationError(
                f"Invalid file type. Allowed: {', '.join(sorted(settings.allowed_extensions_set))}"
            )
        if len(content) > settings.max_file_size_bytes:
            raise ValidationError(f"File too large. Maximum size is {settings.max_file_size_mb}MB")

        kind = _IMAGE_TYPE_RE.sub("", image_type or "") or "logo"
        key_name = f"{kind}_{self._clock_ms()}{ext}"
        try:
            url = self.storage.put_object(
                LOGOS,
                user_id,
                key_name,
                content,
                content_type or CONTENT_TYPES.get(ext, "application/octet-stream"),
            )
        except StorageError:
            raise UpstreamError("Failed to upload image")
        logger.info("logo_uploaded", extra={"user_id": user_id, "key": key_name})
        return url

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _log_stage(self, user_id: str, stage: GenerationStage, **extra) -> None:
        logger.info("generation_stage", extra={"user_id": user_id, "stage": stage.value, **extra})

    def _debit(self, user_id: str) -> None:
        self._log_stage(user_id, GenerationStage.PENDING_CREDIT_CHECK)
        self.profiles.get_or_create(user_id)
        current = self.profiles.balance(user_id)
        if current < self.cost:
            generations_total.labels(outcome="insufficient_credits").inc()
            raise InsufficientCreditsError(self.cost, current)
        if not self.profiles.try_debit(user_id, self.cost):
            # A concurrent request spent the credits between the check and the update
            self.db.rollback()
            generations_total.labels(outcome="insufficient_credits").inc()
            raise InsufficientCreditsError(self.cost, self.profiles.balance(user_id))
        self.db.commit()
        self._log_stage(user_id, GenerationStage.CREDIT_DEDUCTED, credits=self.cost)
        self.profiles.notify(user_id)

    def _refund(self, user_id: str, stage: GenerationStage) -> None:
        try:
            self.db.rollback()
            self.profiles.refund(user_id, self.cost)
            self.db.commit()
        except (SQLAlchemyError, LookupError):
            self.db.rollback()
            logger.exception(
                "generation_refund_failed",
                extra={"user_id": user_id, "stage": stage.value, "credits": self.cost},
            )
            return
        logger.info(
            "generation_refunded",
            extra={"user_id": user_id, "stage": stage.value, "credits": self.cost},
        )
        self.profiles.notify(user_id)

    def generate(self, user_id: str, data: GenerationInput) -> Generation:
        data.validate()
        self._debit(user_id)

        stage = GenerationStage.CREDIT_DEDUCTED
        prediction_id = None
        try:
            prediction = self.provider.create_prediction(
                PredictionRequest(
                    model_version=settings.replicate_model_version,
                    input={
                        "logo_image": data.logo_url,
                        "logo_description": data.logo_description,
                        "destination_prompt": data.destination_prompt,
                    },
                )
            )
            prediction_id = prediction.id
            stage = GenerationStage.SUBMITTED
            self._log_stage(user_id, stage, prediction_id=prediction_id)

            stage = GenerationStage.POLLING
            completed = self.provider.wait_for_completion(prediction_id)
            stage = GenerationStage.SUCCEEDED
            output_url = completed.output_url()
            self._log_stage(user_id, stage, prediction_id=prediction_id)

            content = self.provider.download(output_url)
            stage = GenerationStage.DOWNLOADED

            file_name = f"generated-{self._clock_ms()}.png"
            result_url = self.storage.put_object(RESULTS, user_id, file_name, content, "image/png")
            stage = GenerationStage.UPLOADED
            self._log_stage(user_id, stage, prediction_id=prediction_id, key=file_name)

            generation = Generation(
                user_id=user_id,
                logo_url=data.logo_url,
                logo_description=data.logo_description,
                destination_prompt=data.destination_prompt,
                result_url=result_url,
                result_file_name=file_name,
                status="completed",
                credit_cost=self.cost,
                prediction_id=prediction_id,
                ip_address=data.ip_address,
                user_agent=data.user_agent,
                generation_metadata={
                    "model": settings.replicate_model_name,
                    "generation_type": settings.generation_type,
                },
            )
            self.db.add(generation)
            self.db.commit()
            self.db.refresh(generation)
        except PredictionTimeoutError as e:
            stage = GenerationStage.TIMED_OUT
            logger.error(
                "generation_failed",
                extra={"user_id": user_id, "stage": stage.value, "prediction_id": prediction_id, "error": str(e)},
            )
            generations_total.labels(outcome="timed_out").inc()
            self._refund(user_id, stage)
            raise GenerationFailedError(stage.value, timed_out=True)
        except Exception as e:
            if isinstance(e, ImageGenerationError) and stage == GenerationStage.POLLING:
                stage = GenerationStage.FAILED
            logger.exception(
                "generation_failed",
                extra={"user_id": user_id, "stage": stage.value, "prediction_id": prediction_id, "error": str(e)},
            )
            generations_total.labels(outcome="failed").inc()
            self._refund(user_id, stage)
            raise GenerationFailedError(stage.value)

        self._log_stage(user_id, GenerationStage.RECORDED, generation_id=generation.id)
        generations_total.labels(outcome="succeeded").inc()
        return generation
