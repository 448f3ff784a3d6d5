"""
Replicate API provider.
Create prediction -> poll GET /predictions/{id} on a fixed interval with a bounded
number of attempts -> download the output file.
"""
import logging
import time
from typing import Any, Callable

import httpx
import pybreaker

from app.services.image_generation.base import (
    ImageGenerationError,
    Prediction,
    PredictionProvider,
    PredictionRequest,
    PredictionTimeoutError,
)
from app.utils.metrics import prediction_duration_seconds, prediction_polls_total

logger = logging.getLogger(__name__)


class ReplicateProvider(PredictionProvider):
    """Replicate API provider for image generation."""

    def __init__(
        self,
        config: dict,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        breaker: pybreaker.CircuitBreaker | None = None,
    ):
        super().__init__(config)
        self.api_token = config.get("api_token")
        self.api_url = config.get("api_url", "https://api.replicate.com/v1").rstrip("/")
        self.timeout = config.get("timeout", 60.0)
        self.poll_interval = config.get("poll_interval", 2.0)
        self.max_poll_attempts = config.get("max_poll_attempts", 60)
        self._client = client
        self._sleep = sleep
        self._breaker = breaker

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def is_available(self) -> bool:
        """Check if Replicate is configured."""
        return bool(self.api_token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _parse(data: dict[str, Any]) -> Prediction:
        return Prediction(
            id=data.get("id", ""),
            status=data.get("status", ""),
            output=data.get("output"),
            error=data.get("error"),
        )

    def create_prediction(self, request: PredictionRequest) -> Prediction:
        if not self.is_available():
            raise ImageGenerationError("Replicate provider not configured")
        if self._breaker is None:
            return self._create(request)
        try:
            return self._breaker.call(self._create, request)
        except pybreaker.CircuitBreakerError as e:
            raise ImageGenerationError("Replicate circuit open", {"breaker": "prediction_api"}) from e

    def _create(self, request: PredictionRequest) -> Prediction:
        payload = {"version": request.model_version, "input": request.input}
        try:
            response = self.client.post(f"{self.api_url}/predictions", headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise ImageGenerationError(f"Replicate request failed: {e}") from e
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"text": response.text}
            raise ImageGenerationError(
                "Replicate rejected prediction",
                {"http_status": response.status_code, "response": body},
            )
        prediction = self._parse(response.json())
        if not prediction.id:
            raise ImageGenerationError("Replicate response has no prediction id")
        return prediction

    def get_prediction(self, prediction_id: str) -> Prediction:
        response = self.client.get(f"{self.api_url}/predictions/{prediction_id}", headers=self._headers())
        response.raise_for_status()
        return self._parse(response.json())

    def wait_for_completion(self, prediction_id: str) -> Prediction:
        """
        Poll every poll_interval seconds, at most max_poll_attempts times.
        A failed poll request uses up its attempt and is retried on the next tick.
        Only "succeeded" and "failed" are terminal.
        """
        start = time.time()
        for attempt in range(1, self.max_poll_attempts + 1):
            self._sleep(self.poll_interval)
            try:
                prediction = self.get_prediction(prediction_id)
            except (httpx.HTTPError, ValueError) as e:
                prediction_polls_total.labels(outcome="error").inc()
                logger.warning(
                    "prediction_poll_failed",
                    extra={"prediction_id": prediction_id, "attempt": attempt, "error": str(e)},
                )
                continue
            prediction_polls_total.labels(outcome=prediction.status or "unknown").inc()

            if prediction.succeeded:
                prediction_duration_seconds.observe(time.time() - start)
                return prediction
            if prediction.failed:
                raise ImageGenerationError(
                    f"Replicate prediction failed: {prediction.error or 'Unknown error'}",
                    {"prediction_id": prediction_id},
                )

        raise PredictionTimeoutError(
            f"Replicate prediction timed out after {self.max_poll_attempts} polls",
            {"prediction_id": prediction_id},
        )

    def download(self, url: str) -> bytes:
        try:
            response = self.client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageGenerationError(f"Failed to download generated image: {e}") from e
        return response.content
