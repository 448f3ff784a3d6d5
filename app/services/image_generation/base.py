"""
Base classes and types for prediction providers.
A prediction is an asynchronous remote job: create, poll until terminal, download output.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


SUCCEEDED = "succeeded"
FAILED = "failed"


@dataclass
class PredictionRequest:
    """Request for a model prediction."""
    model_version: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class Prediction:
    id: str
    status: str
    output: Any = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == FAILED

    def output_url(self) -> str:
        """First output URL (models return either a string or a list)."""
        output = self.output
        if isinstance(output, list) and output:
            output = output[0]
        if isinstance(output, str) and output:
            return output
        raise ImageGenerationError(f"Unexpected output format: {self.output!r}", {"prediction_id": self.id})


class ImageGenerationError(Exception):
    """Raised when a prediction cannot be created, fails remotely or its output is unusable."""
    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


class PredictionTimeoutError(ImageGenerationError):
    """Polling budget exhausted before the prediction reached a terminal state."""


class PredictionProvider(ABC):
    """Base class for prediction providers."""

    def __init__(self, config: dict) -> None:
        self.config = config

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is configured and available."""
        pass

    @abstractmethod
    def create_prediction(self, request: PredictionRequest) -> Prediction:
        pass

    @abstractmethod
    def get_prediction(self, prediction_id: str) -> Prediction:
        pass

    @abstractmethod
    def wait_for_completion(self, prediction_id: str) -> Prediction:
        """Poll until succeeded. Raises ImageGenerationError / PredictionTimeoutError."""
        pass

    @abstractmethod
    def download(self, url: str) -> bytes:
        pass
