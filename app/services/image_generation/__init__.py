"""
Image generation through remote prediction APIs.
"""
from .base import (
    ImageGenerationError,
    Prediction,
    PredictionProvider,
    PredictionRequest,
    PredictionTimeoutError,
)
from .providers.replicate import ReplicateProvider

__all__ = [
    "ImageGenerationError",
    "Prediction",
    "PredictionProvider",
    "PredictionRequest",
    "PredictionTimeoutError",
    "ReplicateProvider",
]
