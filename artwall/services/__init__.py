"""Services for artwall."""

from artwall.services.replicate import PredictionHandle, PredictionResult, ReplicateAPI

__all__ = ["PredictionHandle", "PredictionResult", "ReplicateAPI"]
