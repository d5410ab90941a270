"""
Pydantic schemas for request/response models.
"""

from mediafx.schemas.requests import ClipInput, MontageSubmitRequest
from mediafx.schemas.responses import (
    HealthResponse,
    MontageJobStatusResponse,
    MontageJobSubmitResponse,
    RejectionDetail,
)

__all__ = [
    "ClipInput",
    "MontageSubmitRequest",
    "MontageJobSubmitResponse",
    "MontageJobStatusResponse",
    "RejectionDetail",
    "HealthResponse",
]
