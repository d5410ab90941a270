"""
Request schemas for the montage API.

All request-shape leniency lives here: field aliases, a plan nested under
"plan" instead of "clips", or a plan sent as a JSON string. Clip values are
passed through untyped; plan normalization decides which entries survive, so
one badly typed clip never rejects the whole request. The job manager only
ever sees a list of plain clip entries.
"""

import json
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class ClipInput(BaseModel):
    """One clip reference as sent by clients."""

    location: Optional[Any] = Field(
        default=None,
        validation_alias=AliasChoices("url", "location", "videoUrl", "sourceLocation", "source_location"),
        description="Source URL (http/https, s3://bucket/key) or S3 key",
    )
    start: Optional[Any] = Field(
        default=None,
        validation_alias=AliasChoices("start", "startOffset", "start_offset"),
        description="Start offset in seconds (default 0)",
    )
    duration: Optional[Any] = Field(
        default=None,
        description="Clip duration in seconds; clips without a positive duration are skipped",
    )

    class Config:
        populate_by_name = True
        extra = "ignore"

    def to_raw_entry(self) -> dict[str, Any]:
        return {
            "location": self.location,
            "start_offset": self.start,
            "duration": self.duration,
        }


class MontageSubmitRequest(BaseModel):
    """Request body for POST /montage/jobs."""

    clips: list[ClipInput] = Field(
        default_factory=list,
        validation_alias=AliasChoices("clips", "plan"),
        description="Ordered clip references",
    )

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "clips": [
                    {"url": "https://cdn.example.com/a.mp4", "start": 0, "duration": 2},
                    {"url": "https://cdn.example.com/a.mp4", "start": 5, "duration": 2},
                    {"url": "s3://media-bucket/b.mp4", "start": 12.5, "duration": 3},
                ]
            }
        }

    @field_validator("clips", mode="before")
    @classmethod
    def unwrap_clips(cls, value: Any) -> Any:
        """Accept a JSON-encoded plan or a {"clips": [...]} wrapper."""
        if value is None:
            return []
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise ValueError(f"clips is not valid JSON: {e}") from e
        if isinstance(value, dict) and "clips" in value:
            value = value["clips"]
        if not isinstance(value, list):
            raise ValueError("clips must be a list")
        # Non-object entries become empty clips and are dropped at normalization
        return [item if isinstance(item, dict) else {} for item in value]

    def to_raw_entries(self) -> list[dict[str, Any]]:
        return [clip.to_raw_entry() for clip in self.clips]
