"""
Request schemas for the clip jobs API.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.models import StylePreset, TargetFormat


class JobCreateRequest(BaseModel):
    """Request body for POST /jobs."""

    user_id: str = Field(..., min_length=1, description="Owner of the job")
    source_key: str = Field(
        ..., min_length=1, description="Storage key of the uploaded source video (e.g., uploads/{user_id}/{file_id}.mp4)"
    )
    source_url: Optional[str] = Field(
        default=None, description="Optional locator of the source as it was uploaded"
    )
    duration_seconds: float = Field(
        ..., ge=0, description="Duration of the source video in seconds"
    )
    style_preset: StylePreset = Field(
        default=StylePreset.AUTO,
        description="Windowing style: auto, viral, educational or podcast",
    )
    target_formats: list[TargetFormat] = Field(
        default_factory=lambda: [TargetFormat.VERTICAL, TargetFormat.FEED],
        min_length=1,
        description="Output formats; each (window, format) pair becomes one clip",
    )

    @field_validator("target_formats")
    @classmethod
    def validate_unique_formats(cls, value: list[TargetFormat]) -> list[TargetFormat]:
        """Each format may only be requested once."""
        if len(set(value)) != len(value):
            raise ValueError("target_formats must not contain duplicates")
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "user_123",
                "source_key": "uploads/user_123/4f1c2b9e.mp4",
                "duration_seconds": 312.5,
                "style_preset": "viral",
                "target_formats": ["vertical", "feed"],
            }
        }
