"""
Common API response models.
"""

from typing import Any

from pydantic import BaseModel, Field

from shared.utils import utc_now


def _timestamp() -> str:
    return utc_now().isoformat()


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    success: bool = Field(default=True, description="Whether the operation was successful")
    message: str = Field(default="Operation completed successfully", description="Response message")
    data: Any | None = Field(None, description="Response data")
    timestamp: str = Field(default_factory=_timestamp, description="Response timestamp")


class ErrorResponse(BaseModel):
    """Standard API error response."""

    success: bool = Field(default=False, description="Always false for errors")
    message: str = Field(..., description="Error message")
    error: str | None = Field(None, description="Detailed error information")
    error_code: str | None = Field(None, description="Error code for programmatic handling")
    timestamp: str = Field(default_factory=_timestamp, description="Error timestamp")


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Service status")
    message: str = Field(..., description="Health check message")
    version: str | None = Field(None, description="Service version")
    uptime: float | None = Field(None, description="Service uptime in seconds")
    dependencies: dict[str, str] | None = Field(None, description="Dependency status")
