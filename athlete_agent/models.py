"""Pydantic models for the HTTP surface that are not part of the agent state."""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for health check endpoints.

    Attributes:
        status: Health status
        service: Service name
        version: Service version
        timestamp: Unix timestamp
        details: Optional additional details
    """

    status: Literal["healthy", "unhealthy", "ready", "not_ready"] = Field(
        description="Health status",
        examples=["healthy"],
    )
    service: str = Field(description="Service name", examples=["athlete-agent"])
    version: str = Field(description="Service version", examples=["0.1.0"])
    timestamp: float = Field(default_factory=time.time, description="Unix timestamp")
    details: dict[str, str] | None = Field(
        default=None,
        description="Optional additional details",
        examples=[{"runner": "ready"}],
    )


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(description="Error code", examples=["AGENT_TIMEOUT"])
    message: str = Field(description="Human-readable error message")
    request_id: str | None = Field(default=None, description="Request identifier for tracking")
