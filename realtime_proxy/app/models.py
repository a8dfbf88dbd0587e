"""
Data Models Module

This module defines Pydantic models for the proxy's HTTP responses
and for the per-session summary logged when a relay session ends.
"""

from typing import Optional

from pydantic import BaseModel, Field


# ============================================================================
# System Models
# ============================================================================

class HealthResponse(BaseModel):
    """Fixed payload returned by / and /health."""
    status: str = Field(default="ok", description="Service status")
    service: str = Field(default="realtime-proxy", description="Service name")


class ErrorResponse(BaseModel):
    """Standard error response body for unhandled HTTP errors."""
    error: str = Field(..., description="Error type identifier")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Additional error details (DEBUG only)")


# ============================================================================
# Relay Session Models
# ============================================================================

class SessionSummary(BaseModel):
    """Outcome of one relay session, logged when both legs are closed."""
    session_id: str = Field(..., description="Short random id used to correlate log lines")
    upstream_url: str = Field(..., description="Upstream endpoint the session connected to")
    frames_to_upstream: int = Field(default=0, description="Frames forwarded client -> upstream")
    frames_to_downstream: int = Field(default=0, description="Frames forwarded upstream -> client")
    frames_dropped: int = Field(default=0, description="Frames dropped because the destination was not open")
    upstream_opened: bool = Field(default=False, description="Whether the upstream handshake completed")
    upstream_close_code: Optional[int] = Field(None, description="Close code observed on the upstream leg")
    upstream_close_reason: Optional[str] = Field(None, description="Close reason observed on the upstream leg")
    downstream_close_code: Optional[int] = Field(None, description="Close code observed or sent on the client leg")
    downstream_close_reason: Optional[str] = Field(None, description="Close reason observed or sent on the client leg")
    error: Optional[str] = Field(None, description="Upstream connection or transport error, if any")
