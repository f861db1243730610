"""Envelopes shared by every endpoint"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class APIResponse(BaseModel):
    """Acknowledgement for endpoints that return no resource"""
    success: bool = True
    message: str
    data: Optional[Any] = None
    timestamp: str = Field(default_factory=_utc_now)


class ErrorResponse(BaseModel):
    """
    Body of every error. `code` is the stable, machine-readable kind
    (InvalidCredentials, ReuseDetected, ...); `error` is for humans.
    """
    success: bool = False
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None
    path: Optional[str] = None
    timestamp: str = Field(default_factory=_utc_now)


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    redis: str
    timestamp: str = Field(default_factory=_utc_now)
