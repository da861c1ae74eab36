"""Pydantic schemas for request/response validation."""

from shopagent.schemas.common import HealthResponse

__all__ = [
    "HealthResponse",
]
