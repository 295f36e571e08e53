"""
Base Models and Common Types

Foundation classes for all Nexus models.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict


def generate_id() -> str:
    """Generate a new opaque entity ID."""
    return uuid4().hex


def utc_now() -> datetime:
    """Current timezone-aware UTC time."""
    return datetime.now(UTC)


def convert_neo4j_datetime(value: Any) -> datetime | None:
    """Convert a Neo4j DateTime, ISO string or naive datetime to an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
    # Neo4j DateTime object
    if hasattr(value, "to_native"):
        native: datetime = value.to_native()
        return native
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


class NexusModel(BaseModel):
    """Base model for all Nexus entities with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        validate_assignment=True,
        use_enum_values=True,
    )
