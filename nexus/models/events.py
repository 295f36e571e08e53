"""
Event Models

Domain events published by the community watch workflow and consumed by
the notification sink through the event bus.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from nexus.models.base import NexusModel, generate_id, utc_now


class EventType(str, Enum):
    """Types of events in the Nexus system."""

    INCIDENT_REPORTED = "incident.reported"
    INCIDENT_PARTIALLY_VERIFIED = "incident.partially_verified"
    INCIDENT_VERIFIED = "incident.verified"


class Event(NexusModel):
    """Base event model for the pub/sub system."""

    id: str = Field(default_factory=generate_id, description="Unique event ID")
    event_type: EventType
    source: str = Field(description="Source component")
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    correlation_id: str | None = Field(
        default=None,
        description="For tracing related events",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
