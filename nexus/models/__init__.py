"""
Nexus Models

Pydantic models for all domain entities.
"""

from nexus.models.base import NexusModel, generate_id, utc_now
from nexus.models.chat import SystemChatMessage
from nexus.models.events import Event, EventType
from nexus.models.incident import (
    Incident,
    IncidentCreate,
    IncidentStatus,
    VerificationOutcome,
)

__all__ = [
    "NexusModel",
    "generate_id",
    "utc_now",
    "Event",
    "EventType",
    "Incident",
    "IncidentCreate",
    "IncidentStatus",
    "VerificationOutcome",
    "SystemChatMessage",
]
