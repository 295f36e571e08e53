"""
Incident Models

A community-submitted report flagging a suspicious account, and the
verification state it accumulates as independent watchers attest to it.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from nexus.models.base import NexusModel, convert_neo4j_datetime, generate_id, utc_now


class IncidentStatus(str, Enum):
    """Lifecycle states. Transitions only go REPORTED -> VERIFIED."""

    REPORTED = "REPORTED"
    VERIFIED = "VERIFIED"


class IncidentCreate(NexusModel):
    """Fields captured when a signed report is accepted."""

    suspicious_address: str = Field(alias="suspiciousAddress", min_length=1)
    details: str = Field(min_length=1)
    reporter: str = Field(min_length=1, description="Lower-cased recovered reporter address")
    report_signature: str = Field(alias="reportSignature", min_length=1)
    timestamp: int | float = Field(description="Client-supplied epoch, display only")

    @field_validator("reporter")
    @classmethod
    def normalize_reporter(cls, v: str) -> str:
        return v.lower()


class Incident(NexusModel):
    """Persisted incident record."""

    id: str = Field(default_factory=generate_id)
    suspicious_address: str = Field(alias="suspiciousAddress")
    details: str
    reporter: str
    report_signature: str = Field(alias="reportSignature")
    timestamp: int | float
    status: IncidentStatus = IncidentStatus.REPORTED
    verifiers: list[str] = Field(default_factory=list)
    created_at: datetime = Field(alias="createdAt", default_factory=utc_now)
    verified_at: datetime | None = Field(alias="verifiedAt", default=None)

    @field_validator("created_at", "verified_at", mode="before")
    @classmethod
    def convert_datetime(cls, v: Any) -> datetime | None:
        return convert_neo4j_datetime(v)

    @field_validator("verifiers", mode="before")
    @classmethod
    def default_verifiers(cls, v: Any) -> list[str]:
        # Neo4j returns null for an empty list property written as []
        return list(v) if v else []

    @property
    def watcher_count(self) -> int:
        return len(self.verifiers)

    @property
    def is_verified(self) -> bool:
        return self.status == IncidentStatus.VERIFIED

    def has_verifier(self, address: str) -> bool:
        return address.lower() in self.verifiers


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of the store's atomic append-and-maybe-promote step."""

    incident: Incident
    appended: bool
    transitioned: bool
