"""
Community Watch API Routes

Endpoints for the incident reporting and verification workflow:
- POST /report: file a signed incident report
- POST /verify: attest to an incident as a watcher
- GET /incidents: list incidents, optionally by status
- GET /incidents/{incident_id}: fetch one incident
"""

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field, model_validator

from nexus.api.dependencies import CommunityWatchDep
from nexus.models.incident import Incident, IncidentStatus
from nexus.repositories.incident_repository import IncidentStoreError

logger = structlog.get_logger(__name__)

router = APIRouter()

STORE_RETRY_AFTER = "5"


# =============================================================================
# Request/Response Models
# =============================================================================


class ReportRequest(BaseModel):
    """
    Signed incident report.

    Accepts the flat shape or the browser portal's nested
    ``{"formData": {...}, "signature": "0x..."}`` shape. Fields are
    optional here so that absent values are reported as incomplete form
    data rather than schema errors.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    suspicious_address: str | None = Field(default=None, alias="suspiciousAddress")
    details: str | None = None
    reporter: str | None = None
    timestamp: int | float | None = None
    signature: str | None = None

    @model_validator(mode="before")
    @classmethod
    def flatten_form_data(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("formData"), dict):
            flat = {key: value for key, value in data.items() if key != "formData"}
            for key, value in data["formData"].items():
                flat.setdefault(key, value)
            return flat
        return data


class VerifyRequest(BaseModel):
    """A watcher's signed attestation of ``I verify incident #<id>``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    incident_id: str | None = Field(default=None, alias="incidentId")
    watcher_address: str | None = Field(default=None, alias="watcherAddress")
    signature: str | None = None


class ReportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    incident_id: str = Field(serialization_alias="incidentId")
    message: str = "Incident reported successfully"


class VerifyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    incident_id: str = Field(serialization_alias="incidentId")
    status: IncidentStatus
    watchers: int
    message: str


def _incident_payload(incident: Incident) -> dict[str, Any]:
    payload = incident.model_dump(mode="json", by_alias=True)
    payload["watchers"] = incident.watcher_count
    return payload


def _store_failure(message: str, **context: Any) -> HTTPException:
    logger.exception("incident_store_failure", error_message=message, **context)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=message,
        headers={"Retry-After": STORE_RETRY_AFTER},
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/report", response_model_by_alias=True)
async def report_incident(
    request: ReportRequest,
    service: CommunityWatchDep,
) -> ReportResponse:
    """
    Report a suspicious address.

    The reporter signs the compact JSON of
    ``{suspiciousAddress, details, reporter, timestamp}`` with their wallet.
    """
    try:
        incident = await service.submit(
            suspicious_address=request.suspicious_address,
            details=request.details,
            reporter=request.reporter,
            timestamp=request.timestamp,
            signature=request.signature,
        )
    except IncidentStoreError:
        raise _store_failure("Server error reporting incident") from None

    return ReportResponse(incident_id=incident.id)


@router.post("/verify", response_model_by_alias=True)
async def verify_incident(
    request: VerifyRequest,
    service: CommunityWatchDep,
) -> VerifyResponse:
    """
    Record a watcher's verification.

    The incident becomes VERIFIED once enough distinct watchers have
    signed. Repeat verifications are accepted without effect.
    """
    try:
        result = await service.verify(
            incident_id=request.incident_id,
            watcher_address=request.watcher_address,
            signature=request.signature,
        )
    except IncidentStoreError:
        raise _store_failure(
            "Server error verifying incident", incident_id=request.incident_id
        ) from None

    return VerifyResponse(
        incident_id=result.incident_id,
        status=result.status,
        watchers=result.watchers,
        message=result.message,
    )


@router.get("/incidents")
async def list_incidents(
    service: CommunityWatchDep,
    status_filter: IncidentStatus | None = Query(default=None, alias="status"),
    limit: int | None = Query(default=None, ge=1, le=1000),
) -> dict[str, Any]:
    """List incidents newest first."""
    try:
        incidents = await service.list_incidents(status_filter, limit=limit)
    except IncidentStoreError:
        raise _store_failure("Server error fetching incidents") from None

    return {
        "success": True,
        "incidents": [_incident_payload(incident) for incident in incidents],
    }


@router.get("/incidents/{incident_id}")
async def get_incident(incident_id: str, service: CommunityWatchDep) -> dict[str, Any]:
    """Get a single incident."""
    try:
        incident = await service.get_incident(incident_id)
    except IncidentStoreError:
        raise _store_failure("Server error fetching incident", incident_id=incident_id) from None

    return {"success": True, "incident": _incident_payload(incident)}
