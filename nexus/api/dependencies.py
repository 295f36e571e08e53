"""
Nexus - FastAPI Dependencies
Dependency injection for API routes.

Provides:
- Settings
- Application container access
- Community watch service and event bus
"""

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status

from nexus.config import Settings, get_settings
from nexus.kernel.event_system import EventBus
from nexus.services.community_watch import CommunityWatchService

if TYPE_CHECKING:
    from nexus.api.app import NexusApp


# =============================================================================
# Settings
# =============================================================================


def get_app_settings() -> Settings:
    """Get application settings."""
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


# =============================================================================
# Nexus App Access
# =============================================================================


def get_nexus_app(request: Request) -> "NexusApp":
    """Get the NexusApp instance from request state."""
    if not hasattr(request.app.state, "nexus"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Nexus application not initialized",
        )
    nexus_app: "NexusApp" = request.app.state.nexus
    return nexus_app


# =============================================================================
# Services
# =============================================================================


async def get_community_watch_service(request: Request) -> CommunityWatchService:
    """Get the incident workflow engine."""
    nexus = get_nexus_app(request)
    if not nexus.community_watch:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Community watch not initialized",
        )
    return nexus.community_watch


async def get_event_bus(request: Request) -> EventBus:
    """Get event bus."""
    nexus = get_nexus_app(request)
    if not nexus.event_bus:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event bus not initialized",
        )
    return nexus.event_bus


CommunityWatchDep = Annotated[CommunityWatchService, Depends(get_community_watch_service)]
EventBusDep = Annotated[EventBus, Depends(get_event_bus)]
