"""
Incident Notification Sink

Turns incident domain events from the event bus into community chat
system messages and, once an incident is verified, a public alert on
social media.

Delivery is at-least-once: the bus may retry a handler that failed, so a
chat line can occasionally repeat. The announcement runs as a background
task outside the bus delivery path, bounded by its own timeout; its
failures are logged and never retried.
"""

import asyncio
from typing import Protocol

import httpx
import structlog

from nexus.kernel.event_system import EventBus
from nexus.models.chat import SystemChatMessage
from nexus.models.events import Event, EventType
from nexus.models.incident import Incident
from nexus.repositories.incident_repository import IncidentRepository, IncidentStoreError
from nexus.services.llm import LLMConfigurationError, LLMService
from nexus.services.social import SocialPostError, SocialPoster

logger = structlog.get_logger(__name__)

COLOR_REPORTED = "text-red-400"
COLOR_PARTIAL = "text-yellow-400"
COLOR_VERIFIED = "text-green-400"


class ChatBroadcaster(Protocol):
    """Fan-out transport for chat messages."""

    async def broadcast(self, message: SystemChatMessage) -> None: ...


# =============================================================================
# Message builders
# =============================================================================


def reported_message(incident_id: str) -> SystemChatMessage:
    return SystemChatMessage(
        content=f"⚠️ Community Watch Alert! Incident #{incident_id} is reported. Watchers needed!",
        color=COLOR_REPORTED,
    )


def partially_verified_message(incident_id: str, watcher: str, count: int) -> SystemChatMessage:
    return SystemChatMessage(
        content=(
            f"Watcher {watcher[:6]}... verified Incident #{incident_id}. "
            f"\nTotal watchers: {count}"
        ),
        color=COLOR_PARTIAL,
    )


def verified_message(incident_id: str, quorum: int) -> SystemChatMessage:
    return SystemChatMessage(
        content=f"✅ Incident #{incident_id} is now VERIFIED by {quorum} watchers!",
        color=COLOR_VERIFIED,
    )


# =============================================================================
# Announcer
# =============================================================================


class IncidentAnnouncer:
    """Writes an alert for a verified incident and posts it."""

    def __init__(self, llm: LLMService, poster: SocialPoster):
        self._llm = llm
        self._poster = poster

    async def announce(self, incident: Incident) -> bool:
        """
        Publish the alert for ``incident``.

        Returns:
            True if the post was accepted, False if it failed (logged)
        """
        try:
            text = await self._llm.incident_alert(incident.suspicious_address, incident.details)
        except (httpx.HTTPError, LLMConfigurationError, RuntimeError, KeyError, ValueError) as e:
            logger.error("incident_alert_generation_failed", incident_id=incident.id, error=str(e))
            return False

        if not text:
            logger.warning("incident_alert_empty", incident_id=incident.id)
            return False

        try:
            post_id = await self._poster.post(text)
        except SocialPostError as e:
            logger.error(
                "incident_alert_post_failed",
                incident_id=incident.id,
                status_code=e.status_code,
                error=str(e),
            )
            return False

        logger.info("incident_alert_posted", incident_id=incident.id, post_id=post_id)
        return True

    async def close(self) -> None:
        await self._poster.close()
        await self._llm.close()


# =============================================================================
# Sink
# =============================================================================


class IncidentNotificationSink:
    """
    Subscribes to incident events and fans them out.

    Chat broadcasts run inside bus handlers. Announcements for verified
    incidents run as tracked tasks, outside the bus handler timeout and
    retries.
    """

    def __init__(
        self,
        repository: IncidentRepository,
        broadcaster: ChatBroadcaster,
        announcer: IncidentAnnouncer | None = None,
        quorum: int = 3,
        announcement_timeout_seconds: float = 120.0,
    ):
        self._repository = repository
        self._broadcaster = broadcaster
        self._announcer = announcer
        self._quorum = quorum
        self._announcement_timeout = announcement_timeout_seconds
        self._subscription_ids: list[str] = []
        self._announcements: set[asyncio.Task[bool]] = set()

    def register(self, event_bus: EventBus) -> None:
        self._subscription_ids = [
            event_bus.subscribe(self.on_reported, {EventType.INCIDENT_REPORTED}),
            event_bus.subscribe(
                self.on_partially_verified, {EventType.INCIDENT_PARTIALLY_VERIFIED}
            ),
            event_bus.subscribe(self.on_verified, {EventType.INCIDENT_VERIFIED}),
            event_bus.subscribe(self.on_verified_announce, {EventType.INCIDENT_VERIFIED}),
        ]

    def unregister(self, event_bus: EventBus) -> None:
        for sub_id in self._subscription_ids:
            event_bus.unsubscribe(sub_id)
        self._subscription_ids = []

    @property
    def pending_announcements(self) -> int:
        return len(self._announcements)

    async def on_reported(self, event: Event) -> None:
        incident_id = event.payload["incident_id"]
        await self._broadcaster.broadcast(reported_message(incident_id))

    async def on_partially_verified(self, event: Event) -> None:
        payload = event.payload
        await self._broadcaster.broadcast(
            partially_verified_message(
                payload["incident_id"],
                payload.get("watcher_id", ""),
                int(payload.get("count", 0)),
            )
        )

    async def on_verified(self, event: Event) -> None:
        incident_id = event.payload["incident_id"]
        await self._broadcaster.broadcast(verified_message(incident_id, self._quorum))

    async def on_verified_announce(self, event: Event) -> None:
        """Start the announcement and return without waiting for it."""
        if self._announcer is None:
            return

        incident_id = event.payload["incident_id"]
        task = asyncio.create_task(self._announce(incident_id))
        self._announcements.add(task)
        task.add_done_callback(self._announcements.discard)

    async def _announce(self, incident_id: str) -> bool:
        assert self._announcer is not None

        try:
            incident = await self._repository.get_by_id(incident_id)
        except IncidentStoreError as e:
            logger.error("incident_alert_skipped", incident_id=incident_id, error=str(e))
            return False

        if incident is None:
            logger.warning("incident_alert_skipped", incident_id=incident_id, reason="not_found")
            return False

        try:
            return await asyncio.wait_for(
                self._announcer.announce(incident),
                timeout=self._announcement_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "incident_alert_timeout",
                incident_id=incident_id,
                timeout_seconds=self._announcement_timeout,
            )
            return False

    async def wait_for_announcements(self, timeout: float | None = None) -> bool:
        """
        Wait for announcements already started.

        Returns:
            True if none are left running
        """
        if not self._announcements:
            return True

        _, pending = await asyncio.wait(set(self._announcements), timeout=timeout)
        if pending:
            logger.warning("incident_alerts_unfinished", pending=len(pending))
        return not pending
