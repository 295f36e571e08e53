"""
Nexus Community Watch - FastAPI Application Factory
Main entry point for the Nexus API.

This creates and configures the FastAPI application with:
- Community watch routes (report, verify, incidents)
- WebSocket chat feed
- Middleware (correlation ID logging context, CORS)
- Error handlers
- Health and readiness probes
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from neo4j.exceptions import Neo4jError, ServiceUnavailable
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.exceptions import HTTPException as StarletteHTTPException

from nexus import __version__
from nexus.api.websocket.handlers import WebSocketChatBroadcaster, connection_manager
from nexus.config import Settings, get_settings
from nexus.database.client import Neo4jClient
from nexus.kernel.event_system import EventBus
from nexus.monitoring import LoggingContextMiddleware, configure_logging
from nexus.repositories.incident_repository import (
    IncidentNotFoundError,
    IncidentRepository,
    IncidentStoreError,
    InMemoryIncidentRepository,
    Neo4jIncidentRepository,
)
from nexus.services.community_watch import CommunityWatchError, CommunityWatchService
from nexus.services.llm import LLMConfig, LLMConfigurationError, LLMProvider, LLMService
from nexus.services.notifications import (
    ChatBroadcaster,
    IncidentAnnouncer,
    IncidentNotificationSink,
)
from nexus.services.social import NullPoster, SocialPoster, XPoster

if TYPE_CHECKING:
    from sentry_sdk._types import Event as SentryEvent

# Configure logging early - before any other logging occurs
_settings = get_settings()


def _sentry_before_send(
    event: SentryEvent,
    hint: dict[str, Any],
) -> SentryEvent | None:
    """Filter out health check endpoint errors from Sentry."""
    request_data = event.get("request")
    url = ""
    if isinstance(request_data, dict):
        url_value = request_data.get("url", "")
        if isinstance(url_value, str):
            url = url_value
    if "/health" in url or "/ready" in url:
        return None
    return event


# Initialize Sentry for error tracking (if DSN is configured)
_sentry_initialized = False
if _settings.sentry_dsn:
    sentry_sdk.init(
        dsn=_settings.sentry_dsn,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        traces_sample_rate=0.1 if _settings.app_env == "production" else 1.0,
        environment=_settings.app_env,
        release=f"nexus-watch@{__version__}",
        # Wallet addresses and signatures stay out of Sentry
        send_default_pii=False,
        before_send=_sentry_before_send,
    )
    _sentry_initialized = True

configure_logging(
    level=_settings.log_level,
    json_output=_settings.app_env == "production",
    include_timestamps=True,
    include_service_info=True,
    sanitize_logs=True,
)

logger = structlog.get_logger(__name__)

if _sentry_initialized:
    logger.info("sentry_initialized", environment=_settings.app_env)
else:
    logger.debug("sentry_not_configured", hint="Set SENTRY_DSN to enable error tracking")


class NexusApp:
    """
    Nexus application container.

    Holds references to all core components for dependency injection.
    Components passed to the constructor are used as-is instead of being
    built from settings.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        repository: IncidentRepository | None = None,
        broadcaster: ChatBroadcaster | None = None,
        announcer: IncidentAnnouncer | None = None,
    ) -> None:
        self.settings = settings or get_settings()

        self.db_client: Neo4jClient | None = None
        self.repository: IncidentRepository | None = repository
        self.event_bus: EventBus | None = None
        self.community_watch: CommunityWatchService | None = None
        self.notification_sink: IncidentNotificationSink | None = None
        self.broadcaster: ChatBroadcaster | None = broadcaster
        self.announcer: IncidentAnnouncer | None = announcer

        self.is_ready = False
        self.started_at: datetime | None = None

    async def initialize(self) -> None:
        """Initialize all components."""
        logger.info("nexus_initializing", store_backend=self.settings.incident_store_backend)

        if self.repository is None:
            self.repository = await self._create_repository()

        try:
            await self.repository.initialize()
        except IncidentStoreError as e:
            logger.critical("incident_store_initialization_failed", error=str(e))
            await self._close_database()
            raise RuntimeError(f"Cannot start: Incident store initialization failed - {e}") from e

        self.event_bus = EventBus(
            max_queue_size=self.settings.event_queue_size,
            max_retries=self.settings.event_max_retries,
            retry_delay_seconds=self.settings.event_retry_delay_seconds,
            handler_timeout_seconds=self.settings.event_handler_timeout_seconds,
        )

        self.community_watch = CommunityWatchService(
            repository=self.repository,
            event_bus=self.event_bus,
            quorum=self.settings.watch_quorum,
            allow_self_verification=self.settings.watch_allow_self_verification,
            list_limit=self.settings.incident_list_limit,
        )

        if self.broadcaster is None:
            self.broadcaster = WebSocketChatBroadcaster(connection_manager)
        if self.announcer is None:
            self.announcer = self._create_announcer()

        self.notification_sink = IncidentNotificationSink(
            repository=self.repository,
            broadcaster=self.broadcaster,
            announcer=self.announcer,
            quorum=self.settings.watch_quorum,
            announcement_timeout_seconds=self.settings.announcement_timeout_seconds,
        )
        self.notification_sink.register(self.event_bus)

        await self.event_bus.start()

        self.is_ready = True
        self.started_at = datetime.now(UTC)
        logger.info(
            "nexus_initialized",
            quorum=self.settings.watch_quorum,
            announcements=self.announcer is not None,
        )

    async def _create_repository(self) -> IncidentRepository:
        if self.settings.incident_store_backend == "memory":
            logger.warning("incident_store_in_memory", hint="Incidents are lost on restart")
            return InMemoryIncidentRepository()

        try:
            self.db_client = Neo4jClient(
                uri=self.settings.neo4j_uri,
                user=self.settings.neo4j_user,
                password=self.settings.neo4j_password,
                database=self.settings.neo4j_database,
            )
            await self.db_client.connect()
        except (Neo4jError, ServiceUnavailable, OSError) as e:
            logger.critical("database_connection_failed", error=str(e))
            self.db_client = None
            raise RuntimeError(f"Cannot start: Database connection failed - {e}") from e

        return Neo4jIncidentRepository(self.db_client)

    def _create_announcer(self) -> IncidentAnnouncer | None:
        if not self.settings.announcements_enabled:
            logger.info("incident_announcements_disabled")
            return None

        try:
            llm = LLMService(
                LLMConfig(
                    provider=LLMProvider(self.settings.llm_provider),
                    model=self.settings.llm_model,
                    api_key=self.settings.llm_api_key,
                    max_tokens=self.settings.llm_max_tokens,
                    temperature=self.settings.llm_temperature,
                )
            )
        except LLMConfigurationError as e:
            logger.warning("incident_announcements_unavailable", reason=str(e))
            return None

        poster: SocialPoster
        if self.settings.x_access_token:
            poster = XPoster(
                access_token=self.settings.x_access_token,
                api_base=self.settings.x_api_base_url,
            )
        else:
            logger.warning(
                "incident_announcements_log_only",
                hint="Set X_ACCESS_TOKEN to post verified incidents",
            )
            poster = NullPoster()

        return IncidentAnnouncer(llm, poster)

    async def _close_database(self) -> None:
        if self.db_client:
            await self.db_client.close()
            self.db_client = None

    async def shutdown(self, timeout_seconds: float = 30.0) -> None:
        """Gracefully shutdown all components."""
        logger.info("nexus_shutting_down", timeout_seconds=timeout_seconds)
        self.is_ready = False

        if self.event_bus:
            try:
                await self.event_bus.stop(timeout=timeout_seconds / 2)
            except (RuntimeError, asyncio.CancelledError) as e:
                logger.warning("event_bus_shutdown_failed", error=str(e))
            if self.notification_sink:
                self.notification_sink.unregister(self.event_bus)

        if self.notification_sink:
            await self.notification_sink.wait_for_announcements(timeout=timeout_seconds / 4)

        if self.announcer:
            try:
                await self.announcer.close()
            except (RuntimeError, OSError) as e:
                logger.warning("announcer_shutdown_failed", error=str(e))

        await self._close_database()
        logger.info("nexus_shutdown_complete")

    def get_status(self) -> dict[str, Any]:
        """Get current application status."""
        return {
            "status": "ready" if self.is_ready else "starting",
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "uptime_seconds": (
                (datetime.now(UTC) - self.started_at).total_seconds() if self.started_at else 0
            ),
            "store_backend": self.settings.incident_store_backend,
            "database": "connected" if self.db_client and self.db_client.is_connected else "n/a",
            "event_bus": self.event_bus.get_metrics() if self.event_bus else None,
            "chat": connection_manager.get_stats(),
        }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Initializes and shuts down all components.
    """
    nexus: NexusApp = app.state.nexus
    try:
        await nexus.initialize()
        yield
    finally:
        shutdown_timeout = 30.0
        try:
            await asyncio.wait_for(
                nexus.shutdown(timeout_seconds=shutdown_timeout),
                timeout=shutdown_timeout + 5.0,
            )
        except TimeoutError:
            logger.error("nexus_shutdown_timeout", timeout_seconds=shutdown_timeout)


def _error_response(
    status_code: int,
    error: str,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, **extra},
        headers=headers,
    )


def create_app(
    nexus: NexusApp | None = None,
    title: str = "Nexus Community Watch",
    description: str = "Wallet-signed incident reports verified by community watchers",
    version: str = __version__,
    docs_url: str | None = "/docs",
    redoc_url: str | None = "/redoc",
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        nexus: Application container; a default one is built from settings
        title: API title for documentation
        description: API description
        version: API version string
        docs_url: Swagger UI URL (None to disable)
        redoc_url: ReDoc URL (None to disable)

    Returns:
        Configured FastAPI application
    """
    nexus = nexus or NexusApp()
    settings = nexus.settings

    if settings.app_env == "production":
        docs_url = None
        redoc_url = None

    app = FastAPI(
        title=title,
        description=description,
        version=version,
        docs_url=docs_url,
        redoc_url=redoc_url,
        debug=settings.debug,
        lifespan=lifespan,
        openapi_tags=[
            {
                "name": "communityWatch",
                "description": "Incident reporting and multi-party verification",
            },
        ],
    )

    app.state.nexus = nexus

    cors_origins = settings.cors_origins_list
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials="*" not in cors_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "X-Correlation-ID"],
            expose_headers=["X-Correlation-ID", "Retry-After"],
        )

    app.add_middleware(LoggingContextMiddleware)

    # Exception handlers
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(
            exc.status_code,
            str(exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Location and message only; submitted values are never echoed
        sanitized_errors = [
            {
                "loc": list(error.get("loc", [])),
                "type": error.get("type", "unknown"),
                "msg": error.get("msg", "Validation failed"),
            }
            for error in exc.errors()
        ]
        logger.info("request_rejected", reason="validation", errors=len(sanitized_errors))
        return _error_response(400, "Invalid request", details=sanitized_errors)

    @app.exception_handler(CommunityWatchError)
    async def community_watch_error_handler(
        request: Request, exc: CommunityWatchError
    ) -> JSONResponse:
        return _error_response(exc.status_code, exc.reason)

    @app.exception_handler(IncidentNotFoundError)
    async def incident_not_found_handler(
        request: Request, exc: IncidentNotFoundError
    ) -> JSONResponse:
        return _error_response(404, "Incident not found")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "unhandled_exception",
            path=str(request.url.path),
            error=str(exc),
        )
        return _error_response(500, "Internal server error")

    from nexus.api.routes import community_watch
    from nexus.api.websocket import websocket_router

    app.include_router(
        community_watch.router, prefix="/api/communityWatch", tags=["communityWatch"]
    )
    app.include_router(websocket_router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, Any]:
        return {
            "name": title,
            "version": version,
            "status": nexus.get_status(),
        }

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {
            "status": "healthy" if nexus.is_ready else "starting",
        }

    @app.get("/ready", include_in_schema=False)
    async def ready() -> Response:
        if not nexus.is_ready:
            return JSONResponse(status_code=503, content={"status": "not_ready"})

        if nexus.db_client:
            db_ok = await nexus.db_client.verify_connection()
            if not db_ok:
                return JSONResponse(
                    status_code=503,
                    content={"status": "degraded", "reason": "database_unreachable"},
                    headers={"Retry-After": "5"},
                )

        if nexus.event_bus and not nexus.event_bus.is_running:
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "reason": "event_bus_stopped"},
            )

        return JSONResponse(content={"status": "ready"})

    logger.info("fastapi_app_created", title=title, version=version, docs_url=docs_url)

    return app


# Default app for uvicorn
app = create_app()


def run_server(
    host: str | None = None,
    port: int | None = None,
    reload: bool = False,
    workers: int = 1,
) -> None:
    """
    Run the Nexus server.

    For development use:
        python -m nexus.api.app

    For production use:
        uvicorn nexus.api.app:app --host 0.0.0.0 --port 8000
    """
    import uvicorn

    uvicorn.run(
        "nexus.api.app:app",
        host=host or _settings.api_host,
        port=port or _settings.api_port,
        reload=reload,
        workers=workers,
        log_level=_settings.log_level.lower(),
    )


if __name__ == "__main__":
    run_server(reload=True)
