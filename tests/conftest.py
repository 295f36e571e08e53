"""
Nexus Community Watch - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================
# Must run before any nexus module reads settings.

_current_env = os.environ.get("APP_ENV", "")
if _current_env == "production":
    raise RuntimeError("Test fixtures cannot be loaded in production environment.")

os.environ["APP_ENV"] = "testing"
os.environ.setdefault("INCIDENT_STORE_BACKEND", "memory")
os.environ.setdefault("LLM_PROVIDER", "mock")
os.environ.setdefault("ANNOUNCEMENTS_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from nexus.client import sign_text  # noqa: E402
from nexus.kernel.event_system import EventBus  # noqa: E402
from nexus.models.chat import SystemChatMessage  # noqa: E402
from nexus.repositories.incident_repository import InMemoryIncidentRepository  # noqa: E402
from nexus.security.signatures import (  # noqa: E402
    canonical_report_message,
    verification_message,
)
from nexus.services.community_watch import CommunityWatchService  # noqa: E402

# Well-known development keys (Hardhat/Anvil default accounts). TEST ONLY.
TEST_PRIVATE_KEYS = [
    "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80",
    "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d",
    "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a",
    "0x7c852118294e51e653712a81e05800f419141751be58f605c371e15141b007a6",
    "0x47e179ec197488593b187f80a00eb0da91f1b9d0b13f8733639f19c30a34926a",
]

SUSPICIOUS_ADDRESS = "0x000000000000000000000000000000000000dEaD"
DEFAULT_TIMESTAMP = 1717000000000


# =============================================================================
# Wallets
# =============================================================================


@pytest.fixture
def reporter() -> LocalAccount:
    return Account.from_key(TEST_PRIVATE_KEYS[0])


@pytest.fixture
def watchers() -> list[LocalAccount]:
    """Four wallets distinct from the reporter."""
    return [Account.from_key(key) for key in TEST_PRIVATE_KEYS[1:]]


@pytest.fixture
def make_report() -> Callable[..., dict[str, Any]]:
    """Build submit() keyword arguments signed by ``account``."""

    def _make(
        account: LocalAccount,
        suspicious_address: str = SUSPICIOUS_ADDRESS,
        details: str = "Fake airdrop site draining wallets",
        timestamp: int | float = DEFAULT_TIMESTAMP,
        reporter: str | None = None,
    ) -> dict[str, Any]:
        claimed = reporter or account.address
        message = canonical_report_message(suspicious_address, details, claimed, timestamp)
        return {
            "suspicious_address": suspicious_address,
            "details": details,
            "reporter": claimed,
            "timestamp": timestamp,
            "signature": sign_text(account, message),
        }

    return _make


@pytest.fixture
def sign_verification() -> Callable[[LocalAccount, str], str]:
    def _sign(account: LocalAccount, incident_id: str) -> str:
        return sign_text(account, verification_message(incident_id))

    return _sign


# =============================================================================
# Core components
# =============================================================================


class RecordingBroadcaster:
    """ChatBroadcaster that keeps every message it is asked to send."""

    def __init__(self) -> None:
        self.messages: list[SystemChatMessage] = []

    async def broadcast(self, message: SystemChatMessage) -> None:
        self.messages.append(message)


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def repository() -> InMemoryIncidentRepository:
    return InMemoryIncidentRepository()


@pytest.fixture
async def event_bus() -> AsyncGenerator[EventBus, None]:
    """A started EventBus with fast retries."""
    bus = EventBus(max_queue_size=100, max_retries=2, retry_delay_seconds=0.01)
    await bus.start()
    yield bus
    await bus.stop(timeout=1.0)


@pytest.fixture
def service(repository: InMemoryIncidentRepository, event_bus: EventBus) -> CommunityWatchService:
    return CommunityWatchService(repository, event_bus, quorum=3)
