"""
Nexus Services

Workflow engine plus the notification side effects it triggers.
"""

from nexus.services.community_watch import (
    BadRequestError,
    CommunityWatchError,
    CommunityWatchService,
    MissingFieldsError,
    SelfVerificationError,
    SignatureMismatchError,
    VerifyResult,
)
from nexus.services.llm import LLMConfig, LLMProvider, LLMService
from nexus.services.notifications import (
    ChatBroadcaster,
    IncidentAnnouncer,
    IncidentNotificationSink,
)
from nexus.services.social import NullPoster, SocialPostError, XPoster

__all__ = [
    "CommunityWatchService",
    "CommunityWatchError",
    "BadRequestError",
    "MissingFieldsError",
    "SignatureMismatchError",
    "SelfVerificationError",
    "VerifyResult",
    "LLMConfig",
    "LLMProvider",
    "LLMService",
    "ChatBroadcaster",
    "IncidentAnnouncer",
    "IncidentNotificationSink",
    "NullPoster",
    "SocialPostError",
    "XPoster",
]
