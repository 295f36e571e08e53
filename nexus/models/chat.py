"""
Chat Models

System messages the notification sink posts into the community chat.
Field names follow the chat room's wire format.
"""

from datetime import datetime

from pydantic import Field

from nexus.models.base import NexusModel, utc_now


class SystemChatMessage(NexusModel):
    """A chat line authored by the platform rather than a wallet."""

    content: str
    type: str = "text"
    username: str = "System"
    user_address: str = Field(alias="userAddress", default="")
    image_url: str = Field(alias="imageUrl", default="")
    profile_pic: str = Field(alias="profilePic", default="")
    color: str = "text-white"
    created_at: datetime = Field(alias="createdAt", default_factory=utc_now)

    def to_wire(self) -> dict[str, object]:
        """JSON-ready payload using the chat client's camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
