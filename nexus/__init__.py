"""
Nexus Community Watch

Crowd-sourced suspicious-address reporting for the Ethereum Classic
community: wallet-signed incident reports, quorum verification by
independent watchers, and chat/social fan-out on every transition.
"""

__version__ = "1.0.0"

from nexus.config import settings

__all__ = ["settings", "__version__"]
