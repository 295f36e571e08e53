"""
Nexus API Routes
"""

from nexus.api.routes import community_watch

__all__ = ["community_watch"]
