"""
Nexus API Module

FastAPI application, routes and WebSocket feed.
"""

from nexus.api.app import NexusApp, create_app

__all__ = ["NexusApp", "create_app"]
