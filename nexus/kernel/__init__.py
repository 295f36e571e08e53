"""
Nexus Kernel

In-process event bus connecting the workflow engine to its side effects.
"""

from nexus.kernel.event_system import (
    EventBus,
    EventHandler,
    EventQueueFullError,
)

__all__ = [
    "EventBus",
    "EventHandler",
    "EventQueueFullError",
]
