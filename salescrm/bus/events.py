"""
Event Bus - Decoupled Module Communication
The engine emits events, listeners (CLI, integrations) subscribe. No direct imports between them.
"""

from typing import Callable, Dict, List, Any
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple event bus for decoupled module communication.
    Modules emit events, other modules register handlers to listen.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, handler: Callable):
        """
        Register a handler for an event.

        Args:
            event_name: Name of the event to listen for
            handler: Callable that receives event_data dict
        """
        if event_name not in self._handlers:
            self._handlers[event_name] = []
        self._handlers[event_name].append(handler)
        logger.debug(f"Registered handler for event '{event_name}': {handler.__name__}")

    def off(self, event_name: str, handler: Callable):
        """Unregister a handler. Unknown handlers are ignored."""
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_name: str, event_data: Dict[str, Any] = None):
        """
        Emit an event to all registered handlers.
        A failing handler is logged and never stops the others.

        Args:
            event_name: Name of the event
            event_data: Optional dict of data to pass to handlers
        """
        if event_data is None:
            event_data = {}

        logger.debug(f"Emitting event '{event_name}' with data: {event_data}")

        for handler in list(self._handlers.get(event_name, [])):
            try:
                handler(event_data)
            except Exception as e:
                logger.error(f"Error in handler {handler.__name__} for event '{event_name}': {e}")

    def clear(self):
        """Clear all handlers (useful for testing)."""
        self._handlers.clear()


# Singleton instance
bus = EventBus()


# =============================================================================
# STANDARD EVENTS
# =============================================================================

# Contact lifecycle
EVENT_CONTACT_CREATED = 'contact_created'
EVENT_CONTACT_UPDATED = 'contact_updated'
EVENT_CONTACT_DELETED = 'contact_deleted'
EVENT_STAGE_CHANGED = 'stage_changed'

# Audit log
EVENT_INTERACTION_LOGGED = 'interaction_logged'
EVENT_AUDIT_FAILED = 'audit_failed'

# Notifications
EVENT_NOTIFICATIONS_REFRESHED = 'notifications_refreshed'
EVENT_NOTIFICATION_READ = 'notification_read'
