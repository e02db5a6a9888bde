"""Services module for session-scoped decoration."""

from docker_startup.services.user_context import StartupUserContext

__all__ = [
    "StartupUserContext",
]
