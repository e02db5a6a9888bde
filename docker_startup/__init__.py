"""
Docker Startup for Guacamole connections.

Provisions a single-use container per user, group or connection and
points the Guacamole connection parameters at the container's published
endpoint:
- Container settings read from User / UserGroup / Connection attributes
- Deterministic container names, so repeated requests reuse a container
- Per-identity locking around create/start/stop
- Published host/port resolved after start and merged into the connection
- Container-backed connections overlaid on the stored connection directory
- Containers stopped and removed when the owning session is closed
"""

__version__ = "1.0.0"
