"""Route modules for the wallcal server."""

from .calendar_routes import register_calendar_routes
from .static_routes import register_static_routes
from .status_routes import register_status_routes

__all__ = [
    "register_calendar_routes",
    "register_static_routes",
    "register_status_routes",
]
