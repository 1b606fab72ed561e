"""Dashboard status sources: weather, 3D printer and garage door."""

from .exceptions import StatusServiceError
from .garage_door import GarageDoorService
from .octoprint import OctoPrintService, PrinterStatus
from .weather import WeatherService

__all__ = [
    "GarageDoorService",
    "OctoPrintService",
    "PrinterStatus",
    "StatusServiceError",
    "WeatherService",
]
