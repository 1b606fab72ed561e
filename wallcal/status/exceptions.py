"""Exceptions raised by the dashboard status services."""

from typing import Optional


class StatusServiceError(Exception):
    """A status source is unconfigured or unreachable and has nothing cached."""

    def __init__(self, message: str, service: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.service = service
        self.status_code = status_code
