"""3D printer job status from an OctoPrint server."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, Field

from ..core.http_client import get_shared_client

logger = logging.getLogger(__name__)

CACHE_SECONDS = 30.0
REQUEST_TIMEOUT_SECONDS = 5.0
ACTIVE_STATES = ("printing", "paused")


class PrinterStatus(BaseModel):
    """Printer job summary shown on the dashboard."""

    printing: bool = False
    progress: int = Field(default=0, description="Completion percentage, rounded")
    file_name: Optional[str] = None
    state: Optional[str] = None
    enabled: bool = True
    error: bool = False

    def to_api_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "printing": self.printing,
            "progress": self.progress,
            "fileName": self.file_name,
            "enabled": self.enabled,
        }
        if self.state is not None:
            data["state"] = self.state
        if self.error:
            data["error"] = True
        return data


def parse_job_response(job_data: dict[str, Any]) -> PrinterStatus:
    """Build a PrinterStatus from an OctoPrint ``/api/job`` payload."""
    state = str(job_data.get("state") or "").lower()
    completion = (job_data.get("progress") or {}).get("completion") or 0
    file_name = ((job_data.get("job") or {}).get("file") or {}).get("name") or None
    return PrinterStatus(
        printing=state in ACTIVE_STATES,
        progress=int(round(float(completion))),
        file_name=file_name,
        state=state,
        enabled=True,
    )


class OctoPrintService:
    """Polls OctoPrint's job endpoint with a short-lived cache."""

    def __init__(
        self,
        url: Optional[str],
        api_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url.rstrip("/") if url else None
        self.api_key = api_key
        self._client = client
        self._clock = clock
        self._cached: Optional[PrinterStatus] = None
        self._fetched_at = 0.0

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.api_key)

    async def get_status(self) -> PrinterStatus:
        """Return the current printer status.

        Never raises: an unconfigured printer reports ``enabled=False`` and a
        failed poll returns the last status or an error marker.
        """
        if self._cached is not None and self._clock() - self._fetched_at < CACHE_SECONDS:
            return self._cached

        if not self.enabled:
            logger.debug("OctoPrint not configured")
            return PrinterStatus(enabled=False)

        client = self._client or await get_shared_client("status")
        try:
            response = await client.get(
                f"{self.url}/api/job",
                headers={"X-Api-Key": self.api_key or ""},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            status = parse_job_response(response.json())
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Error fetching OctoPrint status: %s", e)
            if self._cached is not None:
                return self._cached
            return PrinterStatus(error=True)

        self._cached = status
        self._fetched_at = self._clock()
        return status
