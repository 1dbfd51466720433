"""Async HTTP client for the AxeOS REST API."""

import asyncio
import aiohttp
import logging
from typing import Optional

from pydantic import ValidationError

from .models import HistoryBatch, SystemInfo

logger = logging.getLogger(__name__)


class AxeOSClient:
    """Async HTTP client for the /api/system/info endpoint."""

    def __init__(self, ip_address: str, timeout: int = 10):
        """Initialize client.

        Args:
            ip_address: IP address of the device
            timeout: Request timeout in seconds
        """
        self.base_url = f"http://{ip_address}"
        self.ip_address = ip_address
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Create session on context entry."""
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close session on context exit."""
        if self.session:
            await self.session.close()

    async def get_system_info(
        self,
        start_timestamp_ms: Optional[int] = None,
        chunk_size: int = 0,
        span_ms: Optional[int] = None,
    ) -> SystemInfo:
        """Fetch current system information, optionally with a history span.

        Args:
            start_timestamp_ms: Return history newer than this timestamp
            chunk_size: Maximum number of history entries (0 = device default)
            span_ms: History span the chart can show

        Returns:
            SystemInfo with live metrics and the history batch (if any)

        Raises:
            aiohttp.ClientError: On connection/HTTP errors
            ValueError: On invalid response data
        """
        if not self.session:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        params = {}
        if start_timestamp_ms is not None:
            params["ts"] = str(int(start_timestamp_ms))
        if chunk_size:
            params["chunk"] = str(int(chunk_size))
        if span_ms:
            params["span"] = str(int(span_ms))

        url = f"{self.base_url}/api/system/info"
        logger.debug(f"Fetching system info from {url} {params}")

        try:
            async with self.session.get(url, params=params) as response:
                response.raise_for_status()
                data = await response.json()
                return SystemInfo(**data)
        except aiohttp.ClientError as e:
            logger.error(f"Failed to fetch system info from {self.ip_address}: {e}")
            raise
        except (ValidationError, TypeError) as e:
            logger.error(f"Invalid response from {self.ip_address}: {e}")
            raise ValueError(f"Invalid system info response: {e}")

    async def get_history(self, start_timestamp_ms: Optional[int], chunk_size: int = 0,
                          span_ms: Optional[int] = None) -> Optional[HistoryBatch]:
        """Fetch only the history part of /api/system/info."""
        info = await self.get_system_info(start_timestamp_ms, chunk_size, span_ms)
        return info.history

    async def health_check(self) -> bool:
        """Check if device is reachable.

        Returns:
            True if device responds, False otherwise
        """
        try:
            await self.get_system_info()
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError):
            return False
