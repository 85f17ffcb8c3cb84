"""
Reverse geocoding helpers (Nominatim).

Used by the location pipeline to turn detected coordinates into an address.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

import aiohttp

from utils import config
from utils.logger import get_logger

_logger = get_logger(__name__)


def _normalize(text: Optional[str]) -> str:
    if not text:
        return ""
    return " ".join(text.strip().split())


class NominatimGeocoder:
    """Reverse geocoder with request throttling and a per-coordinate cache.

    ``reverse`` returns an empty string when the provider has no result or
    cannot be reached; it never raises for provider-side trouble.
    """

    def __init__(
        self,
        url: str = config.GEOCODE_URL,
        user_agent: str = config.GEOCODE_USER_AGENT,
        language: Optional[str] = config.GEOCODE_LANGUAGE,
        min_delay: float = config.GEOCODE_MIN_DELAY,
        timeout: float = config.REQUEST_TIMEOUT,
    ) -> None:
        self._url = url
        self._user_agent = user_agent
        self._language = language or None
        self._min_delay = max(min_delay, 0.0)
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._lock = asyncio.Lock()
        self._last_request_ts = 0.0
        self._cache: Dict[str, str] = {}

    async def _throttle(self) -> None:
        if self._min_delay <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            wait_for = self._min_delay - (now - self._last_request_ts)
            if wait_for > 0:
                await asyncio.sleep(wait_for)
            self._last_request_ts = time.monotonic()

    async def _request_json(self, params: Dict[str, Any]) -> Optional[Any]:
        await self._throttle()
        if self._language:
            params["accept-language"] = self._language
        headers = {"User-Agent": self._user_agent}
        try:
            async with aiohttp.ClientSession(headers=headers) as session:
                async with session.get(
                    self._url, params=params, timeout=self._timeout
                ) as resp:
                    if resp.status != 200:
                        _logger.warning(f"geocoder answered {resp.status}")
                        return None
                    return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _logger.warning(f"geocoder unreachable: {e!r}")
            return None

    async def reverse(self, lat: float, lon: float) -> str:
        cache_key = f"{lat:.6f},{lon:.6f}"
        if cache_key in self._cache:
            return self._cache[cache_key]
        params = {
            "lat": f"{lat:.6f}",
            "lon": f"{lon:.6f}",
            "format": "jsonv2",
            "zoom": 18,
            "addressdetails": 0,
        }
        data = await self._request_json(params)
        if not isinstance(data, dict) or data.get("error"):
            return ""
        address = _normalize(data.get("display_name"))
        if address:
            self._cache[cache_key] = address
        return address
