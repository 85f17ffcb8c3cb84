# device position sources; a terminal has no GPS, so the fix comes from
# a configured position or from an IP lookup
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import aiohttp

from core.errors import GeoPermissionDenied, GeoTimeout, GeoUnavailable
from utils import config
from utils.logger import get_logger

_logger = get_logger(__name__)


@dataclass(frozen=True)
class PositionOptions:
    timeout: float = config.GEO_TIMEOUT
    high_accuracy: bool = config.GEO_HIGH_ACCURACY
    max_cache_age: float = config.GEO_MAX_CACHE_AGE


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    accuracy_m: Optional[float] = None
    timestamp: float = 0.0


class PositionProvider(Protocol):
    async def current_position(self, options: PositionOptions) -> Position: ...


class FixedPositionProvider:
    """Always answers with the position given at construction."""

    def __init__(self, latitude: float, longitude: float) -> None:
        self._lat = latitude
        self._lon = longitude

    async def current_position(self, options: PositionOptions) -> Position:
        return Position(self._lat, self._lon, accuracy_m=0.0, timestamp=time.time())


class IpPositionProvider:
    """
    Approximate position from the public IP (ip-api.com response shape).

    Keeps the last fix and reuses it while it is younger than
    ``options.max_cache_age`` seconds.
    """

    def __init__(
        self,
        url: str = config.GEO_IP_LOOKUP_URL,
        enabled: bool = config.GEO_ENABLED,
    ) -> None:
        self._url = url
        self._enabled = enabled
        self._last_fix: Optional[Position] = None

    async def current_position(self, options: PositionOptions) -> Position:
        if not self._enabled:
            raise GeoPermissionDenied()

        if self._last_fix is not None:
            age = time.time() - self._last_fix.timestamp
            if age <= options.max_cache_age:
                return self._last_fix

        if options.high_accuracy:
            _logger.debug("high accuracy requested, IP lookup is city level at best")

        timeout = aiohttp.ClientTimeout(total=options.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self._url) as resp:
                    if resp.status != 200:
                        raise GeoUnavailable()
                    data = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise GeoTimeout() from e
        except aiohttp.ClientError as e:
            _logger.warning(f"IP position lookup failed: {e!r}")
            raise GeoUnavailable() from e

        if not isinstance(data, dict) or data.get("status") != "success":
            raise GeoUnavailable()
        try:
            fix = Position(
                latitude=float(data["lat"]),
                longitude=float(data["lon"]),
                timestamp=time.time(),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GeoUnavailable() from e
        self._last_fix = fix
        return fix


def default_position_provider() -> PositionProvider:
    if config.GEO_FIXED_POSITION is not None:
        lat, lon = config.GEO_FIXED_POSITION
        return FixedPositionProvider(lat, lon)
    return IpPositionProvider()
