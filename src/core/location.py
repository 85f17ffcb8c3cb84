from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

import api.endpoints as endpoints
from api.models import Location
from api.positioning import PositionOptions, PositionProvider
from core.errors import (
    GeoError,
    GeoTimeout,
    GeoUnavailable,
    StorefrontError,
    describe_geo_error,
)
from core.session import SessionContext
from utils.logger import get_logger
from utils.notify import Notifier

_logger = get_logger(__name__)

LocationListener = Callable[[Location, bool], Awaitable[object]]


class LocationState(Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    RESOLVING = "resolving"
    PERSISTING = "persisting"


@dataclass(frozen=True)
class LocationOutcome:
    location: Optional[Location]
    synced: bool = False
    error: Optional[str] = None


def format_coordinates(latitude: float, longitude: float) -> str:
    return f"{latitude:.6f}, {longitude:.6f}"


class LocationPipeline:
    """
    Detect -> reverse geocode -> persist -> announce.

    Only one run at a time; triggering while a run is active does nothing.
    Geolocation failures end up in ``error_message`` (one sentence per kind)
    for the view to show next to its location control.
    """

    def __init__(
        self,
        session: SessionContext,
        gateway,
        positioner: PositionProvider,
        geocoder,
        notifier: Optional[Notifier] = None,
        options: Optional[PositionOptions] = None,
        persist=endpoints.update_profile_location,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._positioner = positioner
        self._geocoder = geocoder
        self._notifier = notifier
        self._options = options or PositionOptions()
        self._persist = persist
        self._listeners: List[LocationListener] = []

        self.state = LocationState.IDLE
        self.error_message: Optional[str] = None
        # last detected location and whether the backend has it
        self.location: Optional[Location] = None
        self.synced = False

    @property
    def busy(self) -> bool:
        return self.state is not LocationState.IDLE

    def add_listener(self, listener: LocationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def detect(self) -> Optional[LocationOutcome]:
        """Run the pipeline once. Returns None when a run is already active."""
        if self.busy:
            _logger.debug(f"location detection already {self.state.value}, trigger ignored")
            return None
        self.error_message = None
        try:
            return await self._run()
        finally:
            self.state = LocationState.IDLE

    async def _run(self) -> LocationOutcome:
        self.state = LocationState.ACQUIRING
        try:
            position = await asyncio.wait_for(
                self._positioner.current_position(self._options),
                timeout=self._options.timeout,
            )
        except asyncio.TimeoutError:
            return self._fail(GeoTimeout())
        except GeoError as e:
            return self._fail(e)

        self.state = LocationState.RESOLVING
        address = await self._resolve(position.latitude, position.longitude)
        try:
            location = Location(
                coordinates=(position.longitude, position.latitude), address=address
            )
        except ValueError:
            _logger.warning(f"position out of range: {position!r}")
            return self._fail(GeoUnavailable())

        self.state = LocationState.PERSISTING
        self.location = location
        self.synced = False

        if not self._session.authenticated:
            await self._publish(location, synced=False)
            return LocationOutcome(location, synced=False)

        try:
            await self._persist(self._gateway, location)
            await self._session.update_profile(location=location)
        except StorefrontError as e:
            # kept locally, retried on the next explicit detection
            _logger.warning(f"location not saved: {e.message}")
            if self._notifier is not None:
                self._notifier.notify(
                    "warning", "Location detected but could not be saved to your profile."
                )
            return LocationOutcome(location, synced=False, error=e.message)

        self.synced = True
        if self._notifier is not None:
            self._notifier.notify("information", "Location updated successfully")
        await self._publish(location, synced=True)
        return LocationOutcome(location, synced=True)

    async def _resolve(self, latitude: float, longitude: float) -> str:
        address = ""
        try:
            address = await self._geocoder.reverse(latitude, longitude)
        except StorefrontError as e:
            _logger.warning(f"reverse geocoding failed: {e.message}")
        if not address:
            # always give the user some address text
            address = format_coordinates(latitude, longitude)
        return address

    async def _publish(self, location: Location, synced: bool) -> None:
        for listener in list(self._listeners):
            await listener(location, synced)

    def _fail(self, error: GeoError) -> LocationOutcome:
        self.error_message = describe_geo_error(error)
        _logger.info(f"location detection failed: {type(error).__name__}")
        return LocationOutcome(None, error=self.error_message)
