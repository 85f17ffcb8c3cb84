from __future__ import annotations

import asyncio
from typing import Callable, Dict, Optional

from core.channel import LiveOrderChannel, OrderBook, PushTransport
from core.lifetime import ViewLifetime
from core.location import LocationOutcome, LocationPipeline
from core.orchestrator import FetchOrchestrator, FetchStatus, Operation, OperationSpec
from core.session import SessionContext
from utils import config
from utils.logger import get_logger
from utils.notify import Notifier

_logger = get_logger(__name__)


class DashboardController:
    """
    Everything the buyer dashboard does between mount and unmount.

    On mount: open the live order channel, load catalog/trending/orders
    together, then nearby shops, and (once, after a settle delay) detect the
    location when the profile has no address. On unmount: cancel pending
    work, drop listeners, close the channel. A controller is good for one
    mount; make a new one for the next.
    """

    def __init__(
        self,
        session: SessionContext,
        gateway,
        pipeline: LocationPipeline,
        transport: PushTransport,
        orders: Optional[OrderBook] = None,
        notifier: Optional[Notifier] = None,
        on_change: Optional[Callable[[str], None]] = None,
        on_auth_required: Optional[Callable[[], None]] = None,
        operations: Optional[Dict[Operation, OperationSpec]] = None,
        settle_delay: float = config.LOCATION_SETTLE_DELAY,
    ) -> None:
        self.session = session
        self.pipeline = pipeline
        self.lifetime = ViewLifetime("dashboard")
        self.orchestrator = FetchOrchestrator(
            gateway,
            self.lifetime,
            notifier=notifier,
            operations=operations,
            on_change=self._fetch_changed,
            on_auth_required=on_auth_required,
        )
        self.channel = LiveOrderChannel(
            transport,
            orders=orders,
            notifier=notifier,
            reconcile=self._reconcile_orders,
            on_change=lambda: self._emit("orders"),
        )
        self._on_change = on_change
        self._settle_delay = settle_delay
        self._auto_location_fired = False
        self._identity: Optional[str] = None
        self._unsubscribe_location: Optional[Callable[[], None]] = None

    @property
    def orders(self) -> OrderBook:
        return self.channel.orders

    async def mount(self) -> None:
        self._unsubscribe_location = self.pipeline.add_listener(self._location_changed)
        self.session.add_listener(self._session_changed)

        self._identity = self.session.identity if self.session.authenticated else None
        if self._identity is not None:
            self.lifetime.spawn(self.channel.subscribe(self._identity), name="order-channel")
        self._schedule_auto_location()

        bundle = {
            Operation.CATALOG: {"page": 1, "limit": config.CATALOG_PAGE_SIZE},
            Operation.TRENDING: {"page": 1, "limit": config.TRENDING_PAGE_SIZE},
        }
        if self.session.authenticated:
            bundle[Operation.ORDERS] = {"page": 1, "limit": config.ORDERS_PAGE_SIZE}
        await self.orchestrator.load_bundle(bundle)

        # shops go after the bundle, they may want a freshly detected location
        if self.lifetime.alive and self.session.authenticated:
            await self.orchestrator.run_fetch(Operation.NEARBY_SHOPS, {})

    async def unmount(self) -> None:
        self.lifetime.close()
        if self._unsubscribe_location is not None:
            self._unsubscribe_location()
            self._unsubscribe_location = None
        self.session.remove_listener(self._session_changed)
        await self.channel.close()

    async def detect_location(self) -> Optional[LocationOutcome]:
        outcome = await self.pipeline.detect()
        self._emit("location")
        return outcome

    def _schedule_auto_location(self) -> None:
        if self._auto_location_fired:
            return
        if not self.session.authenticated or self.session.address:
            return
        self._auto_location_fired = True
        self.lifetime.spawn(self._auto_location(), name="auto-location")

    async def _auto_location(self) -> None:
        await asyncio.sleep(self._settle_delay)
        if not self.lifetime.alive or self.session.address:
            return
        _logger.info("profile has no address, detecting location")
        await self.detect_location()

    async def _location_changed(self, location, synced: bool) -> None:
        if self.lifetime.alive:
            await self.orchestrator.handle_location_changed(location, synced)

    async def _reconcile_orders(self) -> None:
        if self.lifetime.alive:
            await self.orchestrator.refetch(Operation.ORDERS)

    def _session_changed(self, session: SessionContext) -> None:
        identity = session.identity if session.authenticated else None
        if identity == self._identity or not self.lifetime.alive:
            return
        self._identity = identity
        self.lifetime.spawn(self._follow_identity(identity), name="order-channel")

    async def _follow_identity(self, identity: Optional[str]) -> None:
        if identity is None:
            await self.channel.close()
            self.orders.replace_all([])
            self._emit("orders")
        else:
            await self.channel.subscribe(identity)
            await self.orchestrator.run_fetch(
                Operation.ORDERS, {"page": 1, "limit": config.ORDERS_PAGE_SIZE}
            )

    def _fetch_changed(self, key: Operation) -> None:
        slot = self.orchestrator.slot(key)
        if key is Operation.ORDERS and slot.status is FetchStatus.READY:
            self.orders.replace_all(slot.data)
        self._emit(key.value)

    def _emit(self, what: str) -> None:
        if self._on_change is not None and self.lifetime.alive:
            self._on_change(what)
