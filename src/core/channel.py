from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from api.models import CANCELLED, ORDER_STATUSES, OrderRecord
from core.errors import ChannelDropped, StorefrontError
from utils.logger import get_logger
from utils.notify import Notifier

_logger = get_logger(__name__)

ORDER_STATUS_UPDATE = "order-status-update"
NEW_ORDER = "order-created"
# raised by the transport itself when the socket goes away
CONNECTION_DROPPED = "connection-dropped"

FINISHED_STATUSES = ("Delivered", CANCELLED)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PushTransport(Protocol):
    connected: bool

    async def connect(self) -> None: ...

    async def join_room(self, user_id: str) -> None: ...

    def on(self, event: str, handler: Callable[[Any], Awaitable[None]]) -> None: ...

    def off(self, event: str) -> None: ...

    async def disconnect(self) -> None: ...


class OrderBook:
    """Local read-through cache of the buyer's orders.

    Filled wholesale from the order-history fetch, patched by push events.
    """

    def __init__(self, records: Optional[List[OrderRecord]] = None) -> None:
        self.records: List[OrderRecord] = list(records or [])

    def replace_all(self, records) -> None:
        self.records = [r for r in records if isinstance(r, OrderRecord)]

    def find(self, order_id: str) -> Optional[OrderRecord]:
        for record in self.records:
            if record.id == order_id:
                return record
        return None

    def apply_status(
        self, order_id: str, status: str, order_number: Optional[str] = None
    ) -> Optional[OrderRecord]:
        """Patch one record's status; None when the order is not known."""
        for idx, record in enumerate(self.records):
            if order_id:
                matched = record.id == order_id
            else:
                matched = bool(order_number) and record.order_number == order_number
            if matched:
                patched = record.with_status(status)
                self.records[idx] = patched
                return patched
        return None

    def add(self, record: OrderRecord) -> bool:
        if self.find(record.id) is not None:
            return False
        self.records.append(record)
        return True

    @property
    def active(self) -> List[OrderRecord]:
        return [r for r in self.records if r.status not in FINISHED_STATUSES]


def _unwrap(payload: Any) -> Dict[str, Any]:
    # server frames look like {type, data, timestamp}; bare events are accepted too
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload if isinstance(payload, dict) else {}


class Subscription:
    """One user's room on the push channel.

    Its handlers check ``closed`` first, so a handler reference that fires
    after ``close`` changes nothing.
    """

    def __init__(self, channel: LiveOrderChannel, room_key: str) -> None:
        self._channel = channel
        self.room_key = room_key
        self.connection_state = ConnectionState.DISCONNECTED
        self.closed = False
        self.handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            ORDER_STATUS_UPDATE: self._on_status_update,
            NEW_ORDER: self._on_new_order,
            CONNECTION_DROPPED: self._on_dropped,
        }

    async def _on_status_update(self, payload: Any) -> None:
        if self.closed:
            return
        await self._channel._handle_status_update(self, payload)

    async def _on_new_order(self, payload: Any) -> None:
        if self.closed:
            return
        await self._channel._handle_new_order(self, payload)

    async def _on_dropped(self, _payload: Any) -> None:
        if self.closed:
            return
        self._channel._handle_drop(self)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        transport = self._channel.transport
        # detach first, a handler must never fire into a torn down view
        for name in self.handlers:
            transport.off(name)
        try:
            await transport.disconnect()
        except (StorefrontError, OSError) as e:
            _logger.warning(f"error while closing push channel: {e!r}")
        self.connection_state = ConnectionState.DISCONNECTED
        _logger.info(f"unsubscribed from order events for {self.room_key}")


class LiveOrderChannel:
    """
    Live order status for the logged-in buyer.

    Single owner: the dashboard opens and closes it; other views read the
    shared ``orders`` book but never subscribe themselves.
    """

    def __init__(
        self,
        transport: PushTransport,
        orders: Optional[OrderBook] = None,
        notifier: Optional[Notifier] = None,
        reconcile: Optional[Callable[[], Awaitable[Any]]] = None,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.transport = transport
        self.orders = orders if orders is not None else OrderBook()
        self._notifier = notifier
        self._reconcile = reconcile
        self._on_change = on_change
        self.subscription: Optional[Subscription] = None

    async def subscribe(self, user_id: str) -> Subscription:
        current = self.subscription
        if current is not None and not current.closed:
            if current.room_key == user_id:
                return current
            _logger.info(f"identity changed ({current.room_key} -> {user_id})")
            await current.close()

        sub = Subscription(self, user_id)
        self.subscription = sub
        sub.connection_state = ConnectionState.CONNECTING
        try:
            await self.transport.connect()
            if sub.closed:
                return await self._abandon(sub)
            await self.transport.join_room(user_id)
        except StorefrontError as e:
            _logger.warning(f"live order updates unavailable: {e.message}")
            sub.connection_state = ConnectionState.DISCONNECTED
            return sub

        if sub.closed:
            return await self._abandon(sub)

        for name, handler in sub.handlers.items():
            self.transport.on(name, handler)
        sub.connection_state = ConnectionState.CONNECTED
        _logger.info(f"subscribed to order events for {user_id}")
        return sub

    async def _abandon(self, sub: Subscription) -> Subscription:
        # closed while we were connecting; the transport belongs to a newer
        # subscription unless this one is still the current one
        sub.connection_state = ConnectionState.DISCONNECTED
        if self.subscription is sub:
            await self.transport.disconnect()
        _logger.info(f"subscription for {sub.room_key} closed before it was ready")
        return sub

    async def close(self) -> None:
        if self.subscription is not None:
            await self.subscription.close()

    def _handle_drop(self, sub: Subscription) -> None:
        sub.connection_state = ConnectionState.DISCONNECTED
        error = ChannelDropped(f"Push channel for {sub.room_key} was lost.")
        _logger.warning(f"live order updates stopped: {error.message}")
        self._changed()

    async def _handle_status_update(self, sub: Subscription, payload: Any) -> None:
        event = _unwrap(payload)
        order_id = str(event.get("_id") or event.get("id") or "")
        status = event.get("status")
        if status not in ORDER_STATUSES:
            _logger.warning(f"status update with unknown status: {event!r}")
            return

        record = self.orders.apply_status(order_id, status, event.get("orderNumber"))
        if record is None:
            _logger.info(f"status update for unknown order {order_id or event.get('orderNumber')!r} dropped")
            return
        self._changed()

        self._notify("information", f"Order {record.order_number} is now {status}")
        if status == CANCELLED:
            self._notify("error", f"Order {record.order_number} has been cancelled")
        await self._reconcile_orders(sub)

    async def _handle_new_order(self, sub: Subscription, payload: Any) -> None:
        event = _unwrap(payload)
        if not (event.get("_id") or event.get("id")):
            _logger.warning(f"new order event without id: {event!r}")
            return
        record = OrderRecord.from_wire(event)
        if self.orders.add(record):
            self._changed()
        self._notify("information", f"Order {record.order_number} has been placed")
        await self._reconcile_orders(sub)

    async def _reconcile_orders(self, sub: Subscription) -> None:
        if self._reconcile is None or sub.closed:
            return
        try:
            await self._reconcile()
        except StorefrontError as e:
            _logger.warning(f"order reconcile failed: {e.message}")

    def _notify(self, level, message: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(level, message)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
