import asyncio
import os
import sys
import unittest

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from api.models import OrderRecord  # noqa: E402
from core.channel import (  # noqa: E402
    CONNECTION_DROPPED,
    NEW_ORDER,
    ORDER_STATUS_UPDATE,
    ConnectionState,
    LiveOrderChannel,
    OrderBook,
)
from core.errors import ChannelDropped  # noqa: E402
from utils.notify import RecordingNotifier  # noqa: E402


class FakeTransport:
    def __init__(self, fail_connect=False):
        self.fail_connect = fail_connect
        self.connected = False
        self.handlers = {}
        self.log = []

    async def connect(self):
        self.log.append("connect")
        if self.fail_connect:
            raise ChannelDropped("no route")
        self.connected = True

    async def join_room(self, user_id):
        self.log.append(f"join:{user_id}")

    def on(self, event, handler):
        self.log.append(f"on:{event}")
        self.handlers[event] = handler

    def off(self, event):
        self.log.append(f"off:{event}")
        self.handlers.pop(event, None)

    async def disconnect(self):
        self.log.append("disconnect")
        self.connected = False

    async def fire(self, event, payload):
        handler = self.handlers.get(event)
        if handler is not None:
            await handler(payload)


class GatedTransport(FakeTransport):
    """The first connect waits until ``gate`` is set; later ones go through."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self._held = False

    async def connect(self):
        self.log.append("connect")
        if not self._held:
            self._held = True
            await self.gate.wait()
        self.connected = True


def _order(oid, number, status="Pending"):
    return OrderRecord(id=oid, order_number=number, status=status, total_price=499.0)


class LiveOrderChannelTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.transport = FakeTransport()
        self.notifier = RecordingNotifier()
        self.orders = OrderBook([_order("o1", "ORD-1"), _order("o2", "ORD-2", "Shipped")])
        self.reconciles = 0
        self.changes = 0

        async def reconcile():
            self.reconciles += 1

        def on_change():
            self.changes += 1

        self.channel = LiveOrderChannel(
            self.transport,
            orders=self.orders,
            notifier=self.notifier,
            reconcile=reconcile,
            on_change=on_change,
        )

    async def test_subscribe_joins_room_and_registers_handlers(self):
        sub = await self.channel.subscribe("u1")
        self.assertEqual(sub.connection_state, ConnectionState.CONNECTED)
        self.assertEqual(self.transport.log[:2], ["connect", "join:u1"])
        self.assertIn(ORDER_STATUS_UPDATE, self.transport.handlers)
        self.assertIn(NEW_ORDER, self.transport.handlers)
        # same identity twice is a no-op
        self.assertIs(await self.channel.subscribe("u1"), sub)
        self.assertEqual(self.transport.log.count("connect"), 1)

    async def test_connect_failure_leaves_channel_disconnected(self):
        channel = LiveOrderChannel(FakeTransport(fail_connect=True))
        sub = await channel.subscribe("u1")
        self.assertEqual(sub.connection_state, ConnectionState.DISCONNECTED)

    async def test_status_update_patches_order_once(self):
        await self.channel.subscribe("u1")
        event = {"type": "ORDER_STATUS_UPDATE", "data": {"_id": "o1", "orderNumber": "ORD-1", "status": "Processing"}}
        await self.transport.fire(ORDER_STATUS_UPDATE, event)
        await self.transport.fire(ORDER_STATUS_UPDATE, event)
        self.assertEqual(self.orders.find("o1").status, "Processing")
        self.assertEqual(len(self.orders.records), 2)
        self.assertEqual(self.notifier.sent[0], ("information", "Order ORD-1 is now Processing"))
        self.assertEqual(self.reconciles, 2)

    async def test_unknown_order_is_ignored(self):
        await self.channel.subscribe("u1")
        before = list(self.orders.records)
        await self.transport.fire(ORDER_STATUS_UPDATE, {"_id": "nope", "status": "Shipped"})
        self.assertEqual(self.orders.records, before)
        self.assertEqual(self.notifier.sent, [])
        self.assertEqual(self.reconciles, 0)

    async def test_cancellation_notifies_twice_in_order(self):
        await self.channel.subscribe("u1")
        await self.transport.fire(ORDER_STATUS_UPDATE, {"_id": "o1", "orderNumber": "ORD-1", "status": "Cancelled"})
        self.assertEqual(
            self.notifier.sent,
            [
                ("information", "Order ORD-1 is now Cancelled"),
                ("error", "Order ORD-1 has been cancelled"),
            ],
        )
        self.assertNotIn("o1", [o.id for o in self.orders.active])

    async def test_new_order_is_added(self):
        await self.channel.subscribe("u1")
        await self.transport.fire(NEW_ORDER, {"data": {"_id": "o3", "orderNumber": "ORD-3", "status": "Pending"}})
        self.assertIsNotNone(self.orders.find("o3"))
        self.assertEqual(self.notifier.sent, [("information", "Order ORD-3 has been placed")])
        self.assertEqual(self.reconciles, 1)

    async def test_close_detaches_handlers_before_disconnect(self):
        await self.channel.subscribe("u1")
        self.transport.log.clear()
        await self.channel.close()
        self.assertEqual(
            self.transport.log,
            [
                f"off:{ORDER_STATUS_UPDATE}",
                f"off:{NEW_ORDER}",
                f"off:{CONNECTION_DROPPED}",
                "disconnect",
            ],
        )

    async def test_handler_fired_after_close_changes_nothing(self):
        sub = await self.channel.subscribe("u1")
        captured = sub.handlers[ORDER_STATUS_UPDATE]
        await self.channel.close()
        await captured({"_id": "o1", "status": "Delivered"})
        self.assertEqual(self.orders.find("o1").status, "Pending")
        self.assertEqual(self.notifier.sent, [])
        self.assertEqual(self.changes, 0)

    async def test_identity_change_resubscribes(self):
        await self.channel.subscribe("u1")
        sub2 = await self.channel.subscribe("u2")
        self.assertEqual(sub2.room_key, "u2")
        self.assertIn("disconnect", self.transport.log)
        self.assertEqual(
            self.transport.log[-4:],
            ["join:u2", f"on:{ORDER_STATUS_UPDATE}", f"on:{NEW_ORDER}", f"on:{CONNECTION_DROPPED}"],
        )

    async def test_unknown_status_is_ignored(self):
        await self.channel.subscribe("u1")
        await self.transport.fire(ORDER_STATUS_UPDATE, {"_id": "o1", "status": "Teleported"})
        self.assertEqual(self.orders.find("o1").status, "Pending")
        self.assertEqual(self.notifier.sent, [])

    async def test_transport_drop_marks_subscription_disconnected(self):
        sub = await self.channel.subscribe("u1")
        await self.transport.fire(CONNECTION_DROPPED, None)
        self.assertEqual(sub.connection_state, ConnectionState.DISCONNECTED)
        self.assertEqual(self.changes, 1)


class PendingConnectTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.transport = GatedTransport()
        self.channel = LiveOrderChannel(self.transport, orders=OrderBook())

    async def test_identity_change_while_connecting_keeps_new_connection(self):
        first = asyncio.ensure_future(self.channel.subscribe("userA"))
        await asyncio.sleep(0)
        await self.channel.close()
        sub_b = await self.channel.subscribe("userB")
        self.assertEqual(sub_b.connection_state, ConnectionState.CONNECTED)

        self.transport.gate.set()
        sub_a = await first

        self.assertNotIn("join:userA", self.transport.log)
        self.assertEqual(self.transport.log.count("disconnect"), 1)
        self.assertTrue(self.transport.connected)
        self.assertEqual(sub_a.connection_state, ConnectionState.DISCONNECTED)
        self.assertEqual(sub_b.connection_state, ConnectionState.CONNECTED)
        self.assertIs(self.channel.subscription, sub_b)

    async def test_close_while_connecting_disconnects_once_ready(self):
        pending = asyncio.ensure_future(self.channel.subscribe("userA"))
        await asyncio.sleep(0)
        await self.channel.close()
        self.transport.gate.set()
        sub = await pending

        self.assertNotIn("join:userA", self.transport.log)
        self.assertEqual(self.transport.log[-1], "disconnect")
        self.assertFalse(self.transport.connected)
        self.assertEqual(sub.connection_state, ConnectionState.DISCONNECTED)
        self.assertEqual(self.transport.handlers, {})


class OrderBookTestCase(unittest.TestCase):
    def test_apply_status_by_order_number(self):
        book = OrderBook([_order("o1", "ORD-1")])
        self.assertEqual(book.apply_status("", "Shipped", "ORD-1").status, "Shipped")
        self.assertIsNone(book.apply_status("", "Shipped", "ORD-9"))

    def test_add_is_idempotent(self):
        book = OrderBook()
        self.assertTrue(book.add(_order("o1", "ORD-1")))
        self.assertFalse(book.add(_order("o1", "ORD-1")))
        self.assertEqual(len(book.records), 1)


if __name__ == "__main__":
    unittest.main()
