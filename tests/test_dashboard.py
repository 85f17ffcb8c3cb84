import asyncio
import os
import sys
import unittest

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from api.models import OrderRecord, Page, Product, Shop  # noqa: E402
from api.positioning import FixedPositionProvider  # noqa: E402
from core.channel import ORDER_STATUS_UPDATE, OrderBook  # noqa: E402
from core.dashboard import DashboardController  # noqa: E402
from core.location import LocationPipeline  # noqa: E402
from core.orchestrator import FetchStatus, Operation, OperationSpec  # noqa: E402
from core.session import SessionContext  # noqa: E402
from utils.notify import RecordingNotifier  # noqa: E402

TOKEN = "aaa.bbb.ccc"


class RecordingTransport:
    def __init__(self):
        self.connected = False
        self.handlers = {}
        self.log = []

    async def connect(self):
        self.log.append("connect")
        self.connected = True

    async def join_room(self, user_id):
        self.log.append(f"join:{user_id}")

    def on(self, event, handler):
        self.handlers[event] = handler

    def off(self, event):
        self.handlers.pop(event, None)

    async def disconnect(self):
        self.log.append("disconnect")
        self.connected = False


class StaticGeocoder:
    async def reverse(self, lat, lon):
        return "Sector 18, Noida"


async def _drain(rounds=50):
    for _ in range(rounds):
        await asyncio.sleep(0)


class DashboardControllerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.session = SessionContext()
        self.notifier = RecordingNotifier()
        self.transport = RecordingTransport()
        self.calls = {key: [] for key in Operation}
        self.persisted = []
        self.changes = []

        def endpoint(key, items):
            async def fetch(gateway, params):
                self.calls[key].append(dict(params))
                return Page(items=list(items), page=params.get("page", 1), total_pages=2)

            return fetch

        products = [Product("p1", "Kurta", "Men", 799.0)]
        operations = {
            Operation.CATALOG: OperationSpec(endpoint(Operation.CATALOG, products), "x"),
            Operation.TRENDING: OperationSpec(endpoint(Operation.TRENDING, products), "x"),
            Operation.ORDERS: OperationSpec(
                endpoint(Operation.ORDERS, [OrderRecord("o1", "ORD-1", "Pending")]),
                "x",
                user_visible=False,
            ),
            Operation.NEARBY_SHOPS: OperationSpec(
                endpoint(Operation.NEARBY_SHOPS, [Shop("s1", "Ganga Textiles")]), "x"
            ),
        }

        async def persist(gateway, location):
            self.persisted.append(location)

        self.pipeline = LocationPipeline(
            self.session,
            gateway=None,
            positioner=FixedPositionProvider(28.57, 77.32),
            geocoder=StaticGeocoder(),
            notifier=self.notifier,
            persist=persist,
        )
        self.orders = OrderBook()
        self.controller = DashboardController(
            self.session,
            None,
            self.pipeline,
            self.transport,
            orders=self.orders,
            notifier=self.notifier,
            on_change=self.changes.append,
            operations=operations,
            settle_delay=0,
        )

    async def asyncTearDown(self):
        await self.controller.unmount()

    async def _login(self, location=None):
        user = {"_id": "u1", "name": "Asha", "token": TOKEN}
        if location is not None:
            user["location"] = location
        await self.session.login(user)

    async def test_guest_mount_loads_public_sections_only(self):
        await self.controller.mount()
        await _drain()
        self.assertEqual(self.calls[Operation.CATALOG], [{"page": 1, "limit": 8}])
        self.assertEqual(self.calls[Operation.TRENDING], [{"page": 1, "limit": 4}])
        self.assertEqual(self.calls[Operation.ORDERS], [])
        self.assertEqual(self.calls[Operation.NEARBY_SHOPS], [])
        self.assertEqual(self.transport.log, [])
        self.assertEqual(self.persisted, [])

    async def test_authenticated_mount_without_address_detects_location(self):
        await self._login()
        await self.controller.mount()
        await _drain()

        self.assertEqual(self.transport.log[:2], ["connect", "join:u1"])
        self.assertEqual([o.id for o in self.orders.records], ["o1"])
        self.assertEqual(len(self.persisted), 1)
        self.assertEqual(self.session.address, "Sector 18, Noida")
        # the location-triggered refresh may join the mount's own request
        self.assertGreaterEqual(len(self.calls[Operation.NEARBY_SHOPS]), 1)
        self.assertEqual(
            self.controller.orchestrator.slot(Operation.NEARBY_SHOPS).status, FetchStatus.READY
        )
        self.assertIn("location", self.changes)
        self.assertIn("orders", self.changes)

    async def test_mount_with_saved_address_skips_detection(self):
        await self._login({"type": "Point", "coordinates": [77.0, 28.0], "address": "Noida"})
        await self.controller.mount()
        await _drain()
        self.assertEqual(self.persisted, [])
        self.assertEqual(self.calls[Operation.NEARBY_SHOPS], [{}])

    async def test_push_event_reconciles_orders(self):
        await self._login({"type": "Point", "coordinates": [77.0, 28.0], "address": "Noida"})
        await self.controller.mount()
        await _drain()
        handler = self.transport.handlers[ORDER_STATUS_UPDATE]
        await handler({"_id": "o1", "orderNumber": "ORD-1", "status": "Shipped"})
        await _drain()
        self.assertEqual(len(self.calls[Operation.ORDERS]), 2)
        self.assertIn(("information", "Order ORD-1 is now Shipped"), self.notifier.sent)

    async def test_unmount_closes_channel_and_drops_late_work(self):
        await self._login({"type": "Point", "coordinates": [77.0, 28.0], "address": "Noida"})
        await self.controller.mount()
        await _drain()
        await self.controller.unmount()
        self.assertFalse(self.controller.lifetime.alive)
        self.assertEqual(self.transport.log[-1], "disconnect")

        self.changes.clear()
        res = await self.controller.orchestrator.run_fetch(Operation.CATALOG, {"page": 2})
        self.assertFalse(res.committed)
        self.assertEqual(self.changes, [])

    async def test_logout_while_mounted_clears_orders(self):
        await self._login({"type": "Point", "coordinates": [77.0, 28.0], "address": "Noida"})
        await self.controller.mount()
        await _drain()
        await self.session.logout()
        await _drain()
        self.assertEqual(self.orders.records, [])
        self.assertEqual(self.transport.log[-1], "disconnect")
        self.assertEqual(
            self.controller.orchestrator.slot(Operation.CATALOG).status, FetchStatus.READY
        )


if __name__ == "__main__":
    unittest.main()
