import asyncio
import os
import sys
import unittest

from aiohttp import web
from aiohttp.test_utils import TestServer

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

import api.endpoints as endpoints  # noqa: E402
from api.gateway import RequestGateway  # noqa: E402
from api.models import Location  # noqa: E402
from core.errors import (  # noqa: E402
    AuthRequired,
    RequestFailed,
    TransportError,
    ValidationRejected,
)
from core.session import SessionContext  # noqa: E402

TOKEN = "aaa.bbb.ccc"


class GatewayTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.seen = []

        async def marketplace(request):
            self.seen.append((dict(request.query), request.headers.get("Authorization")))
            return web.json_response(
                {
                    "success": True,
                    "data": [{"_id": "p1", "name": "Kurta", "category": "Men", "zammerPrice": 799}],
                    "page": 2,
                    "totalPages": 5,
                }
            )

        async def myorders(request):
            return web.json_response(
                {"success": False, "message": "Token expired", "code": "TOKEN_EXPIRED", "requiresAuth": True},
                status=401,
            )

        async def profile(request):
            body = await request.json()
            self.seen.append(body)
            return web.json_response({"success": True, "data": {"location": body["location"]}})

        async def cart(request):
            body = await request.json()
            if body["quantity"] > 10:
                return web.json_response({"success": False, "message": "Too many"}, status=400)
            return web.json_response(
                {
                    "success": True,
                    "data": {
                        "items": [{"product": {"_id": body["productId"], "name": "Kurta"}, "price": 799, "quantity": body["quantity"]}],
                        "total": 799 * body["quantity"],
                    },
                }
            )

        async def trending(request):
            return web.json_response({"success": False, "message": "Maintenance"}, status=503)

        async def slow(request):
            await asyncio.sleep(1)
            return web.json_response({"success": True})

        app = web.Application()
        app.router.add_get("/api/products/marketplace", marketplace)
        app.router.add_get("/api/products/marketplace/trending", trending)
        app.router.add_get("/api/orders/myorders", myorders)
        app.router.add_put("/api/users/profile", profile)
        app.router.add_post("/api/cart", cart)
        app.router.add_get("/api/slow", slow)

        self.server = TestServer(app)
        await self.server.start_server()
        self.session = SessionContext(identity="u1", token=TOKEN)
        self.gateway = RequestGateway(self.session, base_url=str(self.server.make_url("/api")))

    async def asyncTearDown(self):
        await self.gateway.close()
        await self.server.close()

    async def test_catalog_params_and_bearer_token(self):
        page = await endpoints.fetch_catalog(
            self.gateway,
            {"page": 2, "limit": 8, "sort_by": "price-low", "query": "kurta", "min_price": None},
        )
        query, auth = self.seen[0]
        self.assertEqual(auth, f"Bearer {TOKEN}")
        self.assertEqual(query, {"page": "2", "limit": "8", "sortBy": "price-low", "search": "kurta"})
        self.assertEqual(page.page, 2)
        self.assertEqual(page.total_pages, 5)
        self.assertEqual(page.items[0].price, 799.0)
        self.assertIsNone(page.items[0].rating)

    async def test_token_is_read_per_request(self):
        self.session.token = None
        await endpoints.fetch_catalog(self.gateway, {"page": 1})
        self.assertIsNone(self.seen[0][1])

    async def test_unauthorized_maps_to_auth_required(self):
        with self.assertRaises(AuthRequired) as ctx:
            await endpoints.fetch_orders(self.gateway, {"page": 1})
        self.assertEqual(ctx.exception.code, "TOKEN_EXPIRED")

    async def test_validation_and_server_errors(self):
        with self.assertRaises(ValidationRejected):
            await endpoints.add_cart_item(self.gateway, "p1", 11)
        with self.assertRaises(RequestFailed) as ctx:
            await endpoints.fetch_trending(self.gateway, {})
        self.assertEqual(ctx.exception.message, "Maintenance")
        self.assertEqual(ctx.exception.status, 503)

    async def test_profile_location_wire_shape(self):
        loc = Location(coordinates=(77.0, 28.0), address="A-94, Sector-4, Noida")
        await endpoints.update_profile_location(self.gateway, loc)
        self.assertEqual(
            self.seen[0],
            {"location": {"type": "Point", "coordinates": [77.0, 28.0], "address": "A-94, Sector-4, Noida"}},
        )

    async def test_add_cart_item_returns_snapshot(self):
        snapshot = await endpoints.add_cart_item(self.gateway, "p1", 2)
        self.assertEqual(snapshot.total, 1598.0)
        self.assertEqual(snapshot.items[0].product_id, "p1")

    async def test_timeout_and_unreachable_host(self):
        gateway = RequestGateway(self.session, base_url=str(self.server.make_url("/api")), timeout=0.05)
        try:
            with self.assertRaises(TransportError):
                await gateway.get("/slow")
        finally:
            await gateway.close()

        gateway = RequestGateway(self.session, base_url="http://127.0.0.1:1/api", timeout=2)
        try:
            with self.assertRaises(TransportError):
                await gateway.get("/products/marketplace")
        finally:
            await gateway.close()


if __name__ == "__main__":
    unittest.main()
