# src/api/endpoints.py
# one coroutine per backend operation; each takes the gateway first
from __future__ import annotations

from typing import Any, Dict, List, Optional

from api.gateway import RequestGateway
from api.models import CartSnapshot, Location, OrderRecord, Page, Product, Shop
from core.errors import RequestFailed
from utils import config

UNEXPECTED_RESPONSE = "Unexpected response from server"


def _to_int(val, default: int) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return default


def _parse(parse, payload):
    # malformed records surface as RequestFailed
    try:
        return parse(payload)
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        raise RequestFailed(UNEXPECTED_RESPONSE) from e


def _rows(body: Dict[str, Any], parse) -> List[Any]:
    rows = body.get("data") or []
    if not isinstance(rows, list):
        raise RequestFailed(UNEXPECTED_RESPONSE)
    return [_parse(parse, row) for row in rows]


def _page_of(body: Dict[str, Any], parse, page: int) -> Page:
    items = _rows(body, parse)
    return Page(
        items=items,
        page=_to_int(body.get("page"), page),
        total_pages=max(_to_int(body.get("totalPages"), 1), 1),
    )


# ---------------------------
# Reads
# ---------------------------


async def fetch_catalog(gw: RequestGateway, params: Dict[str, Any]) -> Page:
    """
    Marketplace listing.

    Understood params: page, limit, sort_by, min_price, max_price, query,
    category. Unknown keys are passed through untouched.
    """
    query = dict(params)
    page = _to_int(query.pop("page", 1), 1)
    wire = {
        "page": page,
        "limit": query.pop("limit", config.CATALOG_PAGE_SIZE),
        "sortBy": query.pop("sort_by", None),
        "minPrice": query.pop("min_price", None),
        "maxPrice": query.pop("max_price", None),
        "search": query.pop("query", None),
        "category": query.pop("category", None),
        **query,
    }
    body = await gw.get("/products/marketplace", params=wire)
    return _page_of(body, Product.from_wire, page)


async def fetch_trending(gw: RequestGateway, params: Dict[str, Any]) -> Page:
    page = _to_int(params.get("page", 1), 1)
    wire = {"page": page, "limit": params.get("limit", config.TRENDING_PAGE_SIZE)}
    body = await gw.get("/products/marketplace/trending", params=wire)
    return _page_of(body, Product.from_wire, page)


async def fetch_orders(gw: RequestGateway, params: Dict[str, Any]) -> Page:
    page = _to_int(params.get("page", 1), 1)
    wire = {"page": page, "limit": params.get("limit", config.ORDERS_PAGE_SIZE)}
    body = await gw.get("/orders/myorders", params=wire)
    return _page_of(body, OrderRecord.from_wire, page)


async def fetch_nearby_shops(gw: RequestGateway, params: Dict[str, Any]) -> Page:
    """Shops near the stored profile location, or near explicit coordinates
    when the caller passes ``longitude``/``latitude`` (guest browsing)."""
    body = await gw.get("/users/nearby-shops", params=dict(params) or None)
    shops = _rows(body, Shop.from_wire)
    return Page(items=shops, page=1, total_pages=1)


# ---------------------------
# Writes
# ---------------------------


async def update_profile_location(
    gw: RequestGateway, location: Location
) -> Optional[Dict[str, Any]]:
    body = await gw.put("/users/profile", json={"location": location.to_wire()})
    return body.get("data")


async def add_cart_item(
    gw: RequestGateway, product_id: str, quantity: int
) -> CartSnapshot:
    body = await gw.post("/cart", json={"productId": product_id, "quantity": quantity})
    return _parse(CartSnapshot.from_wire, body.get("data"))


async def login(gw: RequestGateway, email: str, password: str) -> Dict[str, Any]:
    """Return the user record (``_id``, ``name``, ``email``, ``token``...)."""
    body = await gw.post("/users/login", json={"email": email, "password": password})
    return body.get("data") or {}
