# provide dataclass models for the wire shapes the backend returns

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple


def _first(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return default


def _to_float(val) -> Optional[float]:
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def _to_int(val) -> Optional[int]:
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Location:
    coordinates: Tuple[float, float]  # (longitude, latitude)
    address: str

    def __post_init__(self):
        if self.address and not valid_coordinates(self.coordinates):
            raise ValueError(f"Invalid coordinates for address: {self.coordinates!r}")

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": "Point",
            "coordinates": [self.coordinates[0], self.coordinates[1]],
            "address": self.address,
        }

    @classmethod
    def from_wire(cls, payload: Optional[Dict[str, Any]]) -> Optional[Location]:
        """None for missing or partial records; garbage is never loaded."""
        if not payload:
            return None
        coords = payload.get("coordinates")
        address = payload.get("address") or ""
        if not isinstance(coords, (list, tuple)) or len(coords) != 2:
            return None
        pair = (_to_float(coords[0]), _to_float(coords[1]))
        if not valid_coordinates(pair) or not address:
            return None
        return cls(coordinates=pair, address=address)


def valid_coordinates(coords) -> bool:
    if not isinstance(coords, (list, tuple)) or len(coords) != 2:
        return False
    lon, lat = coords
    if not isinstance(lon, (int, float)) or not isinstance(lat, (int, float)):
        return False
    if not (math.isfinite(lon) and math.isfinite(lat)):
        return False
    return -180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0


@dataclass(frozen=True)
class Profile:
    name: str = ""
    email: str = ""
    location: Optional[Location] = None


@dataclass(frozen=True)
class Product:
    pid: str
    name: str
    category: str
    price: float
    seller_id: Optional[str] = None
    # backend may omit these; None means unknown, never a made-up number
    rating: Optional[float] = None
    review_count: Optional[int] = None

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> Product:
        seller = payload.get("seller")
        seller_id = seller.get("_id") if isinstance(seller, dict) else seller
        count = _first(payload, "numReviews", "reviewCount")
        return cls(
            pid=str(_first(payload, "_id", "id", default="")),
            name=payload.get("name", ""),
            category=payload.get("category", ""),
            price=_to_float(_first(payload, "zammerPrice", "price", default=0)) or 0.0,
            seller_id=seller_id,
            rating=_to_float(_first(payload, "averageRating", "rating")),
            review_count=_to_int(count),
        )


@dataclass(frozen=True)
class Shop:
    sid: str
    name: str
    address: str = ""
    distance_km: Optional[float] = None
    rating: Optional[float] = None

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> Shop:
        shop = payload.get("shop") or {}
        return cls(
            sid=str(_first(payload, "_id", "id", default="")),
            name=shop.get("name") or payload.get("firstName", ""),
            address=shop.get("address", ""),
            distance_km=_to_float(payload.get("distance")),
            rating=_to_float(_first(payload, "averageRating", "rating")),
        )


ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")
CANCELLED = "Cancelled"


@dataclass(frozen=True)
class OrderRecord:
    id: str
    order_number: str
    status: str
    buyer_id: Optional[str] = None
    seller_id: Optional[str] = None
    total_price: Optional[float] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def with_status(self, status: str) -> OrderRecord:
        return replace(self, status=status)

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> OrderRecord:
        def _ref(val):
            return val.get("_id") if isinstance(val, dict) else val

        return cls(
            id=str(_first(payload, "_id", "id", default="")),
            order_number=str(payload.get("orderNumber", "")),
            status=payload.get("status", "Pending"),
            buyer_id=_ref(_first(payload, "user", "buyerId")),
            seller_id=_ref(_first(payload, "seller", "sellerId")),
            total_price=_to_float(payload.get("totalPrice")),
            created_at=payload.get("createdAt"),
            updated_at=payload.get("updatedAt"),
        )


@dataclass(frozen=True)
class CartItem:
    product_id: str
    name: str
    price: float
    quantity: int

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> CartItem:
        product = payload.get("product")
        if isinstance(product, dict):
            pid = product.get("_id", "")
            name = product.get("name", "")
        else:
            pid, name = product or payload.get("productId", ""), ""
        return cls(
            product_id=str(pid),
            name=name,
            price=_to_float(payload.get("price")) or 0.0,
            quantity=_to_int(payload.get("quantity")) or 0,
        )


@dataclass(frozen=True)
class CartSnapshot:
    items: Tuple[CartItem, ...] = ()
    total: Optional[float] = None

    def display_total(self) -> float:
        """Total for on-screen display only; ``total`` from the server wins."""
        if self.total is not None:
            return self.total
        return round(sum(i.price * i.quantity for i in self.items), 2)

    @classmethod
    def from_wire(cls, payload: Optional[Dict[str, Any]]) -> CartSnapshot:
        payload = payload or {}
        return cls(
            items=tuple(CartItem.from_wire(i) for i in payload.get("items", [])),
            total=_to_float(_first(payload, "total", "totalAmount")),
        )


@dataclass(frozen=True)
class Page:
    """One page of a listing endpoint."""

    items: List[Any] = field(default_factory=list)
    page: int = 1
    total_pages: int = 1
