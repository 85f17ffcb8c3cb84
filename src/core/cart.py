from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Set

import api.endpoints as endpoints
from api.models import CartSnapshot
from core.errors import AuthRequired, StorefrontError
from core.session import SessionContext
from utils.logger import get_logger
from utils.notify import Notifier

_logger = get_logger(__name__)


class CartStatus(Enum):
    OK = "ok"
    AUTH_REQUIRED = "auth_required"
    BUSY = "busy"
    FAILED = "failed"


@dataclass(frozen=True)
class ResumeIntent:
    """What the user was doing when login was demanded."""

    origin: str
    product_id: str
    quantity: int


@dataclass(frozen=True)
class CartResult:
    status: CartStatus
    cart: Optional[CartSnapshot] = None
    message: str = ""
    resume: Optional[ResumeIntent] = None

    @property
    def ok(self) -> bool:
        return self.status is CartStatus.OK


class CartMutator:
    """
    The add-to-cart write path.

    A product being added is in flight until the server answers; a second
    add for it is refused so the control can stay disabled. Other products
    are not blocked.
    """

    def __init__(
        self,
        session: SessionContext,
        gateway,
        notifier: Optional[Notifier] = None,
        on_auth_required: Optional[Callable[[ResumeIntent], None]] = None,
        send=endpoints.add_cart_item,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._notifier = notifier
        self._on_auth_required = on_auth_required
        self._send = send
        self._in_flight: Set[str] = set()
        self.cart: Optional[CartSnapshot] = None

    def is_pending(self, product_id: str) -> bool:
        return product_id in self._in_flight

    async def add_item(
        self, product_id: str, quantity: int = 1, origin: str = ""
    ) -> CartResult:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        intent = ResumeIntent(origin=origin, product_id=product_id, quantity=quantity)
        if not self._session.authenticated:
            _logger.info("add to cart without a session, login required")
            return self._auth_required(intent, "Please login to access cart functionality")

        if product_id in self._in_flight:
            _logger.debug(f"add for {product_id} already in flight")
            return CartResult(CartStatus.BUSY, cart=self.cart)

        self._in_flight.add(product_id)
        try:
            snapshot = await self._send(self._gateway, product_id, quantity)
        except AuthRequired as e:
            return self._auth_required(intent, e.message)
        except StorefrontError as e:
            _logger.warning(f"add to cart failed for {product_id}: {e.message}")
            self._notify("error", e.message or "Failed to add to cart")
            return CartResult(CartStatus.FAILED, cart=self.cart, message=e.message)
        finally:
            self._in_flight.discard(product_id)

        self.cart = snapshot
        self._notify("information", "Product added to cart")
        return CartResult(CartStatus.OK, cart=snapshot)

    def _auth_required(self, intent: ResumeIntent, message: str) -> CartResult:
        if self._on_auth_required is not None:
            self._on_auth_required(intent)
        return CartResult(CartStatus.AUTH_REQUIRED, cart=self.cart, message=message, resume=intent)

    def _notify(self, level, message: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(level, message)
