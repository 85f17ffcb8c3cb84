from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import api.endpoints as endpoints
from api.models import Page
from core.errors import AuthRequired, RequestFailed, StorefrontError
from core.lifetime import ViewLifetime
from utils.logger import get_logger
from utils.notify import Notifier

_logger = get_logger(__name__)


class Operation(str, Enum):
    CATALOG = "catalog"
    TRENDING = "trending"
    ORDERS = "orders"
    NEARBY_SHOPS = "nearby_shops"


class FetchStatus(Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    READY = "ready"
    FAILED = "failed"


@dataclass
class FetchSlot:
    status: FetchStatus = FetchStatus.IDLE
    data: List[Any] = field(default_factory=list)
    page: int = 1
    total_pages: int = 1
    last_params: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass(frozen=True)
class FetchResult:
    key: Operation
    status: FetchStatus
    data: Tuple[Any, ...] = ()
    page: int = 1
    total_pages: int = 1
    error: Optional[str] = None
    # False when the owning view was gone and nothing was written
    committed: bool = True


@dataclass
class _InFlight:
    fingerprint: str
    task: asyncio.Task
    # set when a call with other params replaced this request
    successor: Optional[_InFlight] = None


@dataclass(frozen=True)
class OperationSpec:
    fetch: Callable[[Any, Dict[str, Any]], Awaitable[Page]]
    failure_message: str
    # order history stays quiet on failure, auth edge cases make it noisy
    user_visible: bool = True


DEFAULT_OPERATIONS: Dict[Operation, OperationSpec] = {
    Operation.CATALOG: OperationSpec(endpoints.fetch_catalog, "Failed to fetch products"),
    Operation.TRENDING: OperationSpec(
        endpoints.fetch_trending, "Failed to fetch trending products"
    ),
    Operation.ORDERS: OperationSpec(
        endpoints.fetch_orders, "Failed to fetch orders", user_visible=False
    ),
    Operation.NEARBY_SHOPS: OperationSpec(
        endpoints.fetch_nearby_shops, "Failed to fetch nearby shops"
    ),
}


def _fingerprint(params: Dict[str, Any]) -> str:
    try:
        return json.dumps(params, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise ValueError(f"fetch params must be JSON-serializable: {e}") from e


class FetchOrchestrator:
    """
    Runs the named read operations for exactly one view instance.

    - one request in flight per operation: an identical call joins it, a
      call with different params cancels and replaces it
    - results land in the operation's FetchSlot only while the view lifetime
      is alive; late results are dropped without a trace
    - failures never raise, they leave the slot ``FAILED`` with the previous
      data untouched
    """

    def __init__(
        self,
        gateway,
        lifetime: ViewLifetime,
        notifier: Optional[Notifier] = None,
        operations: Optional[Dict[Operation, OperationSpec]] = None,
        on_change: Optional[Callable[[Operation], None]] = None,
        on_auth_required: Optional[Callable[[], None]] = None,
    ) -> None:
        self._gateway = gateway
        self._lifetime = lifetime
        self._notifier = notifier
        self._operations = operations if operations is not None else DEFAULT_OPERATIONS
        self._on_change = on_change
        self._on_auth_required = on_auth_required

        self.slots: Dict[Operation, FetchSlot] = {k: FetchSlot() for k in self._operations}
        self._pending: Dict[Operation, _InFlight] = {}

    def slot(self, key: Operation) -> FetchSlot:
        return self.slots[key]

    def is_in_flight(self, key: Operation) -> bool:
        return key in self._pending

    # ---------------------------
    # Running
    # ---------------------------

    async def run_fetch(
        self, key: Operation, params: Optional[Dict[str, Any]] = None
    ) -> FetchResult:
        if key not in self._operations:
            raise ValueError(f"unknown operation: {key!r}")
        params = dict(params or {})
        fingerprint = _fingerprint(params)

        if not self._lifetime.alive:
            return self._result(key, committed=False)

        pending = self._pending.get(key)
        if pending is not None and pending.fingerprint == fingerprint:
            _logger.debug(f"{key.value}: joining in-flight request")
            entry = pending
        else:
            if pending is not None:
                _logger.debug(f"{key.value}: params changed, superseding in-flight request")
            entry = self._issue(key, params, fingerprint)
            if pending is not None:
                pending.successor = entry
                pending.task.cancel()
        return await self._await_result(key, entry)

    def _issue(self, key: Operation, params: Dict[str, Any], fingerprint: str) -> _InFlight:
        slot = self.slots[key]
        slot.status = FetchStatus.IN_FLIGHT
        slot.last_params = params
        task = self._lifetime.spawn(self._execute(key, params), name=f"fetch-{key.value}")
        entry = _InFlight(fingerprint, task)
        self._pending[key] = entry
        task.add_done_callback(lambda t, key=key: self._clear_pending(key, t))
        self._emit_change(key)
        return entry

    def _clear_pending(self, key: Operation, task: asyncio.Task) -> None:
        pending = self._pending.get(key)
        if pending is not None and pending.task is task:
            del self._pending[key]

    async def _await_result(self, key: Operation, entry: _InFlight) -> FetchResult:
        while True:
            task = entry.task
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    # the caller itself is being cancelled
                    raise
                if not self._lifetime.alive:
                    return self._result(key, committed=False)
                if entry.successor is None:
                    raise
                entry = entry.successor

    async def _execute(self, key: Operation, params: Dict[str, Any]) -> FetchResult:
        spec = self._operations[key]
        error: Optional[StorefrontError] = None
        page: Optional[Page] = None
        try:
            page = await spec.fetch(self._gateway, params)
        except StorefrontError as e:
            error = e
        except (ValueError, TypeError, KeyError, AttributeError):
            _logger.exception(f"{key.value}: could not read the response")
            error = RequestFailed(endpoints.UNEXPECTED_RESPONSE)

        if not self._lifetime.alive:
            _logger.debug(f"{key.value}: view gone, discarding late result")
            return self._result(key, committed=False)

        slot = self.slots[key]
        if error is None:
            slot.status = FetchStatus.READY
            slot.data = list(page.items)
            slot.page = page.page
            slot.total_pages = max(page.total_pages, 1)
            slot.error = None
        else:
            slot.status = FetchStatus.FAILED
            slot.error = error.message or spec.failure_message
            self._report_failure(key, spec, error)
        self._emit_change(key)
        return self._result(key)

    def _report_failure(
        self, key: Operation, spec: OperationSpec, error: StorefrontError
    ) -> None:
        if not spec.user_visible:
            _logger.warning(f"{key.value} fetch failed (silent): {error.message}")
            return
        _logger.warning(f"{key.value} fetch failed: {error.message}")
        if isinstance(error, AuthRequired) and self._on_auth_required is not None:
            self._on_auth_required()
            return
        if self._notifier is not None:
            self._notifier.notify("error", error.message or spec.failure_message)

    def _emit_change(self, key: Operation) -> None:
        if self._on_change is not None and self._lifetime.alive:
            self._on_change(key)

    def _result(self, key: Operation, committed: bool = True) -> FetchResult:
        slot = self.slots[key]
        return FetchResult(
            key=key,
            status=slot.status,
            data=tuple(slot.data),
            page=slot.page,
            total_pages=slot.total_pages,
            error=slot.error,
            committed=committed,
        )

    # ---------------------------
    # Composition, paging, filters
    # ---------------------------

    async def load_bundle(
        self, requests: Dict[Operation, Dict[str, Any]]
    ) -> Dict[Operation, FetchResult]:
        """Run independent operations concurrently; each settles on its own."""
        keys = list(requests)
        results = await asyncio.gather(*(self.run_fetch(k, requests[k]) for k in keys))
        return dict(zip(keys, results))

    async def refetch(self, key: Operation) -> FetchResult:
        return await self.run_fetch(key, self.slots[key].last_params)

    async def go_to_page(self, key: Operation, page: int) -> Optional[FetchResult]:
        """Fetch another page; out of range requests do nothing and return None."""
        slot = self.slots[key]
        if page < 1 or page > slot.total_pages:
            _logger.debug(f"{key.value}: page {page} outside 1..{slot.total_pages}, ignored")
            return None
        return await self.run_fetch(key, {**slot.last_params, "page": page})

    async def apply_filters(self, key: Operation, **changes: Any) -> FetchResult:
        """Change sort or filters (None removes one) and fetch from page 1."""
        params = dict(self.slots[key].last_params)
        for name, value in changes.items():
            if value is None:
                params.pop(name, None)
            else:
                params[name] = value
        params["page"] = 1
        return await self.run_fetch(key, params)

    async def handle_location_changed(self, location, synced: bool) -> FetchResult:
        """Re-run nearby shops only. Unsynced or guest locations ride along as
        query coordinates since the backend does not know them."""
        params = {
            k: v
            for k, v in self.slots[Operation.NEARBY_SHOPS].last_params.items()
            if k not in ("longitude", "latitude")
        }
        if not synced:
            params["longitude"] = location.longitude
            params["latitude"] = location.latitude
        return await self.run_fetch(Operation.NEARBY_SHOPS, params)
