from typing import Dict, Optional

from rich.text import Text
from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Button, DataTable, Label, TabbedContent, TabPane

from api.models import Product
from core.dashboard import DashboardController
from core.orchestrator import FetchStatus, Operation
from utils.pure import format_optional, format_price
from views.base_screen import BaseScreen, Sidebar
from views.modal_prod_detail import ProdDetailModal

PRODUCT_TABLES = {
    Operation.CATALOG: "#table-products",
    Operation.TRENDING: "#table-trending",
}


class DashboardScreen(BaseScreen):
    """
    Buyer home: products, trending, nearby shops and live active orders.

    All loading goes through a DashboardController created on mount and torn
    down on unmount; this screen only renders what it reports.
    """

    BINDINGS = [
        Binding("ctrl+l", "detect_location", "Detect Location", show=True),
        Binding("ctrl+r", "refresh", "Refresh", show=True),
    ]

    def __init__(self) -> None:
        super().__init__()
        self._controller: Optional[DashboardController] = None
        self._products: Dict[str, Product] = {}

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical(id="div-dashboard"):
            with Horizontal(id="hort-location"):
                yield Label("", id="label-address")
                yield Button("Detect location", id="btn-locate")
            yield Label("", id="label-location-error")
            with TabbedContent(id="tabs-dashboard"):
                with TabPane("Products", id="tab-products"):
                    yield DataTable(id="table-products")
                with TabPane("Trending", id="tab-trending"):
                    yield DataTable(id="table-trending")
                with TabPane("Nearby Shops", id="tab-shops"):
                    yield DataTable(id="table-shops")
                with TabPane("Active Orders", id="tab-orders"):
                    yield DataTable(id="table-orders")

    def on_mount(self) -> None:
        for table_id in PRODUCT_TABLES.values():
            table = self.query_one(table_id, DataTable)
            table.add_columns("Product", "Category", "Price", "Rating")
        self.query_one("#table-shops", DataTable).add_columns(
            "Shop", "Address", "Distance", "Rating"
        )
        self.query_one("#table-orders", DataTable).add_columns(
            "Order No", "Status", "Total"
        )
        for table in self.query(DataTable):
            table.cursor_type = "row"
            table.zebra_stripes = True

        app = self.app
        self._controller = DashboardController(
            app.session,
            app.gateway,
            app.location,
            app.make_transport(),
            orders=app.orders,
            notifier=app.notifier,
            on_change=self.handle_section_changed,
            on_auth_required=app.request_login,
        )
        self._render_location()
        self._start()

    async def on_unmount(self) -> None:
        if self._controller is not None:
            await self._controller.unmount()

    @work(group="dashboard")
    async def _start(self) -> None:
        await self._controller.mount()

    def handle_section_changed(self, what: str) -> None:
        if what in (Operation.CATALOG.value, Operation.TRENDING.value):
            self._render_products(Operation(what))
        elif what == Operation.NEARBY_SHOPS.value:
            self._render_shops()
        elif what == Operation.ORDERS.value:
            self._render_orders()
        elif what == "location":
            self._render_location()

    def _render_products(self, key: Operation) -> None:
        slot = self._controller.orchestrator.slot(key)
        if slot.status is FetchStatus.IN_FLIGHT:
            return
        table = self.query_one(PRODUCT_TABLES[key], DataTable)
        table.clear()
        for prod in slot.data:
            self._products[prod.pid] = prod
            table.add_row(
                prod.name,
                prod.category,
                format_price(prod.price),
                format_optional(prod.rating),
                key=prod.pid,
            )

    def _render_shops(self) -> None:
        slot = self._controller.orchestrator.slot(Operation.NEARBY_SHOPS)
        if slot.status is FetchStatus.IN_FLIGHT:
            return
        table = self.query_one("#table-shops", DataTable)
        table.clear()
        for shop in slot.data:
            table.add_row(
                shop.name,
                shop.address or "-",
                format_optional(shop.distance_km, " km", unknown="unknown"),
                format_optional(shop.rating),
                key=shop.sid,
            )

    def _render_orders(self) -> None:
        table = self.query_one("#table-orders", DataTable)
        table.clear()
        for order in self._controller.orders.active:
            table.add_row(
                order.order_number,
                order.status,
                format_price(order.total_price),
                key=order.id,
            )

    def _render_location(self) -> None:
        session = self.app.session
        pipeline = self.app.location
        if pipeline.location is not None and not pipeline.synced:
            text = f"📍 {pipeline.location.address} (not saved)"
        elif session.address:
            text = f"📍 {session.address}"
        else:
            text = "📍 Location not set"
        self.query_one("#label-address", Label).update(Text(text))
        self.query_one("#label-location-error", Label).update(
            Text(pipeline.error_message or "", style="bold red")
        )
        self.query_one("#btn-locate", Button).disabled = pipeline.busy

    def action_detect_location(self) -> None:
        self.handle_locate()

    @on(Button.Pressed, "#btn-locate")
    @work(exclusive=True, group="locate")
    async def handle_locate(self) -> None:
        if self.app.location.busy:
            return
        self.query_one("#btn-locate", Button).disabled = True
        self.query_one("#label-address", Label).update(Text("📍 Detecting location..."))
        await self._controller.detect_location()
        self._render_location()

    @work(exclusive=True, group="refresh")
    async def action_refresh(self) -> None:
        orchestrator = self._controller.orchestrator
        await orchestrator.load_bundle(
            {
                key: orchestrator.slot(key).last_params
                for key in (Operation.CATALOG, Operation.TRENDING, Operation.ORDERS)
                if orchestrator.slot(key).status is not FetchStatus.IDLE
            }
        )
        if self.app.session.authenticated:
            await orchestrator.refetch(Operation.NEARBY_SHOPS)

    @on(DataTable.RowSelected, "#table-products, #table-trending")
    @work()
    async def handle_product_selected(self, event: DataTable.RowSelected) -> None:
        prod = self._products.get(event.row_key.value)
        if prod is None:
            return
        if await self.app.push_screen_wait(ProdDetailModal(prod, origin="dashboard")):
            self.query_one(Sidebar).render_cart()
