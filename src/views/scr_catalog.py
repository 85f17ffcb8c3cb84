from typing import Dict, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Button, DataTable, Input, Label, Select

from api.models import Product
from core.lifetime import ViewLifetime
from core.orchestrator import FetchOrchestrator, FetchStatus, Operation
from utils import config
from utils.pure import format_optional, format_price
from views.base_screen import BaseScreen, Sidebar
from views.modal_prod_detail import ProdDetailModal

SORT_OPTIONS = [
    ("Newest", "newest"),
    ("Price: low to high", "price-low"),
    ("Price: high to low", "price-high"),
    ("Most popular", "popular"),
]


class CatalogScreen(BaseScreen):
    """
    Full marketplace catalog with search, sort and paging.
    """

    BINDINGS = [
        Binding("ctrl+n", "next_page", "Next Page", show=True),
        Binding("ctrl+p", "prev_page", "Prev Page", show=True),
    ]

    def __init__(self):
        super().__init__()
        self._lifetime: Optional[ViewLifetime] = None
        self._fetcher: Optional[FetchOrchestrator] = None
        self._products: Dict[str, Product] = {}

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Horizontal(id="hort-catalog-filters"):
            yield Input(id="input-search", placeholder="Start typing to search something...")
            yield Select(SORT_OPTIONS, prompt="Sort by", id="select-sort")
        yield DataTable(id="table-search-result")
        with Horizontal(id="hort-catalog-pages"):
            yield Button("<", id="btn-prev-page")
            yield Label("1 / 1", id="label-page")
            yield Button(">", id="btn-next-page")

    def on_mount(self):
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Product", "Category", "Price", "Rating", "Reviews")

        self._lifetime = ViewLifetime("catalog")
        self._fetcher = FetchOrchestrator(
            self.app.gateway,
            self._lifetime,
            notifier=self.app.notifier,
            on_change=self._render,
            on_auth_required=self.app.request_login,
        )
        self.query_one("#input-search").focus()
        self.load({"page": 1, "limit": config.CATALOG_PAGE_SIZE})

    def on_unmount(self):
        self._lifetime.close()

    @work(group="catalog")
    async def load(self, params) -> None:
        await self._fetcher.run_fetch(Operation.CATALOG, params)

    @work(group="catalog")
    async def refine(self, **changes) -> None:
        await self._fetcher.apply_filters(Operation.CATALOG, **changes)

    @work(group="catalog")
    async def turn_page(self, page: int) -> None:
        await self._fetcher.go_to_page(Operation.CATALOG, page)

    def _render(self, key: Operation) -> None:
        slot = self._fetcher.slot(key)
        self.query_one("#label-page", Label).update(f"{slot.page} / {slot.total_pages}")
        self.query_one("#btn-prev-page", Button).disabled = slot.page <= 1
        self.query_one("#btn-next-page", Button).disabled = slot.page >= slot.total_pages
        table = self.query_one(DataTable)
        table.loading = slot.status is FetchStatus.IN_FLIGHT
        if table.loading:
            return
        table.clear()
        self._products = {p.pid: p for p in slot.data}
        for prod in slot.data:
            table.add_row(
                prod.name,
                prod.category,
                format_price(prod.price),
                format_optional(prod.rating),
                format_optional(prod.review_count),
                key=prod.pid,
            )

    async def on_input_changed(self, message: Input.Changed) -> None:
        if message.input.id == "input-search":
            self.refine(query=message.value.strip() or None)

    @on(Select.Changed, "#select-sort")
    def handle_sort(self, event: Select.Changed) -> None:
        sort_by = None if event.value is Select.BLANK else event.value
        self.refine(sort_by=sort_by)

    def action_next_page(self) -> None:
        self.turn_page(self._fetcher.slot(Operation.CATALOG).page + 1)

    def action_prev_page(self) -> None:
        self.turn_page(self._fetcher.slot(Operation.CATALOG).page - 1)

    @on(Button.Pressed, "#btn-next-page")
    def handle_next(self) -> None:
        self.action_next_page()

    @on(Button.Pressed, "#btn-prev-page")
    def handle_prev(self) -> None:
        self.action_prev_page()

    @on(DataTable.RowSelected)
    @work()
    async def handle_product_selected(self, event: DataTable.RowSelected) -> None:
        prod = self._products.get(event.row_key.value)
        if prod is None:
            return
        if await self.app.push_screen_wait(ProdDetailModal(prod, origin="catalog")):
            self.query_one(Sidebar).render_cart()
