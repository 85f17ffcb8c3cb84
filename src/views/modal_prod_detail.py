from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.validation import Number
from textual.widgets import Button, Input, Label, MarkdownViewer

from api.models import Product
from core.cart import CartStatus
from utils.pure import format_optional, format_price, generate_markdown_table


class ProdDetailModal(ModalScreen[bool]):
    """
    product detail, plus add to cart
    Will return true if the cart changed, false if not
    """

    CSS = """
    #input-order-qty {
        width: 10;
    }
    #btn-sub-qty, #btn-add-qty {
        min-width: 4;
    }
    """

    MAX_QTY = 99

    order_qty = reactive(1)

    def __init__(self, product: Product, origin: str = "") -> None:
        super().__init__()
        self._prod = product
        self._origin = origin or f"product:{product.pid}"

    def compose(self) -> ComposeResult:
        with Horizontal(id="hort-prod-detail"):
            yield MarkdownViewer("", show_table_of_contents=False)
            with Vertical():
                yield Label("Quantity")
                with Horizontal():
                    yield Button("-", id="btn-sub-qty")
                    yield Input(value="1", id="input-order-qty", type="integer")
                    yield Button("+", id="btn-add-qty")
                with Horizontal():
                    yield Button("Go Back", id="btn-quit")
                    yield Button("Add to Cart", id="btn-addcart", variant="primary")

    async def on_mount(self):
        prod = self._prod
        table_rows = [
            ["Category", prod.category or "-"],
            ["Price", format_price(prod.price)],
            ["Rating", format_optional(prod.rating, " / 5")],
            ["Reviews", format_optional(prod.review_count)],
        ]
        md_table_str = generate_markdown_table(["Attribute", "Value"], table_rows)
        await self.query_one(MarkdownViewer).document.update(
            f"### {prod.name}\n\n" + md_table_str
        )
        self.query_one("#input-order-qty").validators = [
            Number(minimum=1, maximum=self.MAX_QTY)
        ]
        self._sync_addcart_button()
        self.query_one("#input-order-qty").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    async def on_input_changed(self, message: Input.Changed) -> None:
        if message.input.id == "input-order-qty" and message.input.is_valid and message.value:
            self.order_qty = int(message.value)

    def watch_order_qty(self, qty: int) -> None:
        self.query_one("#btn-sub-qty").disabled = qty <= 1
        self.query_one("#btn-add-qty").disabled = qty >= self.MAX_QTY
        qty_input = self.query_one("#input-order-qty", Input)
        if qty_input.value != str(qty):
            qty_input.value = str(qty)

    def _sync_addcart_button(self) -> None:
        pending = self.app.cart.is_pending(self._prod.pid)
        button = self.query_one("#btn-addcart", Button)
        button.disabled = pending
        button.label = "Adding..." if pending else "Add to Cart"

    @on(Button.Pressed, "#btn-add-qty")
    def handle_add_qty(self):
        self.order_qty += 1

    @on(Button.Pressed, "#btn-sub-qty")
    def handle_sub_qty(self):
        self.order_qty -= 1

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)

    @on(Button.Pressed, "#btn-addcart")
    @work(exclusive=True)
    async def handle_addcart(self):
        button = self.query_one("#btn-addcart", Button)
        button.disabled = True
        button.label = "Adding..."
        result = await self.app.cart.add_item(
            self._prod.pid, self.order_qty, origin=self._origin
        )
        if result.status is CartStatus.OK:
            self.dismiss(True)
        elif result.status is CartStatus.AUTH_REQUIRED:
            # the app takes over with the login screen and resumes the add
            self.dismiss(False)
        else:
            self._sync_addcart_button()
