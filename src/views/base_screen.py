from rich.text import Text
from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import Screen
from textual.widgets import Button, Footer, Header, Label, ListItem, ListView, Markdown

from core.session import SessionContext
from utils.messages import AuthRequiredMessage, UserLogoutMessage
from utils.pure import format_price, generate_markdown_table
from views.modal_dialog import ConfirmModal, QuitConfirmModal


class Sidebar(Container):
    """User card, cart summary and the mode menu."""

    def compose(self) -> ComposeResult:
        yield Label("User Info", id="label-info-1")
        yield Markdown("", id="md-userinfo")
        yield Label("", id="label-cart-summary")
        yield Button("Log out", id="btn-logout", variant="error")
        yield Label("Menu", id="label-info-2")
        yield ListView(id="list-menu")

    async def on_mount(self):
        self.app.session.add_listener(self._session_changed)
        list_menu: ListView = self.query_one("#list-menu")
        await list_menu.extend(
            [
                ListItem(Label(v), id="list-menu-item-" + k)
                for k, v in self.app.BUYER_MODES.items()
            ]
        )
        self._render_user(self.app.session)
        self.render_cart()

    def on_unmount(self):
        self.app.session.remove_listener(self._session_changed)

    def _session_changed(self, session: SessionContext) -> None:
        self._render_user(session)

    def _render_user(self, session: SessionContext) -> None:
        if session.authenticated:
            rows = [
                ["Name", session.profile.name],
                ["Email", session.profile.email or "-"],
                ["Address", session.address or "not set"],
            ]
            btn_text, btn_variant = "Log out", "error"
        else:
            rows = [["Name", "Guest"]]
            btn_text, btn_variant = "Log in", "primary"
        self.query_one("#md-userinfo", Markdown).update(
            generate_markdown_table(None, rows, ["l", "l"])
        )
        button = self.query_one("#btn-logout", Button)
        button.label = btn_text
        button.variant = btn_variant

    def render_cart(self) -> None:
        cart = self.app.cart.cart
        if cart is None:
            text = "Cart: -"
        else:
            count = sum(i.quantity for i in cart.items)
            text = f"Cart: {count} item(s), {format_price(cart.display_total())}"
        self.query_one("#label-cart-summary", Label).update(Text(text))

    async def on_list_view_selected(self, event: ListView.Selected):
        selected_mode = event.item.id.removeprefix("list-menu-item-")
        if self.app.current_mode != selected_mode:
            await self.app.switch_mode(selected_mode)

    @on(Button.Pressed, "#btn-logout")
    @work(exclusive=True)
    async def handle_logout(self):
        if not self.app.session.authenticated:
            self.app.post_message(AuthRequiredMessage())
            return
        if not await self.app.push_screen_wait(
            ConfirmModal("Are you sure you want to log out?", tone="warning")
        ):
            return
        self.app.post_message(UserLogoutMessage())


class BaseScreen(Screen):
    """
    Inherited by all screens, contains common elements like
    headers, footers, sidebar, and keybindings.
    """

    BINDINGS = [
        Binding("ctrl+z", "quit", "Quit App", show=True),
    ]

    def __init__(self):
        super().__init__()
        self.configure()

    def configure(
        self,
        header_sub_title: str = "",
        show_sidebar: bool = True,
    ) -> None:
        self.sub_title = header_sub_title
        for k, v in self.app.MODES.items():
            if isinstance(self, v):
                self.sub_title = self.app.BUYER_MODES.get(k, header_sub_title)
        self._show_sidebar = show_sidebar

    def compose(self) -> ComposeResult:
        if self._show_sidebar:
            yield Sidebar()
        yield Header()
        yield Footer(show_command_palette=False)

    @work()
    async def action_quit(self):
        await self.app.push_screen_wait(QuitConfirmModal())
