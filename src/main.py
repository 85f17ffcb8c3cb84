from typing import Optional

from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from api.gateway import RequestGateway
from api.geocoding import NominatimGeocoder
from api.positioning import PositionOptions, default_position_provider
from api.push import WebSocketPushTransport
from core.cart import CartMutator, ResumeIntent
from core.channel import OrderBook
from core.location import LocationPipeline
from core.session import SessionContext
from core.storage import SessionStore
from utils import config
from utils.logger import get_logger
from utils.messages import AuthRequiredMessage, QuitRequestedMessage, UserLogoutMessage
from utils.notify import AppNotifier
from views.base_screen import Sidebar
from views.scr_catalog import CatalogScreen
from views.scr_dashboard import DashboardScreen
from views.scr_login import LoginScreen

_logger = get_logger(__name__)


class StorefrontApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "dashboard": DashboardScreen,
        "catalog": CatalogScreen,
    }

    BUYER_MODES = {
        "dashboard": "Dashboard",
        "catalog": "Browse Catalog",
    }

    CSS = """
    Sidebar {
        dock: left;
        width: 32;
        padding: 0 1;
        border-right: solid $primary;
    }
    #hort-location, #hort-catalog-filters, #hort-catalog-pages {
        height: auto;
    }
    #label-address {
        width: 1fr;
        padding: 1 1;
    }
    #label-location-error {
        padding: 0 1;
    }
    #input-search {
        width: 1fr;
    }
    #select-sort {
        width: 30;
    }
    #label-page {
        padding: 1 2;
    }
    #div-login {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round $primary;
    }
    #div-dialog {
        width: 50;
        height: auto;
        padding: 1 2;
        border: thick $warning;
        background: $surface;
    }
    ConfirmModal, ProdDetailModal {
        align: center middle;
    }
    #hort-prod-detail {
        width: 90;
        height: 24;
        background: $surface;
    }
    """

    def __init__(self):
        super().__init__()
        self.notifier = AppNotifier(self)
        self.session = SessionContext(store=SessionStore(config.SESSION_DB_PATH))
        self.gateway = RequestGateway(self.session)
        self.orders = OrderBook()
        self.location = LocationPipeline(
            self.session,
            self.gateway,
            default_position_provider(),
            NominatimGeocoder(),
            notifier=self.notifier,
            options=PositionOptions(),
        )
        self.cart = CartMutator(
            self.session,
            self.gateway,
            notifier=self.notifier,
            on_auth_required=self.request_login,
        )
        self._login_open = False

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        self.main_flow()

    def make_transport(self) -> WebSocketPushTransport:
        return WebSocketPushTransport(config.PUSH_URL, token=lambda: self.session.token)

    def request_login(self, intent: Optional[ResumeIntent] = None) -> None:
        self.post_message(AuthRequiredMessage(intent))

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.notify(f"Theme changed to {self.theme}")

    @on(AuthRequiredMessage)
    @work(group="auth")
    async def handle_auth_required(self, message: AuthRequiredMessage):
        if self._login_open:
            return
        self._login_open = True
        try:
            if self.session.authenticated:
                # the backend rejected our token
                await self.session.logout()
                self.notify("Your session has expired, please log in again.", severity="warning")
            logged_in = await self.push_screen_wait(LoginScreen())
        finally:
            self._login_open = False

        intent = message.intent
        if logged_in and intent is not None:
            _logger.info(f"resuming add to cart from {intent.origin}")
            result = await self.cart.add_item(
                intent.product_id, intent.quantity, origin=intent.origin
            )
            if result.ok:
                for sidebar in self.screen.query(Sidebar):
                    sidebar.render_cart()

    @on(UserLogoutMessage)
    @work
    async def handle_user_logout(self):
        await self.session.logout()
        self.cart.cart = None
        self.notify("Logout successful.")
        self.request_login()

    @on(QuitRequestedMessage)
    @work
    async def handle_quit(self):
        await self.gateway.close()
        self.exit()

    @work
    async def main_flow(self):
        if not await self.session.restore():
            await self.push_screen_wait(LoginScreen())
        await self.switch_mode("dashboard")


def run():
    app = StorefrontApp()
    app.run()


if __name__ == "__main__":
    run()
