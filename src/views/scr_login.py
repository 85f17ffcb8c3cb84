from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import Key
from textual.widgets import Button, Input, Label

import api.endpoints
from core.errors import StorefrontError
from views.base_screen import BaseScreen
from views.modal_dialog import QuitConfirmModal


class LoginScreen(BaseScreen):
    """
    Dismisses with True once the session is logged in, False when the user
    chose to browse as a guest.
    """

    def __init__(self):
        super().__init__()
        self.configure(header_sub_title="Login", show_sidebar=False)

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical(id="div-login"):
            yield Label("Email")
            yield Input(placeholder="user@example.com", id="input-login-email")
            yield Label("Password")
            yield Input(placeholder="*********", password=True, id="input-login-pwd")
            with Horizontal(id="div-login-btns"):
                yield Button("Quit", id="btn-quit")
                yield Button("Browse as guest", id="btn-guest")
                yield Button("Login", id="btn-login", variant="primary")

    def on_mount(self):
        self.query_one("#input-login-email").focus()

    def on_key(self, event: Key) -> None:
        if event.key == "enter" and self.focused == self.query_one("#input-login-pwd"):
            self.handle_login_submit()

    @on(Button.Pressed, "#btn-login")
    @work(exclusive=True)
    async def handle_login_submit(self) -> None:
        email = self.query_one("#input-login-email", Input).value.strip()
        pwd = self.query_one("#input-login-pwd", Input).value.strip()

        if not email or not pwd:
            self.notify("Email or password cannot be empty!", severity="error")
            return

        button = self.query_one("#btn-login", Button)
        button.disabled = True
        try:
            user = await api.endpoints.login(self.app.gateway, email, pwd)
            await self.app.session.login(user)
        except StorefrontError as e:
            self.notify(e.message or "Invalid email or password.", severity="error")
            input_login_pwd = self.query_one("#input-login-pwd", Input)
            input_login_pwd.value = ""
            input_login_pwd.focus()
            input_login_pwd.add_class("-invalid")
            return
        finally:
            button.disabled = False

        self.notify(f"Welcome, {self.app.session.profile.name}!")
        self.dismiss(True)

    @on(Button.Pressed, "#btn-guest")
    def handle_guest(self) -> None:
        self.dismiss(False)

    @on(Button.Pressed, "#btn-quit")
    def handle_quit_(self) -> None:
        self.app.push_screen(QuitConfirmModal())
