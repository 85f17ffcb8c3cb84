from typing import Dict, Literal, Tuple

from typing_extensions import override

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, Label

from utils.messages import QuitRequestedMessage

Tone = Literal["default", "warning", "error"]
ButtonVariant = Literal["primary", "default", "success", "warning", "error"]


class ConfirmModal(ModalScreen[bool]):
    """
    Yes/no question. Dismisses with True when confirmed.
    """

    # (confirm button, cancel button)
    VARIANTS: Dict[Tone, Tuple[ButtonVariant, ButtonVariant]] = {
        "default": ("primary", "default"),
        "warning": ("warning", "default"),
        "error": ("error", "primary"),
    }

    def __init__(
        self,
        question: str,
        confirm_text: str = "Yes",
        cancel_text: str = "No",
        tone: Tone = "default",
    ):
        super().__init__()
        self.question = question
        self.confirm_text = confirm_text
        self.cancel_text = cancel_text
        self.tone = tone

    def compose(self) -> ComposeResult:
        confirm_variant, cancel_variant = self.VARIANTS[self.tone]
        with Container(id="div-dialog"):
            yield Label(self.question, id="label-question")
            with Horizontal(id="div-dialog-btns"):
                yield Button(self.cancel_text, variant=cancel_variant, id="btn-cancel")
                yield Button(self.confirm_text, variant=confirm_variant, id="btn-confirm")

    def on_mount(self):
        # destructive questions default to the safe answer
        if self.tone == "error":
            self.query_one("#btn-cancel").focus()
        else:
            self.query_one("#btn-confirm").focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "btn-confirm")


class QuitConfirmModal(ConfirmModal):
    def __init__(self):
        super().__init__("Are you sure you want to quit?", tone="error")

    @override
    def on_button_pressed(self, event: Button.Pressed) -> None:
        confirmed = event.button.id == "btn-confirm"
        if confirmed:
            self.app.post_message(QuitRequestedMessage())
        self.dismiss(confirmed)
