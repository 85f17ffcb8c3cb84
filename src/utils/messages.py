from typing import Optional

from textual.message import Message

from core.cart import ResumeIntent


class QuitRequestedMessage(Message):
    """
    broadcasted when the app is about to quit
    """

    bubble = True


class UserLogoutMessage(Message):
    """
    broadcasted when the user asks to log out
    """

    bubble = True


class AuthRequiredMessage(Message):
    """
    Posted at App level when an action needs a login (no session, or the
    server rejected the token). Carries what to resume once logged in.
    """

    bubble = True

    def __init__(self, intent: Optional[ResumeIntent] = None) -> None:
        super().__init__()
        self.intent = intent

