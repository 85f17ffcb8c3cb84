from typing import List, Literal, Protocol, Tuple

Severity = Literal["information", "warning", "error"]


class Notifier(Protocol):
    """Where user-visible notification intents go. The core never draws UI."""

    def notify(self, level: Severity, message: str) -> None: ...


class AppNotifier:
    """Forwards to ``App.notify`` as a toast."""

    def __init__(self, app) -> None:
        self._app = app

    def notify(self, level: Severity, message: str) -> None:
        self._app.notify(message, severity=level)


class RecordingNotifier:
    """Keeps every notification; handy in tests and headless runs."""

    def __init__(self) -> None:
        self.sent: List[Tuple[Severity, str]] = []

    def notify(self, level: Severity, message: str) -> None:
        self.sent.append((level, message))
