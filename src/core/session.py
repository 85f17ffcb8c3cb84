from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from api.models import Location, Profile
from core.errors import AuthRequired
from core.storage import SessionStore
from utils.logger import get_logger

_logger = get_logger(__name__)

SessionListener = Callable[["SessionContext"], None]


def is_valid_token_structure(token: Optional[str]) -> bool:
    """A JWT has three non-empty dot separated parts; nothing else is checked."""
    if not token or not isinstance(token, str):
        return False
    parts = token.split(".")
    return len(parts) == 3 and all(parts)


@dataclass
class SessionContext:
    """
    The authenticated identity shared by every component.

    Fields are read freely but only written through ``login``, ``logout``,
    ``restore`` and ``update_profile``. Listeners run after each of those.

    Fields:
      - identity: backend user id (``_id``), None when logged out
      - token: bearer credential
      - profile: cached name, email and last known location
    """

    identity: Optional[str] = None
    token: Optional[str] = None
    profile: Profile = field(default_factory=Profile)
    store: Optional[SessionStore] = None
    _listeners: List[SessionListener] = field(default_factory=list, repr=False)

    @property
    def authenticated(self) -> bool:
        return self.identity is not None and is_valid_token_structure(self.token)

    @property
    def address(self) -> str:
        loc = self.profile.location
        return loc.address if loc else ""

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    async def restore(self) -> bool:
        """Load a previously saved session. Corrupted records are cleared."""
        if self.store is None:
            return False
        saved = await self.store.load()
        if saved is None:
            return False
        token, user = saved
        if not is_valid_token_structure(token) or not user.get("_id") or not user.get("name"):
            _logger.warning("discarding invalid stored session")
            await self.store.clear()
            return False
        self._apply(user, token)
        _logger.info(f"restored session for {self.identity}")
        self._changed()
        return True

    async def login(self, user: Dict[str, Any]) -> None:
        """Start a session from the backend's login record (must carry ``token``)."""
        token = user.get("token")
        if not token:
            raise AuthRequired("Invalid login data - missing token")
        if not is_valid_token_structure(token):
            raise AuthRequired("Invalid token format received from server")
        if not user.get("_id"):
            raise AuthRequired("Invalid login data - missing user id")

        self._apply(user, token)
        if self.store is not None:
            await self.store.save(token, self._user_record())
        _logger.info(f"user {self.identity} logged in")
        self._changed()

    async def logout(self) -> None:
        if self.identity is None and self.token is None:
            return
        _logger.info(f"user {self.identity} logged out")
        self.identity = None
        self.token = None
        self.profile = Profile()
        if self.store is not None:
            await self.store.clear()
        self._changed()

    async def update_profile(
        self, *, name: Optional[str] = None, location: Optional[Location] = None
    ) -> None:
        if not self.authenticated:
            raise AuthRequired()
        changes = {}
        if name is not None:
            changes["name"] = name
        if location is not None:
            changes["location"] = location
        if not changes:
            return
        self.profile = replace(self.profile, **changes)
        if self.store is not None:
            await self.store.save(self.token, self._user_record())
        self._changed()

    def _apply(self, user: Dict[str, Any], token: str) -> None:
        self.identity = str(user["_id"])
        self.token = token
        self.profile = Profile(
            name=user.get("name", ""),
            email=user.get("email", ""),
            location=Location.from_wire(user.get("location")),
        )

    def _user_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "_id": self.identity,
            "name": self.profile.name,
            "email": self.profile.email,
        }
        if self.profile.location is not None:
            record["location"] = self.profile.location.to_wire()
        return record
