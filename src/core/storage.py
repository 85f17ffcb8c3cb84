# persists the logged-in session between runs
import json
import os.path
from contextlib import asynccontextmanager
from sqlite3 import Row
from typing import Any, Dict, Optional, Tuple

import aiosqlite

from utils import config
from utils.logger import get_logger

_logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS session_kv (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

TOKEN_KEY = "userToken"
PROFILE_KEY = "userData"


class SessionStore:
    """Key/value store for the token and the user record."""

    def __init__(self, path: str = config.SESSION_DB_PATH) -> None:
        self.path = path

    @asynccontextmanager
    async def connect(self) -> aiosqlite.Connection:
        """Async context manager yielding a connection with the table created."""
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        conn = await aiosqlite.connect(self.path)
        conn.row_factory = Row
        await conn.executescript(_SCHEMA)
        try:
            yield conn
        finally:
            await conn.close()

    async def save(self, token: str, user: Dict[str, Any]) -> None:
        async with self.connect() as conn:
            await conn.executemany(
                "INSERT OR REPLACE INTO session_kv(key, value) VALUES (?, ?);",
                [(TOKEN_KEY, token), (PROFILE_KEY, json.dumps(user))],
            )
            await conn.commit()

    async def load(self) -> Optional[Tuple[str, Dict[str, Any]]]:
        """Return (token, user) or None when nothing usable is stored."""
        async with self.connect() as conn:
            cur = await conn.execute("SELECT key, value FROM session_kv;")
            rows = await cur.fetchall()
            await cur.close()
        values = {row["key"]: row["value"] for row in rows}
        token = values.get(TOKEN_KEY)
        raw_user = values.get(PROFILE_KEY)
        if not token or not raw_user:
            return None
        try:
            user = json.loads(raw_user)
        except ValueError:
            _logger.warning("stored user record is corrupted")
            return None
        if not isinstance(user, dict):
            return None
        return token, user

    async def clear(self) -> None:
        async with self.connect() as conn:
            await conn.execute("DELETE FROM session_kv;")
            await conn.commit()
