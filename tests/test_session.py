import os
import sys
import tempfile
import unittest

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from api.models import Location  # noqa: E402
from core.errors import AuthRequired  # noqa: E402
from core.session import SessionContext, is_valid_token_structure  # noqa: E402
from core.storage import PROFILE_KEY, SessionStore  # noqa: E402

TOKEN = "aaa.bbb.ccc"
USER = {
    "_id": "u1",
    "name": "Asha",
    "email": "asha@example.com",
    "token": TOKEN,
    "location": {"type": "Point", "coordinates": [77.0, 28.0], "address": "Noida"},
}


class SessionTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        # each test gets its own session file
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "nested", "session.sqlite")
        self.store = SessionStore(self.db_path)

    def tearDown(self):
        self.temp_dir.cleanup()

    # ---------- Token structure ----------

    def test_token_structure(self):
        self.assertTrue(is_valid_token_structure(TOKEN))
        self.assertFalse(is_valid_token_structure(None))
        self.assertFalse(is_valid_token_structure("aaa.bbb"))
        self.assertFalse(is_valid_token_structure("aaa..ccc"))

    # ---------- Login, restore, logout ----------

    async def test_login_persists_and_restores(self):
        session = SessionContext(store=self.store)
        seen = []
        session.add_listener(lambda s: seen.append(s.identity))
        await session.login(USER)
        self.assertTrue(session.authenticated)
        self.assertEqual(session.address, "Noida")
        self.assertEqual(seen, ["u1"])

        restored = SessionContext(store=SessionStore(self.db_path))
        self.assertTrue(await restored.restore())
        self.assertEqual(restored.identity, "u1")
        self.assertEqual(restored.token, TOKEN)
        self.assertEqual(restored.profile.location, Location((77.0, 28.0), "Noida"))

    async def test_login_rejects_bad_records(self):
        session = SessionContext(store=self.store)
        with self.assertRaises(AuthRequired):
            await session.login({"_id": "u1", "name": "Asha"})
        with self.assertRaises(AuthRequired):
            await session.login({"_id": "u1", "token": "not-a-jwt"})
        with self.assertRaises(AuthRequired):
            await session.login({"name": "Asha", "token": TOKEN})
        self.assertFalse(session.authenticated)
        self.assertIsNone(await self.store.load())

    async def test_logout_clears_store_once(self):
        session = SessionContext(store=self.store)
        calls = []
        session.add_listener(lambda s: calls.append(s.authenticated))
        await session.login(USER)
        await session.logout()
        await session.logout()
        self.assertEqual(calls, [True, False])
        self.assertIsNone(session.profile.location)
        self.assertIsNone(await self.store.load())

    async def test_corrupted_store_is_cleared_on_restore(self):
        await self.store.save("broken", {"_id": "u1", "name": "Asha"})
        session = SessionContext(store=self.store)
        self.assertFalse(await session.restore())
        self.assertIsNone(await self.store.load())

        async with self.store.connect() as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO session_kv(key, value) VALUES (?, ?);",
                ("userToken", TOKEN),
            )
            await conn.execute(
                "INSERT OR REPLACE INTO session_kv(key, value) VALUES (?, ?);",
                (PROFILE_KEY, "{not json"),
            )
            await conn.commit()
        self.assertIsNone(await self.store.load())

    async def test_update_profile_requires_login(self):
        session = SessionContext(store=self.store)
        with self.assertRaises(AuthRequired):
            await session.update_profile(name="New")
        await session.login(USER)
        await session.update_profile(name="Asha K")
        self.assertEqual(session.profile.name, "Asha K")
        # location untouched by a name change
        self.assertEqual(session.address, "Noida")

    async def test_listener_removed(self):
        session = SessionContext()
        calls = []
        listener = calls.append
        session.add_listener(listener)
        session.remove_listener(listener)
        await session.login(USER)
        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
