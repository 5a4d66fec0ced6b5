import unittest

from support import AppTestCase

from auth import AuthManager
from repository import SAVE_CONFLICT, SESSION_KEY


class TestAuthManager(AppTestCase):
    def test_login_requires_exact_role(self):
        self.assertIsNotNone(self.app.auth.login("farmer@demo.com", "demo123", "farmer"))
        self.assertIsNone(self.app.auth.login("farmer@demo.com", "demo123", "user"))
        self.assertIsNone(self.app.auth.login("farmer@demo.com", "wrong", "farmer"))

    def test_login_mirrors_session_to_storage(self):
        session = self.login("admin")
        self.assertEqual(session.role, "admin")
        self.assertTrue(session.has_role("admin"))
        self.assertEqual(self.app.repository.read_json(SESSION_KEY)["email"], "admin@demo.com")

    def test_session_restored_by_new_manager(self):
        self.login("user")
        restored = AuthManager(self.app.repository).current_session()
        self.assertIsNotNone(restored)
        self.assertEqual(restored.user_id, 1)

    def test_logout_clears_session(self):
        self.login("user")
        self.app.auth.logout()
        self.assertFalse(self.app.auth.is_authenticated())
        self.assertIsNone(self.app.repository.read_json(SESSION_KEY))
        self.assertIsNone(AuthManager(self.app.repository).current_session())

    def test_register_farmer_starts_active_and_unrated(self):
        ok, msg = self.app.auth.register(
            "Ann", "ann@example.com", "pw", "farmer", farm_name="Sunny Acres", location="North"
        )
        self.assertTrue(ok, msg)
        self.assertEqual(msg, "Registration successful")
        user = self.app.repository.snapshot().user_by_email("ann@example.com")
        self.assertEqual(user.id, 4)
        self.assertTrue(user.is_active)
        self.assertEqual(user.rating, 0.0)
        self.assertEqual(user.total_ratings, 0)
        self.assertEqual(user.display_name, "Sunny Acres")

    def test_register_duplicate_email(self):
        ok, msg = self.app.auth.register("Dup", "customer@demo.com", "pw", "user")
        self.assertFalse(ok)
        self.assertEqual(msg, "Email already exists")
        self.assertEqual(len(self.app.repository.snapshot().users), 3)

    def test_register_validation(self):
        ok, msg = self.app.auth.register("", "x@example.com", "pw", "user")
        self.assertFalse(ok)
        ok, msg = self.app.auth.register("X", "x@example.com", "pw", "superuser")
        self.assertFalse(ok)
        self.assertIn("role", msg.lower())
        ok, msg = self.app.auth.register("X", "x@example.com", "pw", "user", farm_name="Nope")
        self.assertFalse(ok)
        self.assertIn("farm_name", msg)

    def test_update_profile_refreshes_session(self):
        session = self.login("user")
        ok, msg = self.app.auth.update_profile(session, address="77 New Street", phone="+100")
        self.assertTrue(ok, msg)
        self.assertEqual(session.user.address, "77 New Street")
        self.assertEqual(self.app.repository.snapshot().user(1).phone, "+100")
        self.assertEqual(self.app.repository.read_json(SESSION_KEY)["address"], "77 New Street")

    def test_update_profile_rejects_taken_email_and_unknown_fields(self):
        session = self.login("user")
        ok, msg = self.app.auth.update_profile(session, email="farmer@demo.com")
        self.assertFalse(ok)
        self.assertEqual(msg, "Email already exists")
        ok, msg = self.app.auth.update_profile(session, role="admin")
        self.assertFalse(ok)
        self.assertEqual(self.app.repository.snapshot().user(1).role, "user")


    def test_register_conflict_is_reported(self):
        users_before = len(self.app.repository.snapshot().users)
        with self.concurrent_writer():
            ok, msg = self.app.auth.register("X", "x@example.com", "pw", "user")
        self.assertFalse(ok)
        self.assertEqual(msg, SAVE_CONFLICT)
        self.assertEqual(len(self.app.repository.snapshot().users), users_before)

    def test_update_profile_conflict_is_reported(self):
        session = self.login("user")
        with self.concurrent_writer():
            ok, msg = self.app.auth.update_profile(session, address="77 New Street")
        self.assertFalse(ok)
        self.assertEqual(msg, SAVE_CONFLICT)
        self.assertEqual(session.user.address, "123 Main St, City, State")
        self.assertEqual(self.app.repository.snapshot().user(1).address, "123 Main St, City, State")

    def test_farmer_profile_conflict_goes_through_dashboard(self):
        session = self.login("farmer")
        with self.concurrent_writer():
            ok, msg = self.app.farmer.update_profile(session, farm_name="Other Farm")
        self.assertFalse(ok)
        self.assertEqual(msg, SAVE_CONFLICT)


if __name__ == "__main__":
    unittest.main()
