import unittest

from asset_control.tests import support  # noqa: F401  (sets the signing secret)

from asset_control.services.user_access_service import create_session, get_session, remove_session


class SessionTokenTests(unittest.TestCase):
    def test_token_round_trip_carries_identity_only(self):
        token = create_session(42)
        session = get_session(token)
        self.assertEqual(session["userID"], 42)
        self.assertEqual(set(session), {"userID", "expiresAt"})

    def test_tampered_token_is_rejected(self):
        token = create_session(42)
        body, signature = token.split(".", 1)
        forged = create_session(1).split(".", 1)[0]
        self.assertIsNone(get_session(f"{forged}.{signature}"))
        self.assertIsNone(get_session(body))
        self.assertIsNone(get_session("not-a-token"))

    def test_expired_token_is_rejected(self):
        self.assertIsNone(get_session(create_session(42, ttl_seconds=-1)))

    def test_missing_token(self):
        self.assertIsNone(get_session(None))
        self.assertIsNone(get_session(""))

    def test_revoked_token_is_rejected(self):
        token = create_session(7)
        other = create_session(7, ttl_seconds=600)
        remove_session(token)
        self.assertIsNone(get_session(token))
        self.assertIsNotNone(get_session(other))

    def test_remove_session_ignores_garbage(self):
        remove_session(None)
        remove_session("garbage")


if __name__ == "__main__":
    unittest.main()
