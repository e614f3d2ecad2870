import unittest
from unittest.mock import patch

from api.security import create_token, token_from_header, verify_token


class TokenTests(unittest.TestCase):
    def test_round_trip(self):
        payload = verify_token(create_token(7, "a@b.com"))
        self.assertEqual(payload["uid"], 7)
        self.assertEqual(payload["email"], "a@b.com")
        self.assertLess(payload["iat"], payload["exp"])

    def test_tampered_signature(self):
        token = create_token(7, "a@b.com")
        body, sig = token.split(".")
        flipped = ("B" if sig[0] == "A" else "A") + sig[1:]
        self.assertIsNone(verify_token(f"{body}.{flipped}"))
        other = create_token(8, "a@b.com").split(".")[0]
        self.assertIsNone(verify_token(f"{other}.{sig}"))

    def test_garbage(self):
        self.assertIsNone(verify_token("not-a-token"))
        self.assertIsNone(verify_token("###.###"))
        self.assertIsNone(verify_token(""))

    def test_expired(self):
        token = create_token(7, "a@b.com", ttl_seconds=60, now=1_000_000)
        self.assertIsNotNone(verify_token(token, now=1_000_060))
        self.assertIsNone(verify_token(token, now=1_000_061))

    def test_other_secret_rejects(self):
        token = create_token(7, "a@b.com")
        with patch("api.security.settings.token_secret", "outro-segredo"):
            self.assertIsNone(verify_token(token))


class BearerHeaderTests(unittest.TestCase):
    def test_extracts_token(self):
        self.assertEqual(token_from_header("Bearer abc.def"), "abc.def")
        self.assertEqual(token_from_header("bearer   abc.def "), "abc.def")

    def test_rejects_other_schemes(self):
        self.assertIsNone(token_from_header(None))
        self.assertIsNone(token_from_header("Basic dXNlcjpwYXNz"))
        self.assertIsNone(token_from_header("Bearer "))


if __name__ == "__main__":
    unittest.main()
