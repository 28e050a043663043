from __future__ import annotations

import unittest

from app.core.config import ALLOW_ALL_SENTINEL
from app.webhooks.verify import get_client_ip, is_ip_allowed, secrets_match, verify_webhook

SECRET = "s3cret-value"


def _verify(headers, *, secret=SECRET, allowlist=(ALLOW_ALL_SENTINEL,), dev_bypass=False):
    return verify_webhook(
        headers,
        secret=secret,
        secret_header="x-webhook-secret",
        allowlist=list(allowlist),
        dev_bypass=dev_bypass,
    )


class ClientIpTests(unittest.TestCase):
    def test_forwarded_for_first_hop_wins(self) -> None:
        headers = {"x-forwarded-for": "198.51.100.7, 10.0.0.1", "x-real-ip": "10.0.0.2"}
        self.assertEqual(get_client_ip(headers), "198.51.100.7")

    def test_fallback_headers(self) -> None:
        self.assertEqual(get_client_ip({"x-real-ip": "10.0.0.2"}), "10.0.0.2")
        self.assertEqual(get_client_ip({"cf-connecting-ip": "10.0.0.3"}), "10.0.0.3")
        self.assertIsNone(get_client_ip({}))


class AllowlistTests(unittest.TestCase):
    def test_sentinel_allows_everything(self) -> None:
        self.assertTrue(is_ip_allowed(None, [ALLOW_ALL_SENTINEL]))
        self.assertTrue(is_ip_allowed("2001:db8::1", [ALLOW_ALL_SENTINEL]))

    def test_cidr_matching(self) -> None:
        allowlist = ["203.0.113.0/24", "198.51.100.7"]
        self.assertTrue(is_ip_allowed("203.0.113.99", allowlist))
        self.assertTrue(is_ip_allowed("198.51.100.7", allowlist))
        self.assertFalse(is_ip_allowed("198.51.100.8", allowlist))
        self.assertFalse(is_ip_allowed(None, allowlist))
        self.assertFalse(is_ip_allowed("not-an-ip", allowlist))

    def test_invalid_entries_are_skipped(self) -> None:
        self.assertTrue(is_ip_allowed("203.0.113.5", ["garbage", "203.0.113.0/24"]))


class VerifyWebhookTests(unittest.TestCase):
    def test_matching_secret_is_valid(self) -> None:
        result = _verify({"x-webhook-secret": SECRET, "x-forwarded-for": "203.0.113.5"})
        self.assertTrue(result.valid)
        self.assertEqual(result.ip, "203.0.113.5")

    def test_one_byte_mismatch_is_invalid(self) -> None:
        result = _verify({"x-webhook-secret": SECRET[:-1] + "X"})
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, "Invalid webhook signature")

    def test_missing_secret_header(self) -> None:
        result = _verify({})
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, "Missing webhook signature")

    def test_unconfigured_secret_fails_closed(self) -> None:
        result = _verify({"x-webhook-secret": "anything"}, secret="")
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, "Webhook secret not configured")

    def test_dev_bypass_accepts_without_secret(self) -> None:
        result = _verify({}, secret="", allowlist=["203.0.113.0/24"], dev_bypass=True)
        self.assertTrue(result.valid)

    def test_ip_outside_allowlist(self) -> None:
        result = _verify(
            {"x-webhook-secret": SECRET, "x-forwarded-for": "192.0.2.1"},
            allowlist=["203.0.113.0/24"],
        )
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, "IP address not allowed: 192.0.2.1")

    def test_secrets_match_is_exact(self) -> None:
        self.assertTrue(secrets_match("abc", "abc"))
        self.assertFalse(secrets_match("abc", "abcd"))
        self.assertFalse(secrets_match("", "abc"))


if __name__ == "__main__":
    unittest.main()
