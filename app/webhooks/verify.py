from __future__ import annotations

import hmac
import ipaddress
import logging
from dataclasses import dataclass
from typing import Mapping, Sequence

from app.core.config import ALLOW_ALL_SENTINEL

logger = logging.getLogger("rp.webhooks")

CDN_CLIENT_IP_HEADER = "cf-connecting-ip"


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: str | None = None
    ip: str | None = None


def get_client_ip(headers: Mapping[str, str]) -> str | None:
    xff = headers.get("x-forwarded-for")
    if xff:
        # Left-most entry is the original client.
        first = xff.split(",")[0].strip()
        if first:
            return first
    xrip = (headers.get("x-real-ip") or "").strip()
    if xrip:
        return xrip
    cdn = (headers.get(CDN_CLIENT_IP_HEADER) or "").strip()
    if cdn:
        return cdn
    return None


def is_ip_allowed(ip: str | None, allowlist: Sequence[str]) -> bool:
    if ALLOW_ALL_SENTINEL in allowlist:
        return True
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            network = ipaddress.ip_network(entry, strict=False)
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", extra={"entry": entry})
            continue
        if address.version == network.version and address in network:
            return True
    return False


def secrets_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def verify_webhook(
    headers: Mapping[str, str],
    *,
    secret: str,
    secret_header: str,
    allowlist: Sequence[str],
    dev_bypass: bool = False,
) -> VerificationResult:
    """Check that a delivery comes from the form service. Callers stop on `valid=False`."""
    ip = get_client_ip(headers)

    if not dev_bypass and not is_ip_allowed(ip, allowlist):
        return VerificationResult(valid=False, reason=f"IP address not allowed: {ip or 'unknown'}", ip=ip)

    if not secret:
        if dev_bypass:
            return VerificationResult(valid=True, ip=ip)
        return VerificationResult(valid=False, reason="Webhook secret not configured", ip=ip)

    provided = headers.get(secret_header.lower()) or headers.get(secret_header)
    if not provided:
        return VerificationResult(valid=False, reason="Missing webhook signature", ip=ip)
    if not secrets_match(provided, secret):
        return VerificationResult(valid=False, reason="Invalid webhook signature", ip=ip)
    return VerificationResult(valid=True, ip=ip)
