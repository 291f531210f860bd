"""Shopify request signature verification.

WHAT:
    - Webhooks: base64 HMAC-SHA256 of the raw body in X-Shopify-Hmac-Sha256
    - OAuth callback: hex HMAC-SHA256 of the sorted query string in `hmac`

WHY:
    Both endpoints are public. A request that fails verification must be
    rejected before its body is parsed or any storage is touched.

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks/subscribe/https#step-5-verify-the-webhook
    - https://shopify.dev/docs/apps/build/authentication-authorization/access-tokens/authorization-code-grant#step-1-verify-the-installation-request
"""

import base64
import binascii
import hashlib
import hmac
import logging
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


def compute_webhook_signature(shared_secret: str, raw_body: bytes) -> str:
    """Base64 HMAC-SHA256 of the raw body, as Shopify sends it."""
    digest = hmac.new(shared_secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_signature(shared_secret: str, raw_body: bytes, provided_header: Optional[str]) -> bool:
    """Verify a webhook signature header against the raw request body.

    The comparison runs in constant time on the decoded digests. A missing
    secret, missing header, undecodable header or a digest of the wrong
    length all yield False.
    """
    if not shared_secret:
        logger.error("[SHOPIFY_WEBHOOK] SHOPIFY_API_SECRET not configured - cannot verify webhooks")
        return False

    if not provided_header:
        logger.warning("[SHOPIFY_WEBHOOK] Missing HMAC header")
        return False

    try:
        provided = base64.b64decode(provided_header.strip(), validate=True)
    except (binascii.Error, ValueError):
        logger.warning("[SHOPIFY_WEBHOOK] HMAC header is not valid base64")
        return False

    expected = hmac.new(shared_secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    if len(provided) != len(expected):
        logger.warning("[SHOPIFY_WEBHOOK] HMAC length mismatch")
        return False

    is_valid = hmac.compare_digest(expected, provided)
    if not is_valid:
        logger.warning("[SHOPIFY_WEBHOOK] HMAC verification failed")
    return is_valid


def _callback_message(query_params: Mapping[str, str]) -> str:
    pairs = [
        f"{key}={value}"
        for key, value in sorted(query_params.items())
        if key not in ("hmac", "signature")
    ]
    return "&".join(pairs)


def compute_callback_hmac(shared_secret: str, query_params: Mapping[str, str]) -> str:
    """Hex HMAC-SHA256 over the sorted callback query string (minus `hmac`)."""
    message = _callback_message(query_params)
    return hmac.new(shared_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_oauth_callback(shared_secret: str, query_params: Mapping[str, str]) -> bool:
    """Verify the `hmac` parameter Shopify attaches to the OAuth callback."""
    provided = query_params.get("hmac")
    if not shared_secret or not provided:
        logger.warning("[SHOPIFY_OAUTH] Missing secret or hmac parameter on callback")
        return False

    expected = compute_callback_hmac(shared_secret, query_params)
    return hmac.compare_digest(expected.encode("utf-8"), provided.lower().encode("utf-8"))
