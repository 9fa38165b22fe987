"""Webhook HMAC signature generation and verification.

Outbound webhooks configured with a secret are signed with HMAC-SHA256
so that receivers can verify the payload authenticity.

Header added to signed webhooks:
  X-Webhook-Signature: <hex_digest>

The digest is computed over the exact request body bytes. Receivers
recompute it with the shared secret and compare in constant time.

Usage:
    # Signing (outbound)
    headers = sign_webhook_payload(body_bytes, secret)

    # Verification (inbound)
    is_valid = verify_webhook_signature(body_bytes, secret, signature)
"""

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature"


def compute_signature(payload: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of ``payload`` keyed with ``secret``."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def sign_webhook_payload(payload: bytes, secret: str) -> dict[str, str]:
    """Sign a webhook payload and return headers to include in the request.

    Args:
        payload: Raw request body bytes
        secret: Webhook signing secret (shared with receiver)

    Returns:
        Dict of headers to add to the webhook request
    """
    return {
        SIGNATURE_HEADER: compute_signature(payload, secret),
        "Content-Type": "application/json",
    }


def verify_webhook_signature(payload: bytes, secret: str, signature_header: str) -> bool:
    """Verify a webhook signature.

    Args:
        payload: Raw request body bytes
        secret: Webhook signing secret
        signature_header: Value of the X-Webhook-Signature header

    Returns:
        True if the signature matches the payload
    """
    if not signature_header:
        return False
    return hmac.compare_digest(compute_signature(payload, secret), signature_header)
