"""HMAC signing for outbound webhook step requests.

When a webhook step (or the engine config) carries a signing secret, the
request body is signed with HMAC-SHA256 so the receiver can check that the
call really came from this engine.

Headers added to signed requests:
  X-Workflow-Signature: sha256=<hex_digest>
  X-Workflow-Timestamp: <unix_timestamp>
  X-Workflow-Delivery: <unique_delivery_id>

The digest covers f"{timestamp}.{body}".
"""

import hashlib
import hmac
import time
from typing import Optional
from uuid import uuid4

SIGNATURE_HEADER = "X-Workflow-Signature"
TIMESTAMP_HEADER = "X-Workflow-Timestamp"
DELIVERY_HEADER = "X-Workflow-Delivery"
DEFAULT_TOLERANCE_SECONDS = 300


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    """Return the hex HMAC-SHA256 digest of ``{timestamp}.{payload}``."""
    sign_input = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), sign_input, hashlib.sha256).hexdigest()


def sign_webhook_payload(
    payload: bytes,
    secret: str,
    timestamp: Optional[int] = None,
    delivery_id: Optional[str] = None,
) -> dict[str, str]:
    """Sign a webhook payload and return headers to include in the request.

    Args:
        payload: Raw request body bytes
        secret: Webhook signing secret (shared with receiver)
        timestamp: Unix timestamp (defaults to now)
        delivery_id: Unique delivery ID (defaults to UUID)

    Returns:
        Dict of headers to add to the webhook request
    """
    ts = timestamp or int(time.time())
    delivery = delivery_id or str(uuid4())

    return {
        SIGNATURE_HEADER: f"sha256={compute_signature(payload, secret, ts)}",
        TIMESTAMP_HEADER: str(ts),
        DELIVERY_HEADER: delivery,
    }


def verify_webhook_signature(
    payload: bytes,
    secret: str,
    signature: str,
    timestamp: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> bool:
    """Check a signature produced by :func:`sign_webhook_payload`.

    Receivers use this to authenticate calls made by webhook steps.
    """
    if not signature or not timestamp:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False

    current = now if now is not None else int(time.time())
    if abs(current - ts) > tolerance:
        return False

    if not signature.startswith("sha256="):
        return False
    expected = compute_signature(payload, secret, ts)
    return hmac.compare_digest(expected, signature[len("sha256="):])
