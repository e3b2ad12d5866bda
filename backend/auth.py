"""
Authentication for scheduler triggers and provider webhooks
"""

import base64
import binascii
import hashlib
import hmac
import time
from typing import Optional

import structlog
from fastapi import Header, HTTPException, status

from config import settings

logger = structlog.get_logger()

# Max age of a signed webhook delivery, in seconds
WEBHOOK_TOLERANCE_SECONDS = 300


def verify_cron_auth(authorization: Optional[str]) -> None:
    """
    Check a scheduler's bearer credential against CRON_SECRET.

    Without a configured secret, production rejects every call and other
    environments allow it.

    Raises:
        HTTPException: 500 when production has no secret, 401 on a missing
        or mismatched credential
    """
    secret = settings.CRON_SECRET
    if not secret:
        if settings.is_production:
            logger.error("cron_secret_missing", environment=settings.ENVIRONMENT)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Server misconfiguration"
            )
        return

    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        logger.warning("cron_auth_rejected", has_header=bool(authorization))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )


async def require_cron_auth(authorization: Optional[str] = Header(None)) -> None:
    """
    Router dependency guarding cron endpoints

    Usage:
        router = APIRouter(dependencies=[Depends(require_cron_auth)])
    """
    verify_cron_auth(authorization)


def verify_webhook_signature(
    body: bytes,
    webhook_id: Optional[str],
    timestamp: Optional[str],
    signature_header: Optional[str],
    secret: Optional[str] = None,
    now: Optional[float] = None
) -> bool:
    """
    Verify a Replicate webhook signature.

    The signed content is "{webhook-id}.{webhook-timestamp}.{body}", signed
    with HMAC-SHA256 using the base64 key after the "whsec_" prefix. The
    signature header may carry several space-separated "v1,<sig>" entries.

    Returns True when no webhook secret is configured.
    """
    secret = settings.REPLICATE_WEBHOOK_SECRET if secret is None else secret
    if not secret:
        return True
    if not webhook_id or not timestamp or not signature_header:
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    if abs((now or time.time()) - sent_at) > WEBHOOK_TOLERANCE_SECONDS:
        return False

    encoded_key = secret[len("whsec_"):] if secret.startswith("whsec_") else secret
    try:
        key = base64.b64decode(encoded_key)
    except (binascii.Error, ValueError):
        logger.error("webhook_secret_invalid")
        return False

    signed_content = f"{webhook_id}.{timestamp}.".encode() + body
    expected = base64.b64encode(hmac.new(key, signed_content, hashlib.sha256).digest()).decode()

    for entry in signature_header.split():
        version, _, signature = entry.partition(",")
        if version == "v1" and hmac.compare_digest(signature, expected):
            return True
    return False
