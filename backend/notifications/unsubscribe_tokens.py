"""
Signed tokens for subscription management links in notification emails.

Tokens are stateless (no database storage needed): the subscription id is
signed with HMAC and the link expires after 90 days.

The pipeline only generates tokens. validate_manage_token() is the helper
for the web app that serves the manage page; nothing in the scheduler or
the consumers calls it.
"""

import hashlib
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

MANAGE_SALT = "manage-subscription"


def _get_serializer(secret_key: str | None) -> URLSafeTimedSerializer:
    """
    Get configured serializer for token generation and validation.

    Raises:
        ValueError: If no secret key is configured
    """
    if not secret_key:
        raise ValueError("UNSUBSCRIBE_SECRET_KEY must be set to sign subscription links.")

    return URLSafeTimedSerializer(
        secret_key,
        salt=MANAGE_SALT,
        signer_kwargs={"digest_method": hashlib.sha256},
    )


def generate_manage_token(subscription_id: str, secret_key: str | None) -> str:
    """
    Generate a signed, URL-safe token for a subscription.

    Args:
        subscription_id: Subscription identifier
        secret_key: Signing secret

    Returns:
        URL-safe token string (format: payload.timestamp.signature)

    Raises:
        ValueError: If secret_key is empty
    """
    serializer = _get_serializer(secret_key)
    return serializer.dumps(subscription_id)


def validate_manage_token(
    token: str, secret_key: str | None, max_age_days: int = 90
) -> Optional[str]:
    """
    Validate a token and extract the subscription id.

    Never raises - returns None for any invalid or expired token.

    Examples:
        >>> token = generate_manage_token("sub-123", "secret")
        >>> validate_manage_token(token, "secret")
        'sub-123'
        >>> validate_manage_token("invalid-token", "secret") is None
        True
    """
    try:
        serializer = _get_serializer(secret_key)
        max_age_seconds = max_age_days * 24 * 60 * 60
        return serializer.loads(token, max_age=max_age_seconds, salt=MANAGE_SALT)
    except (BadSignature, SignatureExpired, ValueError, TypeError):
        return None


def build_manage_url(
    base_url: str | None, subscription_id: str, secret_key: str | None
) -> str | None:
    """Management link for the email footer, or None when links are not configured."""
    if not base_url or not secret_key:
        return None
    token = generate_manage_token(subscription_id, secret_key)
    return f"{base_url.rstrip('/')}/subscriptions/manage?token={token}"
