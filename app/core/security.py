import hashlib
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings


def get_token_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="credit-ledger-access",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_access_token(account_id: str) -> str:
    """Sign a bearer token for account_id. Used by the identity provider and tests."""
    serializer = get_token_serializer()
    return serializer.dumps({"sub": account_id})


def load_access_token(token: str) -> dict[str, Any] | None:
    settings = get_settings()
    serializer = get_token_serializer()
    try:
        payload = serializer.loads(token, max_age=settings.token_max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None
    return payload if isinstance(payload, dict) else None


def parse_bearer(header_value: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' header value."""
    if not header_value:
        return None
    scheme, _, token = header_value.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
