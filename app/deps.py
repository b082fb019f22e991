"""Shared FastAPI dependencies."""

from fastapi import Request

from app.core.exceptions import UnauthorizedError
from app.core.logging import bind_account_id
from app.core.security import load_access_token, parse_bearer
from app.storage.base import LedgerStore, get_ledger_store


def get_store() -> LedgerStore:
    """Dependency: the configured ledger store (overridden in tests)."""
    return get_ledger_store()


async def get_current_account_id(request: Request) -> str:
    """Dependency: verify the bearer token and return the caller's account id."""
    if not request.headers.get("Authorization"):
        raise UnauthorizedError("No authorization header")
    token = parse_bearer(request.headers.get("Authorization"))
    if not token:
        raise UnauthorizedError("Invalid authorization header")
    payload = load_access_token(token)
    if not payload:
        raise UnauthorizedError("Invalid or expired token")
    account_id = payload.get("sub")
    if not account_id or not isinstance(account_id, str):
        raise UnauthorizedError("Invalid token")
    bind_account_id(account_id)
    return account_id
