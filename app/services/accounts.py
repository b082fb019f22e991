"""Admin view over master and reseller accounts."""

from datetime import datetime

from pydantic import BaseModel

from app.core.authorization import LIST_ACCOUNTS, Role, enforce
from app.storage.base import LedgerStore, bounded

LISTED_ROLES = (Role.MASTER, Role.RESELLER)


class AccountDetails(BaseModel):
    user_id: str
    full_name: str
    credit_balance: int
    role: str
    created_at: datetime | None = None


async def list_account_details(store: LedgerStore, actor_id: str) -> list[AccountDetails]:
    await enforce(store, actor_id, LIST_ACCOUNTS)
    profiles = await bounded(store.list_profiles())
    roles = {uid: Role.parse(r) for uid, r in (await bounded(store.list_roles())).items()}
    listed = [p for p in profiles if roles.get(p.user_id, Role.UNKNOWN) in LISTED_ROLES]
    balances = await bounded(store.get_balances([p.user_id for p in listed]))
    return [
        AccountDetails(
            user_id=p.user_id,
            full_name=p.full_name or "N/A",
            credit_balance=balances.get(p.user_id, 0),
            role=roles[p.user_id].value,
            created_at=p.created_at,
        )
        for p in listed
    ]
