from datetime import datetime

from app.storage.base import LedgerStore
from app.storage.records import ProfileRecord, TransactionRecord


class MemoryLedgerStore(LedgerStore):
    """In-process store for local runs and tests. State is lost on restart."""

    def __init__(self) -> None:
        self.balances: dict[str, int] = {}
        self.transactions: list[TransactionRecord] = []
        self.roles: dict[str, str] = {}
        self.profiles: dict[str, ProfileRecord] = {}

    # Seeding, done by the admin panel in the real deployment
    def set_role(self, account_id: str, role: str) -> None:
        self.roles[account_id] = role

    def set_profile(
        self,
        account_id: str,
        full_name: str | None = None,
        created_by: str | None = None,
    ) -> ProfileRecord:
        profile = ProfileRecord(
            user_id=account_id,
            full_name=full_name,
            created_by=created_by,
            created_at=datetime.utcnow(),
        )
        self.profiles[account_id] = profile
        return profile

    async def get_balance(self, account_id: str) -> int | None:
        return self.balances.get(account_id)

    async def compare_and_set_balance(self, account_id: str, expected: int | None, new_balance: int) -> bool:
        if self.balances.get(account_id) != expected:
            return False
        self.balances[account_id] = new_balance
        return True

    async def get_balances(self, account_ids: list[str]) -> dict[str, int]:
        return {a: self.balances[a] for a in account_ids if a in self.balances}

    async def append_transactions(self, records: list[TransactionRecord]) -> None:
        self.transactions.extend(records)

    async def existing_transaction_ids(self, record_ids: list[str]) -> set[str]:
        wanted = set(record_ids)
        return {t.id for t in self.transactions if t.id in wanted}

    async def list_transactions(self, account_id: str, limit: int, offset: int) -> list[TransactionRecord]:
        mine = [t for t in reversed(self.transactions) if t.user_id == account_id]
        return mine[offset:offset + limit]

    async def get_role(self, account_id: str) -> str | None:
        return self.roles.get(account_id)

    async def list_roles(self) -> dict[str, str]:
        return dict(self.roles)

    async def get_profile(self, account_id: str) -> ProfileRecord | None:
        return self.profiles.get(account_id)

    async def list_profiles(self) -> list[ProfileRecord]:
        return list(self.profiles.values())
