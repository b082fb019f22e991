import asyncio
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Awaitable, TypeVar

from app.core.config import get_settings
from app.core.exceptions import StoreTimeoutError
from app.storage.records import ProfileRecord, TransactionRecord

T = TypeVar("T")


class LedgerStore(ABC):
    """Balances, the transaction log, roles and profiles.

    Implementations raise StoreError when the backend fails.
    """

    @abstractmethod
    async def get_balance(self, account_id: str) -> int | None:
        """Current balance, or None when the account has no balance row."""
        ...

    @abstractmethod
    async def compare_and_set_balance(self, account_id: str, expected: int | None, new_balance: int) -> bool:
        """Write new_balance only if the stored balance still equals expected.

        expected=None means "no row yet": the row is created. Returns False on conflict.
        """
        ...

    @abstractmethod
    async def get_balances(self, account_ids: list[str]) -> dict[str, int]:
        ...

    @abstractmethod
    async def append_transactions(self, records: list[TransactionRecord]) -> None:
        ...

    @abstractmethod
    async def existing_transaction_ids(self, record_ids: list[str]) -> set[str]:
        """Which of record_ids are stored. Used to find out what a failed append wrote."""
        ...

    @abstractmethod
    async def list_transactions(self, account_id: str, limit: int, offset: int) -> list[TransactionRecord]:
        """Newest first."""
        ...

    @abstractmethod
    async def get_role(self, account_id: str) -> str | None:
        ...

    @abstractmethod
    async def list_roles(self) -> dict[str, str]:
        ...

    @abstractmethod
    async def get_profile(self, account_id: str) -> ProfileRecord | None:
        ...

    @abstractmethod
    async def list_profiles(self) -> list[ProfileRecord]:
        ...


async def bounded(awaitable: Awaitable[T], timeout: float | None = None) -> T:
    """Await a store call, raising StoreTimeoutError after STORE_TIMEOUT_SECONDS."""
    if timeout is None:
        timeout = get_settings().store_timeout_seconds
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoreTimeoutError(details={"timeout_seconds": timeout}) from e


@lru_cache
def get_ledger_store() -> LedgerStore:
    settings = get_settings()
    if settings.ledger_backend == "memory":
        from app.storage.memory import MemoryLedgerStore
        return MemoryLedgerStore()
    from app.storage.mongo import MongoLedgerStore
    return MongoLedgerStore()
