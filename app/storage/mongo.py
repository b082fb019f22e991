from datetime import datetime

from beanie.operators import In
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.exceptions import StoreError
from app.core.logging import get_logger
from app.models.credit_transaction import CreditTransaction
from app.models.profile import Profile
from app.models.user_credit import UserCredit
from app.models.user_role import UserRole
from app.storage.base import LedgerStore
from app.storage.records import ProfileRecord, TransactionRecord

log = get_logger(__name__)


def _store_error(op: str, exc: PyMongoError) -> StoreError:
    log.error("store_error", op=op, error=str(exc))
    return StoreError(f"Store {op} failed: {exc}", details={"op": op})


def _profile_record(doc: Profile) -> ProfileRecord:
    return ProfileRecord(
        user_id=doc.user_id,
        full_name=doc.full_name,
        created_by=doc.created_by,
        created_at=doc.created_at,
    )


class MongoLedgerStore(LedgerStore):
    """Beanie-backed store. Requires init_db() to have run."""

    async def get_balance(self, account_id: str) -> int | None:
        try:
            doc = await UserCredit.find_one(UserCredit.user_id == account_id)
        except PyMongoError as e:
            raise _store_error("balance_read", e) from e
        return doc.balance if doc else None

    async def compare_and_set_balance(self, account_id: str, expected: int | None, new_balance: int) -> bool:
        now = datetime.utcnow()
        try:
            if expected is None:
                # unique index on user_id rejects a concurrent first write
                await UserCredit(user_id=account_id, balance=new_balance, created_at=now, updated_at=now).insert()
                return True
            result = await UserCredit.get_motor_collection().update_one(
                {"user_id": account_id, "balance": expected},
                {"$set": {"balance": new_balance, "updated_at": now}},
            )
            return result.matched_count == 1
        except DuplicateKeyError:
            return False
        except PyMongoError as e:
            raise _store_error("balance_write", e) from e

    async def get_balances(self, account_ids: list[str]) -> dict[str, int]:
        if not account_ids:
            return {}
        try:
            docs = await UserCredit.find(In(UserCredit.user_id, account_ids)).to_list()
        except PyMongoError as e:
            raise _store_error("balance_read", e) from e
        return {d.user_id: d.balance for d in docs}

    async def append_transactions(self, records: list[TransactionRecord]) -> None:
        docs = [CreditTransaction(record_id=r.id, **r.model_dump(exclude={"id"})) for r in records]
        try:
            await CreditTransaction.insert_many(docs)
        except PyMongoError as e:
            raise _store_error("transaction_insert", e) from e

    async def existing_transaction_ids(self, record_ids: list[str]) -> set[str]:
        if not record_ids:
            return set()
        try:
            docs = await CreditTransaction.find(In(CreditTransaction.record_id, record_ids)).to_list()
        except PyMongoError as e:
            raise _store_error("transaction_read", e) from e
        return {d.record_id for d in docs}

    async def list_transactions(self, account_id: str, limit: int, offset: int) -> list[TransactionRecord]:
        try:
            docs = (
                await CreditTransaction.find(CreditTransaction.user_id == account_id)
                .sort(-CreditTransaction.created_at)
                .skip(offset)
                .limit(limit)
                .to_list()
            )
        except PyMongoError as e:
            raise _store_error("transaction_read", e) from e
        return [
            TransactionRecord(id=d.record_id, **d.model_dump(exclude={"id", "revision_id", "record_id"}))
            for d in docs
        ]

    async def get_role(self, account_id: str) -> str | None:
        try:
            doc = await UserRole.find_one(UserRole.user_id == account_id)
        except PyMongoError as e:
            raise _store_error("role_read", e) from e
        return doc.role if doc else None

    async def list_roles(self) -> dict[str, str]:
        try:
            docs = await UserRole.find_all().to_list()
        except PyMongoError as e:
            raise _store_error("role_read", e) from e
        return {d.user_id: d.role for d in docs}

    async def get_profile(self, account_id: str) -> ProfileRecord | None:
        try:
            doc = await Profile.find_one(Profile.user_id == account_id)
        except PyMongoError as e:
            raise _store_error("profile_read", e) from e
        return _profile_record(doc) if doc else None

    async def list_profiles(self) -> list[ProfileRecord]:
        try:
            docs = await Profile.find_all().to_list()
        except PyMongoError as e:
            raise _store_error("profile_read", e) from e
        return [_profile_record(d) for d in docs]
