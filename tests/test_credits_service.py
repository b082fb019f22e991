"""Credit ledger service against the in-memory store."""

import asyncio

import pytest

from app.core.config import get_settings
from app.core.exceptions import (
    ConflictError,
    FailedPreconditionError,
    ForbiddenError,
    InvalidArgumentError,
    StoreError,
    StoreTimeoutError,
)
from app.services import credits as credits_service
from app.storage.memory import MemoryLedgerStore

from tests.conftest import ADMIN_ID, CLIENT_ID, MASTER_ID

pytestmark = pytest.mark.asyncio

TARGET = "target-1"


async def test_get_balance_empty(store):
    assert await credits_service.get_balance(store, TARGET) == 0


async def test_add_from_zero_creates_balance_and_one_record(store):
    result = await credits_service.adjust_credit(store, ADMIN_ID, TARGET, 50)
    assert result.new_balance == 50
    assert store.balances[TARGET] == 50
    assert len(store.transactions) == 1
    record = store.transactions[0]
    assert record.amount == 50
    assert record.balance_after == 50
    assert record.transaction_type == "credit_added"
    assert record.performed_by == ADMIN_ID
    assert record.description == "Admin added 50 credit(s)"


@pytest.mark.parametrize("start,delta", [(0, 1), (10, -10), (100, -1), (5, 995), (7, -3)])
async def test_valid_deltas_update_stored_balance(store, start, delta):
    store.balances[TARGET] = start
    result = await credits_service.adjust_credit(store, ADMIN_ID, TARGET, delta)
    assert result.new_balance == start + delta
    assert store.balances[TARGET] == start + delta
    assert [t.balance_after for t in store.transactions] == [start + delta]


async def test_removal_is_recorded_as_removal(store):
    store.balances[TARGET] = 20
    await credits_service.adjust_credit(store, ADMIN_ID, TARGET, -5)
    record = store.transactions[-1]
    assert record.transaction_type == "credit_removed"
    assert record.description == "Admin removed 5 credit(s)"
    assert record.amount == -5


async def test_negative_result_is_rejected_without_mutation(store):
    store.balances[TARGET] = 100
    with pytest.raises(FailedPreconditionError) as exc:
        await credits_service.adjust_credit(store, ADMIN_ID, TARGET, -150)
    assert "100" in exc.value.message
    assert exc.value.details == {"current_balance": 100}
    assert store.balances[TARGET] == 100
    assert store.transactions == []


async def test_removing_from_absent_balance_is_rejected(store):
    with pytest.raises(FailedPreconditionError):
        await credits_service.adjust_credit(store, ADMIN_ID, TARGET, -1)
    assert TARGET not in store.balances


@pytest.mark.parametrize("actor", [ADMIN_ID, MASTER_ID, CLIENT_ID, "stranger"])
async def test_zero_amount_is_invalid_for_every_role(store, actor):
    with pytest.raises(InvalidArgumentError):
        await credits_service.adjust_credit(store, actor, TARGET, 0)


async def test_missing_fields_are_invalid(store):
    with pytest.raises(InvalidArgumentError):
        await credits_service.adjust_credit(store, ADMIN_ID, TARGET, None)
    with pytest.raises(InvalidArgumentError):
        await credits_service.adjust_credit(store, ADMIN_ID, "", 10)


@pytest.mark.parametrize("role", ["master", "reseller", "client", "unknown", None])
@pytest.mark.parametrize("amount", [10, -10, -10_000])
async def test_non_admin_is_forbidden(store, role, amount):
    actor = "actor-x"
    if role is not None:
        store.set_role(actor, role)
    store.balances[TARGET] = 20
    with pytest.raises(ForbiddenError):
        await credits_service.adjust_credit(store, actor, TARGET, amount)
    assert store.balances[TARGET] == 20
    assert store.transactions == []


async def test_display_name_is_returned(store):
    result = await credits_service.adjust_credit(store, ADMIN_ID, CLIENT_ID, 5)
    assert result.target_display_name == "Cleo Client"


async def test_missing_profile_degrades_to_none(store):
    result = await credits_service.adjust_credit(store, ADMIN_ID, TARGET, 5)
    assert result.target_display_name is None


class ProfileFailingStore(MemoryLedgerStore):
    async def get_profile(self, account_id):
        raise StoreError("profiles unavailable")


async def test_profile_lookup_failure_does_not_fail_adjustment():
    s = ProfileFailingStore()
    s.set_role(ADMIN_ID, "admin")
    result = await credits_service.adjust_credit(s, ADMIN_ID, TARGET, 5)
    assert result.new_balance == 5
    assert result.target_display_name is None


async def test_concurrent_adjustments_do_not_lose_updates(store):
    await asyncio.gather(
        credits_service.adjust_credit(store, ADMIN_ID, TARGET, 10),
        credits_service.adjust_credit(store, ADMIN_ID, TARGET, -5),
    )
    assert store.balances[TARGET] == 5
    assert [t.balance_after for t in store.transactions] == [10, 5]


class YieldingStore(MemoryLedgerStore):
    """Yields to the event loop between read and write, exposing read-modify-write races."""

    async def get_balance(self, account_id):
        balance = await super().get_balance(account_id)
        await asyncio.sleep(0)
        return balance


async def test_many_concurrent_adjustments_sum_exactly():
    s = YieldingStore()
    s.set_role(ADMIN_ID, "admin")
    await asyncio.gather(*(credits_service.adjust_credit(s, ADMIN_ID, TARGET, 1) for _ in range(50)))
    assert s.balances[TARGET] == 50
    assert len(s.transactions) == 50
    assert sorted(t.balance_after for t in s.transactions) == list(range(1, 51))


class OutsideWriterStore(MemoryLedgerStore):
    """Another process bumps the balance right before our first write."""

    def __init__(self, bump: int):
        super().__init__()
        self.bump = bump
        self.cas_calls = 0

    async def compare_and_set_balance(self, account_id, expected, new_balance):
        self.cas_calls += 1
        if self.cas_calls == 1:
            self.balances[account_id] = (self.balances.get(account_id) or 0) + self.bump
        return await super().compare_and_set_balance(account_id, expected, new_balance)


async def test_write_conflict_is_retried_without_losing_outside_write():
    s = OutsideWriterStore(bump=30)
    s.set_role(ADMIN_ID, "admin")
    s.balances[TARGET] = 100
    result = await credits_service.adjust_credit(s, ADMIN_ID, TARGET, 10)
    assert result.new_balance == 140
    assert s.balances[TARGET] == 140
    assert s.cas_calls == 2


class AlwaysConflictingStore(MemoryLedgerStore):
    async def compare_and_set_balance(self, account_id, expected, new_balance):
        return False


async def test_conflict_after_max_attempts(monkeypatch):
    monkeypatch.setattr(get_settings(), "ledger_cas_max_attempts", 2)
    s = AlwaysConflictingStore()
    s.set_role(ADMIN_ID, "admin")
    with pytest.raises(ConflictError) as exc:
        await credits_service.adjust_credit(s, ADMIN_ID, TARGET, 10)
    assert exc.value.details["attempts"] == 2
    assert s.transactions == []


class AppendFailingStore(MemoryLedgerStore):
    async def append_transactions(self, records):
        raise StoreError("insert failed")


async def test_failed_record_append_reverts_balance():
    s = AppendFailingStore()
    s.set_role(ADMIN_ID, "admin")
    s.balances[TARGET] = 40
    with pytest.raises(StoreError):
        await credits_service.adjust_credit(s, ADMIN_ID, TARGET, 10)
    assert s.balances[TARGET] == 40


class SlowStore(MemoryLedgerStore):
    async def get_balance(self, account_id):
        await asyncio.sleep(1)
        return await super().get_balance(account_id)


async def test_slow_store_times_out(monkeypatch):
    monkeypatch.setattr(get_settings(), "store_timeout_seconds", 0.05)
    s = SlowStore()
    s.set_role(ADMIN_ID, "admin")
    with pytest.raises(StoreTimeoutError) as exc:
        await credits_service.adjust_credit(s, ADMIN_ID, TARGET, 10)
    assert exc.value.status_code == 504
    assert TARGET not in s.balances


async def test_list_transactions_newest_first(store):
    for amount in (10, 20, -5):
        await credits_service.adjust_credit(store, ADMIN_ID, TARGET, amount)
    items = await credits_service.list_transactions(store, TARGET, limit=2)
    assert [t.amount for t in items] == [-5, 20]
    rest = await credits_service.list_transactions(store, TARGET, limit=2, offset=2)
    assert [t.amount for t in rest] == [10]


class LandsThenTimesOutStore(MemoryLedgerStore):
    """The insert reaches the store, but the reply comes back too late."""

    async def append_transactions(self, records):
        await super().append_transactions(records)
        await asyncio.sleep(1)


async def test_append_that_landed_before_timeout_keeps_balance(monkeypatch):
    monkeypatch.setattr(get_settings(), "store_timeout_seconds", 0.05)
    s = LandsThenTimesOutStore()
    s.set_role(ADMIN_ID, "admin")
    s.balances[TARGET] = 40
    result = await credits_service.adjust_credit(s, ADMIN_ID, TARGET, 10)
    assert result.new_balance == 50
    assert s.balances[TARGET] == 50
    assert [t.balance_after for t in s.transactions] == [50]


class UnanswerableStore(AppendFailingStore):
    async def existing_transaction_ids(self, record_ids):
        raise StoreError("read failed")


async def test_unknown_append_outcome_does_not_revert():
    s = UnanswerableStore()
    s.set_role(ADMIN_ID, "admin")
    s.balances[TARGET] = 40
    with pytest.raises(StoreError) as exc:
        await credits_service.adjust_credit(s, ADMIN_ID, TARGET, 10)
    assert exc.value.message == "insert failed"
    assert s.balances[TARGET] == 50


async def test_records_carry_ids_assigned_before_insert(store):
    await credits_service.adjust_credit(store, ADMIN_ID, TARGET, 3)
    record = store.transactions[0]
    assert record.id
    assert await store.existing_transaction_ids([record.id, "other"]) == {record.id}


@pytest.mark.parametrize("amount", [True, False, 1.0, "5"])
async def test_non_integer_amount_is_invalid(store, amount):
    with pytest.raises(InvalidArgumentError):
        await credits_service.adjust_credit(store, ADMIN_ID, TARGET, amount)
    assert store.transactions == []


@pytest.mark.parametrize("amount", [10**30, -(10**30), credits_service.MAX_CREDITS + 1])
async def test_out_of_range_amount_is_invalid(store, amount):
    with pytest.raises(InvalidArgumentError):
        await credits_service.adjust_credit(store, ADMIN_ID, TARGET, amount)
    assert TARGET not in store.balances


async def test_balance_cannot_exceed_storable_maximum(store):
    store.balances[TARGET] = credits_service.MAX_CREDITS - 1
    with pytest.raises(InvalidArgumentError):
        await credits_service.adjust_credit(store, ADMIN_ID, TARGET, 5)
    assert store.balances[TARGET] == credits_service.MAX_CREDITS - 1
    assert store.transactions == []
