"""Credit balances and the append-only transaction log.

Balance writes are serialized per account by ``account_locks`` inside this
process and made conditional on the value read (compare-and-set), so writers
in other processes cannot cause a lost update either.

Records carry ids assigned here, so after a failed append the service can
ask the store what actually landed and keep every account's newest
``balance_after`` equal to its stored balance.
"""

from dataclasses import dataclass

from app.core.authorization import ADJUST_CREDITS, TRANSFER_CREDITS, Role, enforce, role_of
from app.core.config import get_settings
from app.core.exceptions import (
    AppError,
    ConflictError,
    FailedPreconditionError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    StoreError,
)
from app.core.logging import get_logger
from app.core.pagination import paginate
from app.services.account_locks import account_locks
from app.storage.base import LedgerStore, bounded
from app.storage.records import TransactionRecord

log = get_logger(__name__)

CREDIT_ADDED = "credit_added"
CREDIT_REMOVED = "credit_removed"
CREDIT_SPENT = "credit_spent"

# balances and amounts are stored as 64-bit integers
MAX_CREDITS = 2**63 - 1

NEGATIVE_BALANCE_MESSAGE = "Operation would result in negative balance. Current balance: {current}"
INSUFFICIENT_CREDITS_MESSAGE = "Insufficient credits. Current balance: {current}"


@dataclass(slots=True)
class AdjustResult:
    new_balance: int
    target_display_name: str | None


@dataclass(slots=True)
class TransferResult:
    message: str
    new_initiator_balance: int
    new_target_balance: int


# (account_id, balance before or None if no row, balance written)
BalanceWrite = tuple[str, int | None, int]


def _is_amount(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_amount_range(amount: int) -> None:
    if abs(amount) > MAX_CREDITS:
        raise InvalidArgumentError(
            "Amount is out of range",
            details={"max_abs_amount": MAX_CREDITS},
        )


async def get_balance(store: LedgerStore, account_id: str) -> int:
    """Return current balance for account (0 if no record)."""
    balance = await bounded(store.get_balance(account_id))
    return balance or 0


async def list_transactions(
    store: LedgerStore, account_id: str, limit: int = 50, offset: int = 0
) -> list[TransactionRecord]:
    limit, offset = paginate(limit, offset)
    return await bounded(store.list_transactions(account_id, limit, offset))


async def _apply_delta(
    store: LedgerStore, account_id: str, delta: int, shortfall_message: str
) -> BalanceWrite:
    """Read, check the bounds, compare-and-set. Retries only on write conflicts."""
    attempts = max(1, get_settings().ledger_cas_max_attempts)
    for attempt in range(1, attempts + 1):
        stored = await bounded(store.get_balance(account_id))
        current = stored or 0
        new_balance = current + delta
        if new_balance < 0:
            raise FailedPreconditionError(
                shortfall_message.format(current=current),
                details={"current_balance": current},
            )
        if new_balance > MAX_CREDITS:
            raise InvalidArgumentError(
                "Operation would exceed the maximum balance",
                details={"current_balance": current, "max_balance": MAX_CREDITS},
            )
        if await bounded(store.compare_and_set_balance(account_id, stored, new_balance)):
            return account_id, stored, new_balance
        log.warning("balance_write_conflict", target_id=account_id, attempt=attempt)
    raise ConflictError(
        "Balance changed concurrently, try again",
        details={"account_id": account_id, "attempts": attempts},
    )


async def _revert(store: LedgerStore, writes: list[BalanceWrite]) -> None:
    for account_id, previous, written in reversed(writes):
        try:
            reverted = await bounded(store.compare_and_set_balance(account_id, written, previous or 0))
        except StoreError as e:
            log.error("balance_revert_failed", target_id=account_id, balance=written, error=e.message)
            continue
        if not reverted:
            log.error("balance_revert_failed", target_id=account_id, balance=written, error="conflict")


async def _unwritten(
    store: LedgerStore, records: list[TransactionRecord], append_error: StoreError
) -> list[TransactionRecord]:
    """Records of a failed append that are not in the store.

    If the store cannot answer, nothing is reverted and append_error is raised.
    """
    try:
        landed = await bounded(store.existing_transaction_ids([r.id for r in records]))
    except StoreError as e:
        log.error(
            "ledger_reconcile_failed",
            record_ids=[r.id for r in records],
            append_error=append_error.message,
            error=e.message,
        )
        raise append_error from e
    return [r for r in records if r.id not in landed]


async def _append_or_revert(
    store: LedgerStore, records: list[TransactionRecord], writes: list[BalanceWrite]
) -> None:
    """Append records for writes; on failure leave balances and records in agreement.

    A write whose record landed is kept. A partial append is completed once;
    writes whose records are still missing after that are reverted and the
    append error is raised.
    """
    try:
        await bounded(store.append_transactions(records))
        return
    except StoreError as e:
        append_error = e

    missing = await _unwritten(store, records, append_error)
    if missing and len(missing) < len(records):
        try:
            await bounded(store.append_transactions(missing))
        except StoreError as e:
            log.error("transaction_append_incomplete", record_ids=[r.id for r in missing], error=e.message)
        missing = await _unwritten(store, missing, append_error)

    if not missing:
        log.warning("transaction_append_recovered", record_ids=[r.id for r in records], error=append_error.message)
        return

    unrecorded = {r.user_id for r in missing}
    await _revert(store, [w for w in writes if w[0] in unrecorded])
    raise append_error


async def _display_name(store: LedgerStore, account_id: str) -> str | None:
    """Best effort: failures are logged and degrade to None."""
    try:
        profile = await bounded(store.get_profile(account_id))
    except StoreError as e:
        log.warning("display_name_lookup_failed", target_id=account_id, reason=e.code)
        return None
    if profile is None:
        log.info("display_name_not_found", target_id=account_id)
        return None
    return profile.full_name or None


async def adjust_credit(
    store: LedgerStore,
    actor_id: str,
    target_account_id: str | None,
    amount: int | None,
) -> AdjustResult:
    """Add (amount > 0) or remove (amount < 0) credits on an account. Admin only."""
    if not target_account_id or not _is_amount(amount):
        raise InvalidArgumentError("Missing or invalid required fields")
    if amount == 0:
        raise InvalidArgumentError("Amount cannot be zero")
    _check_amount_range(amount)
    await enforce(store, actor_id, ADJUST_CREDITS)

    async with account_locks.hold(target_account_id):
        try:
            write = await _apply_delta(store, target_account_id, amount, NEGATIVE_BALANCE_MESSAGE)
        except FailedPreconditionError:
            log.info("credit_adjust_rejected", target_id=target_account_id, amount=amount)
            raise
        new_balance = write[2]
        record = TransactionRecord(
            user_id=target_account_id,
            transaction_type=CREDIT_ADDED if amount > 0 else CREDIT_REMOVED,
            amount=amount,
            balance_after=new_balance,
            description=(
                f"Admin added {amount} credit(s)" if amount > 0 else f"Admin removed {abs(amount)} credit(s)"
            ),
            performed_by=actor_id,
        )
        await _append_or_revert(store, [record], [write])

    log.info("credit_adjusted", target_id=target_account_id, amount=amount, balance_after=new_balance)
    return AdjustResult(
        new_balance=new_balance,
        target_display_name=await _display_name(store, target_account_id),
    )


async def transfer_credits(
    store: LedgerStore,
    actor_id: str,
    target_account_id: str | None,
    amount: int | None,
) -> TransferResult:
    """Move credits from a master to a master it created."""
    if not target_account_id or not _is_amount(amount) or amount <= 0:
        raise InvalidArgumentError(
            "Missing or invalid required fields: targetUserId and a positive amount are required."
        )
    _check_amount_range(amount)
    if target_account_id == actor_id:
        raise InvalidArgumentError("Cannot transfer credits to yourself")
    await enforce(store, actor_id, TRANSFER_CREDITS)

    target_profile = await bounded(store.get_profile(target_account_id))
    if target_profile is None:
        raise NotFoundError("Target user not found")
    if target_profile.created_by != actor_id:
        raise ForbiddenError("You can only transfer credits to masters you created")
    if await role_of(store, target_account_id) != Role.MASTER:
        raise ForbiddenError("You can only transfer credits to other master users")
    target_label = target_profile.full_name or target_account_id
    initiator_label = await _display_name(store, actor_id) or actor_id

    async with account_locks.hold(actor_id, target_account_id):
        debit = await _apply_delta(store, actor_id, -amount, INSUFFICIENT_CREDITS_MESSAGE)
        try:
            credit = await _apply_delta(store, target_account_id, amount, NEGATIVE_BALANCE_MESSAGE)
        except AppError:
            await _revert(store, [debit])
            raise
        records = [
            TransactionRecord(
                user_id=actor_id,
                transaction_type=CREDIT_SPENT,
                amount=-amount,
                balance_after=debit[2],
                description=f"Transfer to master {target_label}",
                related_user_id=target_account_id,
                performed_by=actor_id,
            ),
            TransactionRecord(
                user_id=target_account_id,
                transaction_type=CREDIT_ADDED,
                amount=amount,
                balance_after=credit[2],
                description=f"Received from master {initiator_label}",
                related_user_id=actor_id,
                performed_by=actor_id,
            ),
        ]
        await _append_or_revert(store, records, [debit, credit])

    log.info("credit_transfer_completed", target_id=target_account_id, amount=amount)
    return TransferResult(
        message=f"Transferred {amount} credits to {target_label}.",
        new_initiator_balance=debit[2],
        new_target_balance=credit[2],
    )
