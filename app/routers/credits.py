from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, BaseModel, Field, StrictInt

from app.core.pagination import Page
from app.deps import get_current_account_id, get_store
from app.services import credits as credits_service
from app.storage.base import LedgerStore
from app.storage.records import TransactionRecord

router = APIRouter()


class CreditChangeRequest(BaseModel):
    target_user_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("targetUserId", "targetAccountId", "target_user_id"),
    )
    amount: StrictInt | None = None


@router.post("/adjust")
async def credits_adjust(
    body: CreditChangeRequest,
    account_id: str = Depends(get_current_account_id),
    store: LedgerStore = Depends(get_store),
):
    """Admin: add (amount > 0) or remove (amount < 0) credits on an account."""
    result = await credits_service.adjust_credit(store, account_id, body.target_user_id, body.amount)
    return {
        "success": True,
        "newBalance": result.new_balance,
        "targetUser": result.target_display_name,
    }


@router.post("/transfer")
async def credits_transfer(
    body: CreditChangeRequest,
    account_id: str = Depends(get_current_account_id),
    store: LedgerStore = Depends(get_store),
):
    """Master: transfer credits to a master created by the caller."""
    result = await credits_service.transfer_credits(store, account_id, body.target_user_id, body.amount)
    return {
        "success": True,
        "message": result.message,
        "newInitiatorBalance": result.new_initiator_balance,
        "newTargetBalance": result.new_target_balance,
    }


@router.get("/balance")
async def credits_balance(
    account_id: str = Depends(get_current_account_id),
    store: LedgerStore = Depends(get_store),
):
    """Return current credit balance."""
    balance = await credits_service.get_balance(store, account_id)
    return {"balance": balance}


@router.get("/transactions", response_model=Page[TransactionRecord])
async def credits_transactions(
    account_id: str = Depends(get_current_account_id),
    store: LedgerStore = Depends(get_store),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return transaction records for the caller (newest first)."""
    items = await credits_service.list_transactions(store, account_id, limit, offset)
    return Page[TransactionRecord](items=items, limit=limit, offset=offset)
