from fastapi import APIRouter, Depends

from app.deps import get_current_account_id, get_store
from app.services import accounts as accounts_service
from app.storage.base import LedgerStore

router = APIRouter()


@router.get("/accounts")
async def admin_accounts(
    account_id: str = Depends(get_current_account_id),
    store: LedgerStore = Depends(get_store),
):
    """Admin: master and reseller accounts with their credit balances."""
    details = await accounts_service.list_account_details(store, account_id)
    return {"success": True, "masters": [d.model_dump(mode="json") for d in details]}
