import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-process store; no MongoDB needed
os.environ.setdefault("LEDGER_BACKEND", "memory")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("STORE_TIMEOUT_SECONDS", "0.5")

ADMIN_ID = "admin-1"
MASTER_ID = "master-1"
CLIENT_ID = "client-1"


@pytest.fixture
def store():
    from app.storage.memory import MemoryLedgerStore
    s = MemoryLedgerStore()
    s.set_role(ADMIN_ID, "admin")
    s.set_profile(ADMIN_ID, full_name="Ada Admin")
    s.set_role(MASTER_ID, "master")
    s.set_profile(MASTER_ID, full_name="Max Master", created_by=ADMIN_ID)
    s.set_role(CLIENT_ID, "client")
    s.set_profile(CLIENT_ID, full_name="Cleo Client", created_by=MASTER_ID)
    return s


def auth_headers(account_id: str) -> dict[str, str]:
    from app.core.security import create_access_token
    return {"Authorization": f"Bearer {create_access_token(account_id)}"}


@pytest_asyncio.fixture
async def client(store) -> AsyncGenerator[AsyncClient, None]:
    from app.deps import get_store
    from app.main import app
    app.dependency_overrides[get_store] = lambda: store
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
