"""Shared fixtures: frozen clock, scripted ledger, in-memory services."""
import asyncio
import base64
from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from paygate.core.deps import build_services
from paygate.core.storage import LocalStorage
from paygate.core.store import MemoryStore
from paygate.main import create_app

PAYOUT = "CreatorWa11et1111111111111111111111111111111"
BUYER = "BuyerWa11et22222222222222222222222222222222"
LOCATOR_KEY = bytes(range(32))


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedger:
    """Stands in for LedgerClient: scripted transactions and accounts, counts calls."""

    def __init__(self):
        self.transactions: Dict[str, Optional[Dict[str, Any]]] = {}
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.transaction_calls = 0
        self.delay = 0.0
        self.fail_with: Optional[Exception] = None

    async def get_transaction(self, signature: str):
        self.transaction_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise self.fail_with
        return self.transactions.get(signature)

    async def get_account(self, address: str):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.accounts.get(address)

    async def aclose(self):
        pass


def native_transfer(recipient: str, lamports: int, payer: str = BUYER, err=None) -> Dict[str, Any]:
    return {
        "transaction": {"message": {"accountKeys": [payer, recipient, "11111111111111111111111111111111"]}},
        "meta": {
            "err": err,
            "preBalances": [5_000_000_000, 1_000, 1],
            "postBalances": [5_000_000_000 - lamports - 5_000, 1_000 + lamports, 1],
            "preTokenBalances": [],
            "postTokenBalances": [],
        },
    }


def token_transfer(owner: str, mint: str, pre: Optional[int], post: int) -> Dict[str, Any]:
    def entry(amount):
        return {"accountIndex": 1, "mint": mint, "owner": owner, "uiTokenAmount": {"amount": str(amount), "decimals": 6}}

    return {
        "transaction": {"message": {"accountKeys": [BUYER, owner]}},
        "meta": {
            "err": None,
            "preBalances": [0, 0],
            "postBalances": [0, 0],
            "preTokenBalances": [entry(pre)] if pre is not None else [],
            "postTokenBalances": [entry(post)],
        },
    }


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "objects")


@pytest.fixture
def services(store, storage, ledger, clock):
    return build_services(store, storage, ledger, locator_key=LOCATOR_KEY, clock=clock)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as c:
        yield c


@pytest.fixture
def upload_body():
    def make(data: bytes = b"the protected file", price: int = 1_000_000, **extra):
        body = {
            "creatorId": "creator-1",
            "walletAddress": PAYOUT,
            "title": "Field notes",
            "price": price,
            "assetType": "SOL",
            "fileName": "notes.txt",
            "fileType": "text/plain",
            "fileData": b64(data),
        }
        body.update(extra)
        return body

    return make
