"""
Service wiring. One Services container per application; routers pull the
pieces they need through FastAPI dependencies.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from paygate.core.config import settings
from paygate.core.crypto import load_static_key
from paygate.core.db import build_engine, build_sessionmaker
from paygate.core.storage import StorageProvider, get_storage
from paygate.core.store import KeyedStore, MemoryStore, SqlStore
from paygate.modules.access.grants import AccessGrantStore
from paygate.modules.access.service import AccessService
from paygate.modules.access.tokens import AccessTokenCodec
from paygate.modules.content.service import ContentVault
from paygate.modules.ledger.client import LedgerClient
from paygate.modules.ledger.verifier import LedgerPaymentVerifier
from paygate.modules.payments.paywall import PaywallService
from paygate.modules.payments.service import PaymentIntentRegistry
from paygate.modules.receipts.resolver import ReceiptResolver

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: KeyedStore
    storage: StorageProvider
    ledger: LedgerClient
    vault: ContentVault
    registry: PaymentIntentRegistry
    verifier: LedgerPaymentVerifier
    codec: AccessTokenCodec
    grants: AccessGrantStore
    access: AccessService
    paywall: PaywallService
    receipts: ReceiptResolver

    async def aclose(self) -> None:
        await self.ledger.aclose()


def build_services(store: KeyedStore, storage: StorageProvider, ledger: LedgerClient, locator_key: Optional[bytes] = None, clock=None) -> Services:
    clock_kwargs = {"clock": clock} if clock else {}
    vault = ContentVault(store, storage, **clock_kwargs)
    registry = PaymentIntentRegistry(store, **clock_kwargs)
    verifier = LedgerPaymentVerifier(ledger)
    codec = AccessTokenCodec(**clock_kwargs)
    grants = AccessGrantStore(store, **clock_kwargs)
    access = AccessService(codec, grants, **clock_kwargs)
    paywall = PaywallService(vault, registry, verifier, codec, grants, access)
    receipts = ReceiptResolver(ledger, static_key=locator_key)
    return Services(
        store=store,
        storage=storage,
        ledger=ledger,
        vault=vault,
        registry=registry,
        verifier=verifier,
        codec=codec,
        grants=grants,
        access=access,
        paywall=paywall,
        receipts=receipts,
    )


async def build_default_services() -> Services:
    if settings.DATABASE_URL:
        store = SqlStore(build_sessionmaker(build_engine(settings.DATABASE_URL)))
        await store.create_all()
    else:
        logger.warning("DATABASE_URL not set, using in-memory store (single process only)")
        store = MemoryStore()

    locator_key = load_static_key(settings.LOCATOR_SECRET_KEY) if settings.LOCATOR_SECRET_KEY else None
    if locator_key is None:
        logger.warning("LOCATOR_SECRET_KEY not set, on-ledger access route is disabled")

    return build_services(store, get_storage(), LedgerClient(), locator_key)


def get_services(request: Request) -> Services:
    return request.app.state.services

def get_vault(request: Request) -> ContentVault:
    return get_services(request).vault

def get_paywall(request: Request) -> PaywallService:
    return get_services(request).paywall

def get_access_service(request: Request) -> AccessService:
    return get_services(request).access

def get_receipts(request: Request) -> ReceiptResolver:
    return get_services(request).receipts
