"""
Off-ledger unlock flow: payment intent -> ledger verification -> token + grant.

Confirmations for one intent are serialized in-process by a per-intent lock;
the state change itself is a store compare-and-swap so separate processes
sharing a database still agree on a single winner.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import quote

from paygate.core.config import settings
from paygate.core.errors import (
    BuyerMismatch,
    Expired,
    GrantMismatch,
    InsufficientPayment,
    IntentExpired,
    NotFound,
    PaygateError,
    PaymentVerificationFailed,
    StorageFailure,
    ValidationError,
)
from paygate.modules.access.grants import AccessGrantStore
from paygate.modules.access.service import AccessService
from paygate.modules.access.tokens import AccessTokenCodec
from paygate.modules.content.models import ContentRecord
from paygate.modules.content.service import ContentVault
from paygate.modules.ledger.verifier import LedgerPaymentVerifier
from paygate.modules.payments.models import IntentStatus, PaymentIntent
from paygate.modules.payments.schemas import AccessResponse
from paygate.modules.payments.service import PaymentIntentRegistry

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class UnlockDecision:
    content: ContentRecord
    intent: Optional[PaymentIntent] = None
    access: Optional[AccessResponse] = None


class PaywallService:

    def __init__(
        self,
        vault: ContentVault,
        registry: PaymentIntentRegistry,
        verifier: LedgerPaymentVerifier,
        codec: AccessTokenCodec,
        grants: AccessGrantStore,
        access: AccessService,
        payment_ttl_seconds: Optional[int] = None,
        access_ttl_seconds: Optional[int] = None,
        api_base: Optional[str] = None,
    ):
        self.vault = vault
        self.registry = registry
        self.verifier = verifier
        self.codec = codec
        self.grants = grants
        self.access = access
        self.payment_ttl_seconds = payment_ttl_seconds or settings.payment_ttl_seconds
        self.access_ttl_seconds = access_ttl_seconds or settings.ACCESS_TOKEN_TTL_SECONDS
        self.api_base = (api_base or settings.PUBLIC_API_BASE).rstrip("/")
        self.locks = KeyedLocks()

    def _settlement_url(self, settlement_ref: Optional[str]) -> Optional[str]:
        if not settlement_ref:
            return None
        return f"https://explorer.solana.com/tx/{settlement_ref}?cluster={settings.LEDGER_CLUSTER}"

    def _response(self, intent: PaymentIntent, replayed: bool = False) -> AccessResponse:
        return AccessResponse(
            accessToken=intent.accessToken,
            downloadUrl=intent.downloadUrl,
            expiresAt=intent.accessExpiresAt,
            settlementRef=intent.settlementRef,
            settlementUrl=self._settlement_url(intent.settlementRef),
            replayed=replayed,
        )

    async def request_unlock(self, content_id: str, buyer_id: Optional[str]) -> UnlockDecision:
        content = await self.vault.get_content(content_id)
        if not buyer_id:
            raise ValidationError("buyer is required to start a payment intent")

        confirmed = await self.registry.find_confirmed(content_id, buyer_id)
        if confirmed and confirmed.accessToken:
            try:
                await self.access.redeem(confirmed.accessToken, content_id)
                return UnlockDecision(content=content, access=self._response(confirmed, replayed=True))
            except (Expired, GrantMismatch):
                # Purchase is spent; a new unlock needs a new payment
                pass

        intent = await self.registry.create_intent(
            content_id=content_id,
            buyer_id=buyer_id,
            amount=content.price,
            asset=content.assetType,
            payout_address=content.creatorWalletAddress,
            ttl_seconds=self.payment_ttl_seconds,
        )
        return UnlockDecision(content=content, intent=intent)

    async def confirm(self, content_id: str, payment_id: str, settlement_ref: str, buyer_id: str) -> AccessResponse:
        async with self.locks.hold(payment_id):
            await self.vault.get_content(content_id)

            try:
                intent = await self.registry.get_intent(payment_id)
            except NotFound:
                raise ValidationError("Payment intent not found for this content")
            if intent.contentId != content_id:
                raise ValidationError("Payment intent not found for this content")
            if intent.buyerId != buyer_id:
                raise BuyerMismatch("Buyer mismatch for this intent")

            if intent.status == IntentStatus.CONFIRMED:
                logger.info(f"[Paywall] Replayed confirmation of {payment_id}")
                return self._response(intent, replayed=True)

            if self.registry.is_expired(intent):
                raise IntentExpired("Payment intent expired. Please refresh the paywall.")

            result = await self.verifier.verify(settlement_ref, intent.amount, intent.payoutAddress, intent.assetType)
            if not result.valid:
                logger.info(f"[Paywall] Verification of {settlement_ref} for {payment_id} rejected: {result.reason}")
                if result.kind == "InsufficientPayment":
                    raise InsufficientPayment(result.reason)
                raise PaymentVerificationFailed(result.reason, kind=result.kind)

            if not await self.registry.claim_settlement(settlement_ref, payment_id):
                logger.warning(f"[Paywall] Settlement {settlement_ref} already used for another intent")
                raise PaymentVerificationFailed("Settlement already used for another purchase", kind="SettlementReused")

            return await self._grant(intent, settlement_ref)

    async def _grant(self, intent: PaymentIntent, settlement_ref: str) -> AccessResponse:
        issued = self.codec.issue({"contentId": intent.contentId, "buyerId": intent.buyerId}, self.access_ttl_seconds)
        download_url = f"{self.api_base}/content/{intent.contentId}/asset?token={quote(issued.token, safe='')}"
        expires_at = datetime.fromtimestamp(issued.exp / 1000, tz=timezone.utc)

        try:
            confirmed = await self.registry.confirm_intent(intent.id, settlement_ref, download_url, issued.token, expires_at)
        except PaygateError:
            await self.registry.release_settlement(settlement_ref, intent.id)
            raise

        if confirmed.accessToken != issued.token:
            # Another process confirmed first; its token and grant stand
            return self._response(confirmed, replayed=True)

        try:
            await self.grants.record(
                token_id=issued.token_id,
                content_id=intent.contentId,
                buyer_id=intent.buyerId,
                settlement_ref=settlement_ref,
                expires_at=issued.exp,
                payment_id=intent.id,
            )
            await self.registry.index_confirmed(confirmed)
        except Exception as e:
            logger.error(f"[Paywall] Grant write failed for {intent.id}: {e}", exc_info=True)
            # The claim stays with the intent unless it is back to pending
            if await self.registry.revert_confirmation(confirmed):
                await self.registry.release_settlement(settlement_ref, intent.id)
            raise StorageFailure("Failed to record access grant; retry the confirmation")

        logger.info(f"[Paywall] Granted token {issued.token_id} for intent {intent.id}")
        return self._response(confirmed)
