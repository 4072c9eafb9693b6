import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from paygate.core.errors import IntentExpired, NotFound, StorageFailure
from paygate.core.store import KeyedStore
from paygate.modules.payments.models import IntentStatus, PaymentIntent

logger = logging.getLogger(__name__)

INTENTS = "intents"
INTENT_INDEX = "intent_index"
SETTLEMENTS = "settlements"


def _index_key(content_id: str, buyer_id: str) -> str:
    return f"{content_id}:{buyer_id}"


class PaymentIntentRegistry:

    def __init__(self, store: KeyedStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    async def create_intent(self, content_id: str, buyer_id: str, amount: int, asset: str, payout_address: str, ttl_seconds: int) -> PaymentIntent:
        now = self.now()
        intent = PaymentIntent(
            id=str(uuid.uuid4()),
            contentId=content_id,
            buyerId=buyer_id,
            amount=amount,
            assetType=asset,
            payoutAddress=payout_address,
            status=IntentStatus.PENDING,
            expiresAt=now + timedelta(seconds=ttl_seconds),
            createdAt=now,
            updatedAt=now,
        )
        created = await self.store.compare_and_swap(INTENTS, intent.id, 0, intent.model_dump(mode="json"))
        if not created:
            raise StorageFailure("Payment intent id collision")
        logger.info(f"[Intents] Created {intent.id} for content {content_id} buyer {buyer_id}")
        return intent

    async def get_intent(self, intent_id: str) -> PaymentIntent:
        record = await self.store.get(INTENTS, intent_id)
        if record is None:
            raise NotFound("Payment intent not found")
        return PaymentIntent.model_validate(record.value)

    def is_expired(self, intent: PaymentIntent) -> bool:
        return self.now() >= intent.expiresAt

    async def confirm_intent(
        self,
        intent_id: str,
        settlement_ref: str,
        redemption_url: str,
        access_token: Optional[str] = None,
        access_expires_at: Optional[datetime] = None,
    ) -> PaymentIntent:
        """
        pending -> confirmed via compare-and-swap.
        An already-confirmed intent is returned untouched, original URL included.
        """
        record = await self.store.get(INTENTS, intent_id)
        if record is None:
            raise NotFound("Payment intent not found")
        intent = PaymentIntent.model_validate(record.value)

        if intent.status == IntentStatus.CONFIRMED:
            return intent

        if self.is_expired(intent):
            raise IntentExpired("Payment intent expired. Please refresh the paywall.")

        confirmed = intent.model_copy(update={
            "status": IntentStatus.CONFIRMED,
            "settlementRef": settlement_ref,
            "downloadUrl": redemption_url,
            "accessToken": access_token,
            "accessExpiresAt": access_expires_at,
            "updatedAt": self.now(),
        })
        if not await self.store.compare_and_swap(INTENTS, intent_id, record.version, confirmed.model_dump(mode="json")):
            # Someone else won the transition; theirs is the result
            winner = await self.get_intent(intent_id)
            if winner.status == IntentStatus.CONFIRMED:
                return winner
            raise StorageFailure("Payment intent changed concurrently")

        logger.info(f"[Intents] Confirmed {intent_id} with settlement {settlement_ref}")
        return confirmed

    async def revert_confirmation(self, intent: PaymentIntent) -> bool:
        """
        Puts a just-confirmed intent back to pending when its grant could not be written.
        Returns False if the intent changed in the meantime and was left as is.
        """
        record = await self.store.get(INTENTS, intent.id)
        if record is None or record.value.get("accessToken") != intent.accessToken:
            return False
        pending = intent.model_copy(update={
            "status": IntentStatus.PENDING,
            "settlementRef": None,
            "downloadUrl": None,
            "accessToken": None,
            "accessExpiresAt": None,
            "updatedAt": self.now(),
        })
        if not await self.store.compare_and_swap(INTENTS, intent.id, record.version, pending.model_dump(mode="json")):
            return False
        logger.warning(f"[Intents] Reverted confirmation of {intent.id}")
        return True

    async def index_confirmed(self, intent: PaymentIntent) -> None:
        """Points the (content, buyer) index at a confirmed intent whose grant is written."""
        await self.store.put(INTENT_INDEX, _index_key(intent.contentId, intent.buyerId), {"intentId": intent.id})

    async def claim_settlement(self, settlement_ref: str, intent_id: str) -> bool:
        """
        Binds a settlement reference to one intent so a single ledger payment
        cannot confirm two different intents.
        """
        record = await self.store.get(SETTLEMENTS, settlement_ref)
        if record is None:
            return await self.store.compare_and_swap(SETTLEMENTS, settlement_ref, 0, {"intentId": intent_id})
        owner = record.value.get("intentId")
        if owner == intent_id:
            return True
        if owner is not None:
            return False
        return await self.store.compare_and_swap(SETTLEMENTS, settlement_ref, record.version, {"intentId": intent_id})

    async def release_settlement(self, settlement_ref: str, intent_id: str) -> None:
        record = await self.store.get(SETTLEMENTS, settlement_ref)
        if record is None or record.value.get("intentId") != intent_id:
            return
        await self.store.compare_and_swap(SETTLEMENTS, settlement_ref, record.version, {"intentId": None})

    async def find_confirmed(self, content_id: str, buyer_id: str) -> Optional[PaymentIntent]:
        record = await self.store.get(INTENT_INDEX, _index_key(content_id, buyer_id))
        if record is None:
            return None
        try:
            intent = await self.get_intent(record.value["intentId"])
        except NotFound:
            return None
        return intent if intent.status == IntentStatus.CONFIRMED else None
