import time
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel

from paygate.core.errors import NotFound, StorageFailure
from paygate.core.store import KeyedStore

GRANTS = "grants"


class AccessGrant(BaseModel):
    tokenId: str
    contentId: str
    buyerId: str
    settlementRef: str
    paymentId: Optional[str] = None
    expiresAt: int  # epoch milliseconds, same clock as the token exp
    createdAt: datetime

    def is_expired(self, now_ms: float) -> bool:
        return now_ms >= self.expiresAt


class AccessGrantStore:
    """Binds issued token ids to the purchase they authorize. Records are never mutated."""

    def __init__(self, store: KeyedStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    async def record(self, token_id: str, content_id: str, buyer_id: str, settlement_ref: str, expires_at: int, payment_id: Optional[str] = None) -> AccessGrant:
        grant = AccessGrant(
            tokenId=token_id,
            contentId=content_id,
            buyerId=buyer_id,
            settlementRef=settlement_ref,
            paymentId=payment_id,
            expiresAt=expires_at,
            createdAt=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
        )
        created = await self.store.compare_and_swap(GRANTS, token_id, 0, grant.model_dump(mode="json"))
        if not created:
            raise StorageFailure("Grant already recorded for this token")
        return grant

    async def lookup(self, token_id: str) -> AccessGrant:
        record = await self.store.get(GRANTS, token_id)
        if record is None:
            raise NotFound("Grant not found")
        return AccessGrant.model_validate(record.value)
