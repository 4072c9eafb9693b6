import logging
import time
from typing import Callable

from paygate.core.errors import Expired, GrantMismatch, NotFound
from paygate.modules.access.grants import AccessGrant, AccessGrantStore
from paygate.modules.access.tokens import AccessTokenCodec

logger = logging.getLogger(__name__)


class AccessService:
    """Redemption check: token signature, grant lookup, and field equality must all agree."""

    def __init__(self, codec: AccessTokenCodec, grants: AccessGrantStore, clock: Callable[[], float] = time.time):
        self.codec = codec
        self.grants = grants
        self.clock = clock

    async def redeem(self, token: str, content_id: str) -> AccessGrant:
        payload = self.codec.verify(token)

        if payload.get("contentId") != content_id:
            logger.warning(f"[Access] Token {payload.get('tokenId')} presented for other content {content_id}")
            raise GrantMismatch("Token does not grant this content")

        try:
            grant = await self.grants.lookup(str(payload.get("tokenId")))
        except NotFound:
            logger.warning(f"[Access] No grant for token {payload.get('tokenId')}")
            raise GrantMismatch("Grant not found for token")

        if grant.contentId != payload.get("contentId") or grant.buyerId != payload.get("buyerId"):
            logger.warning(f"[Access] Grant {grant.tokenId} does not match token payload")
            raise GrantMismatch("Grant does not match token")

        if grant.is_expired(self.clock() * 1000):
            raise Expired("Access grant expired", payload=payload)

        return grant
