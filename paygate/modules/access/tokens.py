"""
Signed bearer tokens for content redemption.

Wire form: b64url(json payload) "." b64url(HMAC-SHA256(payload segment)).
The payload carries contentId, buyerId, tokenId and exp (epoch milliseconds).
"""
import hashlib
import hmac
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from jose.utils import base64url_decode, base64url_encode

from paygate.core.config import settings
from paygate.core.errors import Expired, InvalidSignature, Malformed

logger = logging.getLogger(__name__)

_SEGMENT = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class IssuedToken:
    token: str
    token_id: str
    exp: int


class AccessTokenCodec:

    def __init__(self, secret: Optional[str] = None, clock: Callable[[], float] = time.time):
        self.secret = (secret or settings.ACCESS_TOKEN_SECRET).encode("utf-8")
        self.clock = clock

    def _sign(self, payload_segment: str) -> str:
        digest = hmac.new(self.secret, payload_segment.encode("ascii"), hashlib.sha256).digest()
        return base64url_encode(digest).decode("ascii")

    def issue(self, payload: Dict[str, Any], ttl_seconds: Optional[int] = None) -> IssuedToken:
        ttl = ttl_seconds if ttl_seconds is not None else settings.ACCESS_TOKEN_TTL_SECONDS
        token_id = str(uuid.uuid4())
        exp = int((self.clock() + ttl) * 1000)
        body = {**payload, "tokenId": token_id, "exp": exp}
        serialized = json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8")
        payload_segment = base64url_encode(serialized).decode("ascii")
        return IssuedToken(token=f"{payload_segment}.{self._sign(payload_segment)}", token_id=token_id, exp=exp)

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Returns the payload of a valid token.
        Raises Malformed, InvalidSignature, or Expired (which still carries the payload).
        """
        if not token or not isinstance(token, str) or token.count(".") != 1:
            raise Malformed("Malformed token")

        payload_segment, provided_signature = token.split(".")
        if not _SEGMENT.match(payload_segment) or not _SEGMENT.match(provided_signature):
            raise Malformed("Malformed token")

        expected_signature = self._sign(payload_segment)
        if not hmac.compare_digest(expected_signature.encode("ascii"), provided_signature.encode("ascii")):
            raise InvalidSignature("Invalid signature")

        try:
            payload = json.loads(base64url_decode(payload_segment.encode("ascii")))
        except ValueError:
            raise Malformed("Malformed token payload")
        if not isinstance(payload, dict) or not isinstance(payload.get("exp"), int):
            raise Malformed("Malformed token payload")

        if self.clock() * 1000 > payload["exp"]:
            logger.info(f"[Tokens] Token {payload.get('tokenId')} expired")
            raise Expired("Token expired", payload=payload)

        return payload
