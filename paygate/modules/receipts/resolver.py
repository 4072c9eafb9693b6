"""
On-ledger receipt flow.

A receipt account at a derived address proves a (buyer, content) purchase.
The encrypted locator lives in the creator's published content list; once
the receipt exists it is decrypted with the static locator key.
"""
import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from paygate.core import crypto
from paygate.core.config import settings
from paygate.core.errors import ConfigurationError, ContentNotFound, LedgerUnavailable, MalformedInput, NotFound
from paygate.modules.ledger.client import LedgerClient

logger = logging.getLogger(__name__)

RECEIPT_DOMAIN = b"paygate/receipt/v1"
CREATOR_DOMAIN = b"paygate/creator/v1"

NUMERIC_ID_TAG = b"\x00"
TEXT_ID_TAG = b"\x01"
_CANONICAL_U64 = re.compile(r"0|[1-9][0-9]*")


def _encode_content_id(content_id: str) -> bytes:
    # Canonical decimal ids use the program's u64 little-endian seed; the tag byte
    # keeps them apart from text ids with the same bytes
    if _CANONICAL_U64.fullmatch(content_id) and int(content_id) < 2 ** 64:
        return NUMERIC_ID_TAG + int(content_id).to_bytes(8, "little")
    return TEXT_ID_TAG + content_id.encode("utf-8")


def _derive(domain: bytes, program_id: str, *parts: bytes) -> str:
    h = hashlib.sha256()
    for chunk in (domain, program_id.encode("utf-8")) + parts:
        h.update(len(chunk).to_bytes(4, "big"))
        h.update(chunk)
    return h.hexdigest()


@dataclass(frozen=True)
class ReceiptCheck:
    has_access: bool
    address: str
    receipt: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class PublishedContent:
    id: str
    price: int
    encrypted_locator: str
    asset_type: str = "SOL"


@dataclass(frozen=True)
class CreatorContentList:
    creator_id: str
    payout_address: str
    items: List[PublishedContent] = field(default_factory=list)

    def find(self, content_id: str) -> Optional[PublishedContent]:
        for item in self.items:
            if item.id == str(content_id):
                return item
        return None


def _locator_hex(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        return bytes(raw).hex()
    raise MalformedInput("Unsupported encrypted locator encoding")


class ReceiptResolver:

    def __init__(self, client: LedgerClient, static_key: Optional[bytes] = None, program_id: Optional[str] = None, timeout: Optional[float] = None):
        self.client = client
        self.static_key = static_key
        self.program_id = program_id or settings.LEDGER_PROGRAM_ID
        self.timeout = timeout if timeout is not None else settings.LEDGER_TIMEOUT_SECONDS

    def derive_address(self, buyer_id: str, content_id: str) -> str:
        return _derive(RECEIPT_DOMAIN, self.program_id, buyer_id.encode("utf-8"), _encode_content_id(str(content_id)))

    def derive_creator_address(self, creator_id: str) -> str:
        return _derive(CREATOR_DOMAIN, self.program_id, creator_id.encode("utf-8"))

    async def _account(self, address: str) -> Optional[Dict[str, Any]]:
        try:
            return await asyncio.wait_for(self.client.get_account(address), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Receipts] Account lookup {address} timed out after {self.timeout}s")
            raise LedgerUnavailable("Ledger did not answer in time")

    async def check_access(self, buyer_id: str, content_id: str, creator_id: Optional[str] = None) -> ReceiptCheck:
        """
        Absence of the receipt is the normal not-yet-paid state, not an error.
        A receipt attributed to another creator does not grant access.
        """
        address = self.derive_address(buyer_id, content_id)
        receipt = await self._account(address)
        if receipt is None:
            return ReceiptCheck(has_access=False, address=address)

        attributed = receipt.get("creator") if isinstance(receipt, dict) else None
        if creator_id and attributed and attributed != creator_id:
            logger.warning(f"[Receipts] Receipt {address} belongs to creator {attributed}, not {creator_id}")
            return ReceiptCheck(has_access=False, address=address, receipt=receipt)
        return ReceiptCheck(has_access=True, address=address, receipt=receipt)

    async def fetch_content_list(self, creator_id: str) -> CreatorContentList:
        account = await self._account(self.derive_creator_address(creator_id))
        if account is None:
            raise NotFound(f"Creator {creator_id} not found")
        try:
            items = [
                PublishedContent(
                    id=str(entry["id"]),
                    price=int(entry["price"]),
                    encrypted_locator=_locator_hex(entry["encryptedLocator"]),
                    asset_type=entry.get("assetType", "SOL"),
                )
                for entry in account.get("content", [])
            ]
            return CreatorContentList(creator_id=creator_id, payout_address=account["creatorWallet"], items=items)
        except (KeyError, TypeError, ValueError):
            raise LedgerUnavailable("Creator account has an unexpected layout")

    def _key(self, static_key: Optional[bytes]) -> bytes:
        key = static_key or self.static_key
        if not key:
            raise ConfigurationError("LOCATOR_SECRET_KEY is not configured")
        return key

    def resolve_locator(self, content_list: CreatorContentList, content_id: str, static_key: Optional[bytes] = None) -> str:
        item = content_list.find(content_id)
        if item is None:
            raise ContentNotFound("Content not found for this creator")
        return crypto.decrypt_locator(item.encrypted_locator, self._key(static_key))

    def encrypt_locator(self, locator: str, static_key: Optional[bytes] = None) -> str:
        return crypto.encrypt_locator(locator, self._key(static_key))
