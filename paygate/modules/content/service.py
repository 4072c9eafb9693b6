import base64
import binascii
import logging
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from paygate.core import crypto
from paygate.core.config import settings
from paygate.core.errors import ContentNotFound, NotFound, StorageFailure, ValidationError
from paygate.core.storage import StorageProvider
from paygate.core.store import KeyedStore
from paygate.modules.content import schemas
from paygate.modules.content.models import ContentRecord, Creator, EncryptionEnvelope, Preview, PreviewMode

logger = logging.getLogger(__name__)

CONTENT = "content"
CREATORS = "creators"

NON_REFUNDABLE_MESSAGE = "All purchases settle on-chain and are final. Please review previews before unlocking."
AUTO_SNIPPET_LIMIT = 280
CUSTOM_SNIPPET_LIMIT = 500


def normalize_file_name(name: str) -> str:
    return re.sub(r"[^\w.\-]", "_", name or "")


def _decode_b64(data: str, field: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(f"{field} must be base64 encoded")


def build_text_preview(data: bytes, limit: int = AUTO_SNIPPET_LIMIT) -> Optional[str]:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    return f"{text[:limit]}..." if len(text) > limit else text


class ContentVault:
    """Persists content encrypted at rest and hands it back decrypted once access is proven."""

    def __init__(self, store: KeyedStore, storage: StorageProvider, clock: Callable[[], float] = time.time):
        self.store = store
        self.storage = storage
        self.clock = clock

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    async def ensure_creator(self, creator_id: str, wallet_address: str) -> Creator:
        record = await self.store.get(CREATORS, creator_id)
        if record is None:
            creator = Creator(id=creator_id, walletAddress=wallet_address, createdAt=self.now())
            if await self.store.compare_and_swap(CREATORS, creator_id, 0, creator.model_dump(mode="json")):
                return creator
            record = await self.store.get(CREATORS, creator_id)

        creator = Creator.model_validate(record.value)
        if wallet_address and creator.walletAddress != wallet_address:
            logger.info(f"[Content] Correcting payout address of creator {creator_id}")
            creator = creator.model_copy(update={"walletAddress": wallet_address})
            await self.store.put(CREATORS, creator_id, creator.model_dump(mode="json"))
            await self._correct_payout_address(creator_id, wallet_address)
        return creator

    async def _correct_payout_address(self, creator_id: str, wallet_address: str) -> None:
        for stored in await self.store.list(CONTENT):
            if stored.value.get("creatorId") != creator_id:
                continue
            updated = {**stored.value, "creatorWalletAddress": wallet_address, "updatedAt": self.now().isoformat()}
            if not await self.store.compare_and_swap(CONTENT, updated["id"], stored.version, updated):
                logger.warning(f"[Content] Payout address correction raced on {updated['id']}")

    async def _build_preview(self, payload: schemas.ContentCreate, file_bytes: bytes, content_id: str) -> Preview:
        preview = Preview(enabled=payload.previewMode != PreviewMode.OFF, mode=payload.previewMode)
        if not preview.enabled:
            return preview

        if payload.previewMode == PreviewMode.AUTO:
            if payload.fileType.startswith("text/"):
                preview.snippet = build_text_preview(file_bytes)
                preview.previewType = "text"
            else:
                preview.enabled = False
            return preview

        # Custom
        if payload.previewText:
            preview.snippet = payload.previewText[:CUSTOM_SNIPPET_LIMIT]
            preview.previewType = "text"
            return preview

        if payload.previewFileData:
            preview_bytes = _decode_b64(payload.previewFileData, "previewFileData")
            if preview_bytes:
                content_type = payload.previewFileType or "application/octet-stream"
                key = f"content/{payload.creatorId}/{content_id}/preview/{normalize_file_name(payload.previewFileName or 'preview')}"
                preview.previewStorageKey = await self.storage.put(key, preview_bytes, content_type)
                preview.previewContentType = content_type
                preview.previewType = "file"
        return preview

    async def create_content(self, payload: schemas.ContentCreate) -> ContentRecord:
        file_bytes = _decode_b64(payload.fileData, "fileData")
        if not file_bytes:
            raise ValidationError("Uploaded file is empty")

        creator = await self.ensure_creator(payload.creatorId, payload.walletAddress)

        content_id = str(uuid.uuid4())
        encrypted = crypto.encrypt_blob(file_bytes)
        storage_key = await self.storage.put(
            f"content/{payload.creatorId}/{content_id}/{normalize_file_name(payload.fileName)}.enc",
            encrypted.ciphertext,
            "application/octet-stream",
        )

        try:
            preview = await self._build_preview(payload, file_bytes, content_id)
        except Exception:
            await self.storage.delete(storage_key)
            raise

        now = self.now()
        record = ContentRecord(
            id=content_id,
            creatorId=payload.creatorId,
            title=payload.title,
            description=payload.description or "",
            price=payload.price,
            assetType=payload.assetType,
            categories=payload.categories,
            contentKind=payload.contentKind,
            allowDownload=payload.allowDownload,
            creatorWalletAddress=creator.walletAddress,
            storageKey=storage_key,
            originalFileName=payload.fileName,
            contentType=payload.fileType,
            fileSize=len(file_bytes),
            encryption=EncryptionEnvelope(key=encrypted.key, iv=encrypted.iv, authTag=encrypted.auth_tag),
            preview=preview,
            contentHash=crypto.content_hash(file_bytes),
            disclaimers={"refunds": NON_REFUNDABLE_MESSAGE},
            createdAt=now,
            updatedAt=now,
        )
        if not await self.store.compare_and_swap(CONTENT, content_id, 0, record.model_dump(mode="json")):
            raise StorageFailure("Content id collision")

        logger.info(f"[Content] Stored {content_id} for creator {payload.creatorId} ({record.fileSize} bytes)")
        return record

    async def get_content(self, content_id: str) -> ContentRecord:
        record = await self.store.get(CONTENT, content_id)
        if record is None:
            raise ContentNotFound("Content not found")
        return ContentRecord.model_validate(record.value)

    async def list_content(self, creator_id: Optional[str] = None) -> List[ContentRecord]:
        records = [ContentRecord.model_validate(r.value) for r in await self.store.list(CONTENT)]
        if creator_id:
            records = [r for r in records if r.creatorId == creator_id]
        return sorted(records, key=lambda r: r.createdAt)

    async def open_content(self, record: ContentRecord) -> bytes:
        """Fetches and decrypts the stored blob. Never returns bytes that failed authentication."""
        try:
            ciphertext = await self.storage.get(record.storageKey)
        except NotFound:
            logger.error(f"[Content] Encrypted blob missing for {record.id}")
            raise StorageFailure("Encrypted content is missing from storage")
        return crypto.decrypt_blob(ciphertext, record.encryption.key, record.encryption.iv, record.encryption.authTag)

    async def open_preview(self, record: ContentRecord) -> Tuple[bytes, str]:
        if not record.preview.previewStorageKey:
            raise NotFound("Preview asset not available")
        data = await self.storage.get(record.preview.previewStorageKey)
        return data, record.preview.previewContentType or "application/octet-stream"

    def sanitize(self, record: ContentRecord) -> schemas.ContentRead:
        preview = record.preview
        return schemas.ContentRead(
            **record.model_dump(exclude={"encryption", "storageKey", "preview"}),
            preview=schemas.PreviewRead(
                mode=preview.mode,
                enabled=preview.enabled,
                snippet=preview.snippet,
                previewType=preview.previewType,
                previewContentType=preview.previewContentType,
                previewUrl=f"{settings.PUBLIC_API_BASE}/content/{record.id}/preview-asset" if preview.previewStorageKey else None,
            ),
        )
