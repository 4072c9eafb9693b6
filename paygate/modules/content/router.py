import logging
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response, StreamingResponse

from paygate.core import deps
from paygate.core.errors import Malformed
from paygate.modules.access.service import AccessService
from paygate.modules.content import schemas
from paygate.modules.content.service import ContentVault, normalize_file_name

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_CHUNK_SIZE = 64 * 1024

def _chunks(data: bytes):
    for start in range(0, len(data), STREAM_CHUNK_SIZE):
        yield data[start:start + STREAM_CHUNK_SIZE]

@router.post("/content", response_model=schemas.ContentCreated, status_code=201)
async def create_content(
    payload: schemas.ContentCreate,
    vault: ContentVault = Depends(deps.get_vault),
) -> Any:
    record = await vault.create_content(payload)
    return {"message": "Content saved and encrypted", "content": vault.sanitize(record)}

@router.get("/content", response_model=schemas.ContentList)
async def list_content(
    creatorId: Optional[str] = Query(None),
    vault: ContentVault = Depends(deps.get_vault),
) -> Any:
    records = await vault.list_content(creatorId)
    return {"content": [vault.sanitize(r) for r in records]}

@router.get("/creator/{creator_id}/content", response_model=schemas.ContentList)
async def list_creator_content(
    creator_id: str,
    vault: ContentVault = Depends(deps.get_vault),
) -> Any:
    records = await vault.list_content(creator_id)
    return {"content": [vault.sanitize(r) for r in records]}

@router.get("/content/{content_id}", response_model=schemas.ContentRead)
async def get_content(
    content_id: str,
    vault: ContentVault = Depends(deps.get_vault),
) -> Any:
    return vault.sanitize(await vault.get_content(content_id))

@router.get("/content/{content_id}/asset")
async def get_asset(
    content_id: str,
    token: Optional[str] = Query(None),
    vault: ContentVault = Depends(deps.get_vault),
    access: AccessService = Depends(deps.get_access_service),
):
    """
    Redeems an access token: decrypts and returns the protected file.
    """
    if not token:
        raise Malformed("Access token required")

    grant = await access.redeem(token, content_id)
    record = await vault.get_content(content_id)
    data = await vault.open_content(record)

    logger.info(f"[Content] Delivered {content_id} to {grant.buyerId} (token {grant.tokenId})")
    return StreamingResponse(
        _chunks(data),
        media_type=record.contentType or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{normalize_file_name(record.originalFileName)}"'},
    )

@router.get("/content/{content_id}/preview-asset")
async def get_preview_asset(
    content_id: str,
    vault: ContentVault = Depends(deps.get_vault),
):
    record = await vault.get_content(content_id)
    data, content_type = await vault.open_preview(record)
    return Response(content=data, media_type=content_type)
