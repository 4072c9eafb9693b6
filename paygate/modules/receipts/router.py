import logging
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from paygate.core import deps
from paygate.core.errors import ContentNotFound, ValidationError
from paygate.modules.receipts import schemas
from paygate.modules.receipts.resolver import ReceiptResolver

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/access/{creator_id}/{content_id}", response_model=schemas.LocatorResponse, responses={402: {"description": "Payment Required"}})
async def check_access(
    creator_id: str,
    content_id: str,
    buyer: Optional[str] = Query(None),
    resolver: ReceiptResolver = Depends(deps.get_receipts),
) -> Any:
    """
    Returns the decrypted locator when an on-ledger receipt exists for (buyer, content),
    otherwise 402 with the price and payout address.
    """
    if not buyer:
        raise ValidationError("buyer is required")

    check = await resolver.check_access(buyer, content_id, creator_id)
    content_list = await resolver.fetch_content_list(creator_id)
    item = content_list.find(content_id)
    if item is None:
        raise ContentNotFound("Content not found for this creator")

    if check.has_access:
        locator = resolver.resolve_locator(content_list, content_id)
        logger.info(f"[Receipts] Receipt {check.address} unlocked content {content_id} for {buyer}")
        return {"locator": locator}

    return JSONResponse(
        status_code=402,
        headers={
            "X-Payment-Required": "true",
            "X-Content-Price": str(item.price),
            "X-Payment-Address": content_list.payout_address,
            "X-Content-Id": item.id,
        },
        content={
            "error": "PaymentRequired",
            "message": "Payment Required",
            "price": item.price,
            "assetType": item.asset_type,
            "payoutAddress": content_list.payout_address,
            "contentId": item.id,
        },
    )

@router.get("/access/{creator_id}/{content_id}/address", response_model=schemas.ReceiptAddress)
async def receipt_address(
    creator_id: str,
    content_id: str,
    buyer: str = Query(..., min_length=1),
    resolver: ReceiptResolver = Depends(deps.get_receipts),
) -> Any:
    return {"address": resolver.derive_address(buyer, content_id), "buyer": buyer, "contentId": content_id}

@router.post("/locators", response_model=schemas.EncryptedLocator)
async def encrypt_locator(
    payload: schemas.LocatorEncrypt,
    resolver: ReceiptResolver = Depends(deps.get_receipts),
) -> Any:
    """Encrypts a locator for a creator to publish in their on-ledger content list."""
    return {"encryptedLocator": resolver.encrypt_locator(payload.locator)}
