from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from paygate.core import deps
from paygate.core.config import settings
from paygate.modules.payments import schemas
from paygate.modules.payments.paywall import PaywallService

router = APIRouter()

@router.get("/content/{content_id}/paywall", responses={402: {"description": "Payment Required"}})
async def request_unlock(
    content_id: str,
    buyer: Optional[str] = Query(None),
    paywall: PaywallService = Depends(deps.get_paywall),
) -> Any:
    """
    Starts a purchase: creates a payment intent and answers 402 with payment instructions.
    A buyer who already holds a live grant gets their access back instead.
    """
    decision = await paywall.request_unlock(content_id, buyer)
    if decision.access:
        return decision.access

    intent = decision.intent
    content = decision.content
    expires_at = intent.expiresAt.isoformat()
    payment_request = schemas.PaymentRequest(
        paymentId=intent.id,
        contentId=content.id,
        amount=intent.amount,
        assetType=intent.assetType,
        paymentAddress=intent.payoutAddress,
        network=settings.LEDGER_CLUSTER,
        expiresAt=intent.expiresAt,
        disclaimers=content.disclaimers,
    )
    return JSONResponse(
        status_code=402,
        headers={
            "X-Payment-Required": "true",
            "X-Payment-Id": intent.id,
            "X-Payment-Address": intent.payoutAddress,
            "X-Asset-Type": intent.assetType,
            "X-Preview-Mode": content.preview.mode.value,
            "X-Expires-At": expires_at,
        },
        content={
            "error": "PaymentRequired",
            "message": "Payment Required",
            "paymentRequest": payment_request.model_dump(mode="json"),
            "content": paywall.vault.sanitize(content).model_dump(mode="json"),
        },
    )

@router.post("/content/{content_id}/paywall", response_model=schemas.AccessResponse)
async def confirm_payment(
    content_id: str,
    payload: schemas.PaywallConfirm,
    paywall: PaywallService = Depends(deps.get_paywall),
) -> Any:
    return await paywall.confirm(content_id, payload.paymentId, payload.settlementRef, payload.buyerId)
