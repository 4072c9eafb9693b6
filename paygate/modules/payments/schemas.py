from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

class PaywallConfirm(BaseModel):
    paymentId: str = Field(min_length=1)
    settlementRef: str = Field(min_length=1)
    buyerId: str = Field(min_length=1)

class AccessResponse(BaseModel):
    accessToken: str
    downloadUrl: str
    expiresAt: datetime
    settlementRef: Optional[str] = None
    settlementUrl: Optional[str] = None
    replayed: bool = False

class PaymentRequest(BaseModel):
    paymentId: str
    contentId: str
    amount: int
    assetType: str
    paymentAddress: str
    network: str
    expiresAt: datetime
    disclaimers: dict = {}
