from datetime import datetime
from typing import Optional
from pydantic import BaseModel
import enum

class IntentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"

class PaymentIntent(BaseModel):
    id: str
    contentId: str
    buyerId: str
    amount: int # Base units
    assetType: str
    payoutAddress: str
    status: IntentStatus = IntentStatus.PENDING
    expiresAt: datetime
    createdAt: datetime
    updatedAt: datetime

    settlementRef: Optional[str] = None
    downloadUrl: Optional[str] = None
    # Kept so a replayed confirmation returns the same response
    accessToken: Optional[str] = None
    accessExpiresAt: Optional[datetime] = None
