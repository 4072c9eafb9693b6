from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel
import enum

class PreviewMode(str, enum.Enum):
    OFF = "off"
    AUTO = "auto"
    CUSTOM = "custom"

class EncryptionEnvelope(BaseModel):
    key: str
    iv: str
    authTag: str

class Preview(BaseModel):
    enabled: bool = False
    mode: PreviewMode = PreviewMode.AUTO
    snippet: Optional[str] = None
    previewType: Optional[str] = None # "text" | "file"
    previewStorageKey: Optional[str] = None
    previewContentType: Optional[str] = None

class Creator(BaseModel):
    id: str
    walletAddress: str
    createdAt: datetime

class ContentRecord(BaseModel):
    id: str
    creatorId: str
    title: str
    description: str = ""
    price: int # Base units of assetType
    assetType: str
    categories: List[str] = []
    contentKind: str = "file"
    allowDownload: bool = True
    creatorWalletAddress: str

    storageKey: str
    originalFileName: str
    contentType: str
    fileSize: int
    encryption: EncryptionEnvelope
    preview: Preview
    contentHash: str
    status: str = "active"
    disclaimers: dict = {}

    createdAt: datetime
    updatedAt: datetime
