from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from paygate.modules.content.models import PreviewMode
from paygate.modules.ledger.verifier import SUPPORTED_ASSETS, NATIVE_ASSET

class ContentCreate(BaseModel):
    creatorId: str = Field(min_length=1)
    walletAddress: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: Optional[str] = None
    price: int = Field(gt=0) # Base units
    assetType: str = NATIVE_ASSET
    previewMode: PreviewMode = PreviewMode.AUTO
    previewText: Optional[str] = None
    fileName: str = Field(min_length=1)
    fileType: str = Field(min_length=1)
    fileData: str = Field(min_length=1) # base64
    previewFileData: Optional[str] = None
    previewFileName: Optional[str] = None
    previewFileType: Optional[str] = None
    categories: List[str] = []
    contentKind: str = "file"
    allowDownload: bool = True

    @field_validator("assetType")
    @classmethod
    def check_asset(cls, v: str) -> str:
        if v not in SUPPORTED_ASSETS:
            raise ValueError(f"assetType must be one of {', '.join(SUPPORTED_ASSETS)}")
        return v

class PreviewRead(BaseModel):
    mode: PreviewMode
    enabled: bool
    snippet: Optional[str] = None
    previewType: Optional[str] = None
    previewContentType: Optional[str] = None
    previewUrl: Optional[str] = None

class ContentRead(BaseModel):
    id: str
    creatorId: str
    title: str
    description: str
    price: int
    assetType: str
    categories: List[str] = []
    contentKind: str
    allowDownload: bool
    creatorWalletAddress: str
    originalFileName: str
    contentType: str
    fileSize: int
    contentHash: str
    status: str
    disclaimers: dict = {}
    preview: PreviewRead
    createdAt: datetime
    updatedAt: datetime

class ContentCreated(BaseModel):
    message: str
    content: ContentRead

class ContentList(BaseModel):
    content: List[ContentRead]
