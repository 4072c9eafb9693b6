from pydantic import BaseModel, Field

class LocatorResponse(BaseModel):
    locator: str

class LocatorEncrypt(BaseModel):
    locator: str = Field(min_length=1)

class EncryptedLocator(BaseModel):
    encryptedLocator: str

class ReceiptAddress(BaseModel):
    address: str
    buyer: str
    contentId: str
