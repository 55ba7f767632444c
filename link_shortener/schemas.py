from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ---------- Links ----------

class ShortenRequest(BaseModel):
    custom_url: Optional[str] = None
    redirect_to: str = Field(..., max_length=2048)
    expires_at: Optional[datetime] = None


class ShortenResponse(BaseModel):
    shortened: str


class ShortenedRequest(BaseModel):
    shortened: str


class UpdateLinkRequest(BaseModel):
    """Partial update; omitted or null fields are left unchanged."""

    shortened: str
    redirect_to: Optional[str] = None
    new_shortened: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class PartialSecretKey(BaseModel):
    key: str
    name: str

    model_config = ConfigDict(from_attributes=True)


class LinkInfo(BaseModel):
    id: str
    redirect_to: str
    shortened: str
    expires_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    created_by: str
    secret_key: PartialSecretKey = Field(validation_alias=AliasChoices("owner", "secret_key"))
    visits: int
    last_visited_at: Optional[datetime]
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class LinksResponse(BaseModel):
    message: str
    links: List[LinkInfo]


class RetrieveAllByKeyRequest(BaseModel):
    key: str


class MessageResponse(BaseModel):
    message: str


# ---------- Keys ----------

class KeyInfo(BaseModel):
    key: str
    name: str
    created_at: datetime
    updated_at: datetime
    last_used_at: Optional[datetime] = None
    is_active: bool
    is_admin: bool

    model_config = ConfigDict(from_attributes=True)


class KeyResponse(BaseModel):
    message: str
    key: KeyInfo


class KeysResponse(BaseModel):
    message: str
    keys: List[KeyInfo]


class GenerateKeyRequest(BaseModel):
    name: str = ""
    is_admin: bool = False


class UpdateKeyRequest(BaseModel):
    key: str
    name: Optional[str] = None
    is_admin: Optional[bool] = None
    is_active: Optional[bool] = None


class DeleteKeyRequest(BaseModel):
    key: str

