from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Annotated, Optional, List
from datetime import datetime
from urllib.parse import urlparse


# rows use 32-bit INTEGER keys
MAX_ID = 2 ** 31 - 1
RecordId = Annotated[int, Field(gt=0, le=MAX_ID)]


def validate_media_url(url: str) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"invalid attachment url: {url!r}")
    return url


class UserSummary(BaseModel):
    id: int
    first_name: str
    last_name: Optional[str] = None
    profile_image: Optional[str] = None

    class Config:
        from_attributes = True


class RoomCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    user_ids: List[RecordId] = Field(alias="userIds", min_length=1)

    class Config:
        populate_by_name = True


class DirectRoomRequest(BaseModel):
    user_id: int = Field(alias="userId", gt=0, le=MAX_ID)

    class Config:
        populate_by_name = True


class MessageCreate(BaseModel):
    room_id: int = Field(alias="roomId", gt=0, le=MAX_ID)
    content: Optional[str] = None
    media_urls: List[str] = Field(default_factory=list, alias="mediaUrls")
    reply_to_id: Optional[int] = Field(default=None, alias="replyToId", gt=0, le=MAX_ID)

    class Config:
        populate_by_name = True

    @field_validator("media_urls", mode="before")
    @classmethod
    def default_media_urls(cls, value):
        return [] if value is None else value

    @field_validator("media_urls")
    @classmethod
    def check_media_urls(cls, value: List[str]) -> List[str]:
        return [validate_media_url(url) for url in value]

    @model_validator(mode="after")
    def require_content_or_media(self):
        if not (self.content or "").strip() and not self.media_urls:
            raise ValueError("message needs content or at least one media url")
        return self


class ReactionUpdate(BaseModel):
    reaction: Optional[str] = Field(default=None, max_length=32)


class MediaResponse(BaseModel):
    id: int
    url: str
    type: str

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: int
    room_id: int
    sender_id: int
    content: Optional[str]
    is_read: bool
    read_at: Optional[datetime] = None
    reply_to_id: Optional[int] = None
    media_urls: List[str] = []
    reaction: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    sender: Optional[UserSummary] = None
    attachments: List[MediaResponse] = []

    class Config:
        from_attributes = True

    @field_validator("media_urls", mode="before")
    @classmethod
    def null_media_urls(cls, value):
        return value or []


class RoomResponse(BaseModel):
    id: int
    name: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    users: List[UserSummary] = []

    class Config:
        from_attributes = True


class DirectRoomResponse(RoomResponse):
    is_new: bool


class RoomPreviewResponse(RoomResponse):
    last_message: Optional[MessageResponse] = None
    unread_count: int = 0


class MarkReadResponse(BaseModel):
    room_id: int
    updated: int
