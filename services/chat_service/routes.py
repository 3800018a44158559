from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from database import get_db
from schemas import (
    RoomCreate, DirectRoomRequest, MessageCreate, ReactionUpdate,
    RoomResponse, DirectRoomResponse, RoomPreviewResponse, MessageResponse,
    MarkReadResponse, MAX_ID
)
from crud import (
    ChatError, create_room, get_room, is_member, send_message, get_messages,
    get_rooms, get_or_create_direct_room, mark_room_read, set_reaction
)
from events import publish_event, build_message_event
from typing import List
import httpx
import logging
import os

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])
http_bearer = HTTPBearer(auto_error=False)
AUTH_SERVICE_URL = os.getenv("AUTH_SERVICE_URL", "http://auth-service:8000")

logger = logging.getLogger(__name__)


def resolve_account(credentials: HTTPAuthorizationCredentials = Depends(http_bearer)):
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )
    try:
        response = httpx.get(
            f"{AUTH_SERVICE_URL}/api/v1/auth/me",
            headers={"Authorization": f"Bearer {credentials.credentials}"},
            timeout=5.0
        )
    except httpx.HTTPError as exc:
        logger.error("Auth service unreachable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Cannot verify authentication: {exc}"
        ) from exc

    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token"
        )
    account = response.json()
    if not account.get("id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication payload"
        )
    if account.get("is_banned"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is banned"
        )
    return account


def current_user_id(account=Depends(resolve_account)) -> int:
    return int(account["id"])


def require_member(db: Session, room_id: int, user_id: int):
    if get_room(db, room_id) is None:
        raise ChatError(status.HTTP_404_NOT_FOUND, "Room not found")
    if not is_member(db, room_id, user_id):
        raise ChatError(status.HTTP_403_FORBIDDEN, "Not a member of this room")


@router.post("/rooms", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
def create_chat_room(
    request: RoomCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id)
):
    room = create_room(db, request.name, request.user_ids)
    return RoomResponse.model_validate(room)


@router.post("/rooms/direct", response_model=DirectRoomResponse)
@router.post("/rooms/get-or-create", response_model=DirectRoomResponse, include_in_schema=False)
def open_direct_room(
    request: DirectRoomRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id)
):
    room, is_new = get_or_create_direct_room(db, user_id, request.user_id)
    payload = RoomResponse.model_validate(room).model_dump()
    payload["is_new"] = is_new
    return payload


@router.get("/rooms", response_model=List[RoomPreviewResponse])
def list_rooms(
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id)
):
    responses = []
    for preview in get_rooms(db, user_id):
        payload = RoomResponse.model_validate(preview["room"]).model_dump()
        last_message = preview["last_message"]
        payload["last_message"] = (
            MessageResponse.model_validate(last_message).model_dump()
            if last_message else None
        )
        payload["unread_count"] = preview["unread_count"]
        responses.append(payload)
    return responses


@router.get("/rooms/{room_id}/messages", response_model=List[MessageResponse])
def list_room_messages(
    room_id: int = Path(gt=0, le=MAX_ID),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id)
):
    require_member(db, room_id, user_id)
    return [MessageResponse.model_validate(message) for message in get_messages(db, room_id)]


@router.post("/rooms/{room_id}/read", response_model=MarkReadResponse)
def read_room(
    room_id: int = Path(gt=0, le=MAX_ID),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id)
):
    require_member(db, room_id, user_id)
    updated = mark_room_read(db, room_id, user_id)
    return MarkReadResponse(room_id=room_id, updated=updated)


@router.post("/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def create_chat_message(
    request: MessageCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id)
):
    message = send_message(
        db,
        request.room_id,
        user_id,
        content=request.content,
        media_urls=request.media_urls,
        reply_to_id=request.reply_to_id
    )
    room = get_room(db, message.room_id)
    recipient_ids = [member.id for member in room.users if member.id != user_id]
    background_tasks.add_task(publish_event, "chat.message", build_message_event(message, recipient_ids))
    return MessageResponse.model_validate(message)


@router.put("/messages/{message_id}/reaction", response_model=MessageResponse)
def update_reaction(
    request: ReactionUpdate,
    message_id: int = Path(gt=0, le=MAX_ID),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id)
):
    message = set_reaction(db, message_id, user_id, request.reaction)
    return MessageResponse.model_validate(message)
