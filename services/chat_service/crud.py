from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from models import User, Room, RoomUser, Message, Media
from schemas import validate_media_url
from typing import List, Optional, Tuple
import logging
import os

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".mov", ".webm", ".mkv", ".avi"}


class ChatError(Exception):
    """Domain failure carrying the HTTP status the API should answer with."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def direct_room_key(user_a: int, user_b: int) -> str:
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"


def media_type_for(url: str) -> str:
    path = url.split("?", 1)[0].lower()
    _, ext = os.path.splitext(path)
    return "video" if ext in VIDEO_EXTENSIONS else "image"


def _missing_user_ids(db: Session, user_ids: List[int]) -> List[int]:
    found = {row.id for row in db.query(User.id).filter(User.id.in_(user_ids)).all()}
    return sorted(set(user_ids) - found)


def _rooms_of(*user_ids: int):
    return select(RoomUser.room_id).where(RoomUser.user_id.in_(user_ids))


def is_member(db: Session, room_id: int, user_id: int) -> bool:
    return db.query(RoomUser).filter(
        RoomUser.room_id == room_id,
        RoomUser.user_id == user_id
    ).first() is not None


def get_room(db: Session, room_id: int) -> Optional[Room]:
    return db.query(Room).options(selectinload(Room.users)).filter(Room.id == room_id).first()


def create_room(db: Session, name: str, user_ids: List[int]) -> Room:
    member_ids = list(dict.fromkeys(user_ids))
    if not member_ids:
        raise ChatError(400, "A room needs at least one member")
    missing = _missing_user_ids(db, member_ids)
    if missing:
        raise ChatError(404, f"Unknown user ids: {missing}")

    try:
        room = Room(name=name)
        db.add(room)
        db.flush()
        db.add_all([RoomUser(room_id=room.id, user_id=user_id) for user_id in member_ids])
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Created room %s with members %s", room.id, member_ids)
    return get_room(db, room.id)


def _find_direct_room(db: Session, user_a: int, user_b: int) -> Optional[Room]:
    """Return the room whose membership is exactly {user_a, user_b}, if any."""
    candidates = (
        db.query(Room)
        .options(selectinload(Room.users))
        .filter(Room.id.in_(_rooms_of(user_a, user_b)))
        .order_by(Room.id.asc())
        .all()
    )
    pair = {user_a, user_b}
    matches = [room for room in candidates if {user.id for user in room.users} == pair]
    key = direct_room_key(user_a, user_b)
    for room in matches:
        if room.direct_key == key:
            return room
    return matches[0] if matches else None


def get_or_create_direct_room(db: Session, current_user_id: int, other_user_id: int) -> Tuple[Room, bool]:
    if current_user_id == other_user_id:
        raise ChatError(400, "Cannot open a direct room with yourself")
    missing = _missing_user_ids(db, [current_user_id, other_user_id])
    if missing:
        raise ChatError(404, f"Unknown user ids: {missing}")

    key = direct_room_key(current_user_id, other_user_id)
    try:
        room = _find_direct_room(db, current_user_id, other_user_id)
        if room is not None:
            db.commit()
            logger.debug("Reusing direct room %s for pair %s", room.id, key)
            return get_room(db, room.id), False

        room = Room(name=f"Room_{current_user_id}_{other_user_id}", direct_key=key)
        db.add(room)
        db.flush()
        db.add_all([
            RoomUser(room_id=room.id, user_id=current_user_id),
            RoomUser(room_id=room.id, user_id=other_user_id),
        ])
        db.commit()
    except IntegrityError:
        # another request created the room for this pair first
        db.rollback()
        existing = db.query(Room).filter(Room.direct_key == key).first()
        if existing is None:
            raise
        logger.info("Direct room %s for pair %s was created concurrently, reusing it", existing.id, key)
        return get_room(db, existing.id), False
    except Exception:
        db.rollback()
        raise

    logger.info("Created direct room %s for pair %s", room.id, key)
    return get_room(db, room.id), True


def get_message(db: Session, message_id: int) -> Optional[Message]:
    return db.query(Message).options(
        joinedload(Message.sender),
        selectinload(Message.attachments)
    ).filter(Message.id == message_id).first()


def send_message(
    db: Session,
    room_id: int,
    sender_id: int,
    content: Optional[str] = None,
    media_urls: Optional[List[str]] = None,
    reply_to_id: Optional[int] = None
) -> Message:
    try:
        urls = [validate_media_url(url) for url in (media_urls or [])]
    except ValueError as exc:
        raise ChatError(400, str(exc)) from exc
    has_text = bool((content or "").strip())
    if not has_text and not urls:
        raise ChatError(400, "A message needs content or at least one media url")

    if db.query(Room.id).filter(Room.id == room_id).first() is None:
        raise ChatError(404, "Room not found")
    if not is_member(db, room_id, sender_id):
        raise ChatError(403, "Sender is not a member of this room")
    if reply_to_id is not None:
        parent = db.query(Message.room_id).filter(Message.id == reply_to_id).first()
        if parent is None or parent.room_id != room_id:
            raise ChatError(400, "reply_to_id must reference a message in the same room")

    try:
        message = Message(
            room_id=room_id,
            sender_id=sender_id,
            content=content if has_text else None,
            media_urls=urls or None,
            reply_to_id=reply_to_id
        )
        db.add(message)
        db.flush()
        db.add_all([Media(url=url, type=media_type_for(url), message_id=message.id) for url in urls])
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("User %s sent message %s to room %s (%d attachments)", sender_id, message.id, room_id, len(urls))
    return get_message(db, message.id)


def get_messages(db: Session, room_id: int) -> List[Message]:
    return db.query(Message).options(
        joinedload(Message.sender),
        selectinload(Message.attachments)
    ).filter(
        Message.room_id == room_id
    ).order_by(Message.created_at.asc(), Message.id.asc()).all()


def get_last_message(db: Session, room_id: int) -> Optional[Message]:
    return db.query(Message).options(
        joinedload(Message.sender),
        selectinload(Message.attachments)
    ).filter(
        Message.room_id == room_id
    ).order_by(Message.created_at.desc(), Message.id.desc()).first()


def count_unread(db: Session, room_id: int, user_id: int) -> int:
    return db.query(func.count(Message.id)).filter(
        Message.room_id == room_id,
        Message.sender_id != user_id,
        Message.is_read.is_(False)
    ).scalar() or 0


def get_rooms(db: Session, user_id: int) -> List[dict]:
    """Rooms the user belongs to, newest activity first.

    Each entry holds the room (members loaded), its most recent message or
    None, and the number of messages from other members the user has not
    read. The last message is looked up with one query per room.
    """
    rooms = db.query(Room).options(selectinload(Room.users)).filter(
        Room.id.in_(_rooms_of(user_id))
    ).all()

    previews = []
    for room in rooms:
        previews.append({
            "room": room,
            "last_message": get_last_message(db, room.id),
            "unread_count": count_unread(db, room.id, user_id),
        })

    def last_activity(preview):
        last_message = preview["last_message"]
        stamp = last_message.created_at if last_message else preview["room"].created_at
        return (stamp, last_message.id if last_message else 0, preview["room"].id)

    previews.sort(key=last_activity, reverse=True)
    return previews


def mark_room_read(db: Session, room_id: int, user_id: int) -> int:
    try:
        updated = db.query(Message).filter(
            Message.room_id == room_id,
            Message.sender_id != user_id,
            Message.is_read.is_(False)
        ).update(
            {Message.is_read: True, Message.read_at: func.now()},
            synchronize_session=False
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return updated


def set_reaction(db: Session, message_id: int, user_id: int, reaction: Optional[str]) -> Message:
    message = db.query(Message).filter(Message.id == message_id).first()
    if message is None:
        raise ChatError(404, "Message not found")
    if not is_member(db, message.room_id, user_id):
        raise ChatError(403, "Not a member of this room")

    try:
        message.reaction = (reaction or "").strip() or None
        db.commit()
    except Exception:
        db.rollback()
        raise
    return get_message(db, message_id)
