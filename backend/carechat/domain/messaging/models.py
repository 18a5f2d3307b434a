"""Domain models for threads, messages and per-user overlays."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple


ThreadKind = str
MemberRole = str
MessageKind = str
UploadStatus = str

THREAD_DIRECT = "direct"
THREAD_GROUP = "group"
ROLE_OWNER = "owner"
ROLE_MEMBER = "member"
KIND_TEXT = "text"
KIND_IMAGE = "image"
KIND_FILE = "file"
UPLOAD_PENDING = "pending"
UPLOAD_DONE = "uploaded"
CONTACT_EVERYONE = "everyone"
CONTACT_PROFESSIONALS = "professionals"
CONTACT_NOBODY = "nobody"
CONTACT_POLICIES = (CONTACT_EVERYONE, CONTACT_PROFESSIONALS, CONTACT_NOBODY)
PRESENCE_ONLINE = "online"
PRESENCE_OFFLINE = "offline"
PRESENCE_STATUSES = (PRESENCE_ONLINE, "busy", "away", PRESENCE_OFFLINE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def direct_key(user_one: str, user_two: str) -> str:
    """Order-independent key for the member pair of a direct thread."""
    first, second = sorted((str(user_one), str(user_two)))
    return f"{first}:{second}"


@dataclass(slots=True)
class Thread:
    id: str
    kind: ThreadKind
    title: Optional[str]
    created_by: str
    created_at: datetime
    direct_key: Optional[str] = None

    def is_direct(self) -> bool:
        return self.kind == THREAD_DIRECT


@dataclass(slots=True)
class ThreadMember:
    thread_id: str
    user_id: str
    role: MemberRole
    joined_at: datetime
    muted: bool = False
    last_read_message_id: Optional[str] = None

    def is_owner(self) -> bool:
        return self.role == ROLE_OWNER


@dataclass(slots=True)
class Attachment:
    id: str
    message_id: str
    file_name: str
    mime_type: str
    byte_size: Optional[int]
    storage_path: str
    created_at: datetime
    upload_status: UploadStatus = UPLOAD_PENDING
    confirmed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "message_id": self.message_id,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "byte_size": self.byte_size,
            "storage_path": self.storage_path,
            "upload_status": self.upload_status,
            "created_at": self.created_at,
            "confirmed_at": self.confirmed_at,
        }


@dataclass(slots=True)
class Message:
    id: str
    thread_id: str
    sender_id: str
    content: Optional[str]
    kind: MessageKind
    created_at: datetime
    reply_to_message_id: Optional[str] = None
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    attachments: Tuple[Attachment, ...] = ()

    def sort_key(self) -> Tuple[datetime, str]:
        return (self.created_at, self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "sender_id": self.sender_id,
            "content": None if self.is_deleted else self.content,
            "kind": self.kind,
            "reply_to_message_id": self.reply_to_message_id,
            "is_edited": self.is_edited,
            "edited_at": self.edited_at,
            "is_deleted": self.is_deleted,
            "deleted_at": self.deleted_at,
            "created_at": self.created_at,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
        }


@dataclass(slots=True)
class Block:
    blocker_id: str
    blocked_id: str
    created_at: datetime


@dataclass(slots=True)
class PinnedMessage:
    user_id: str
    thread_id: str
    message_id: str
    created_at: datetime


@dataclass(slots=True)
class Profile:
    user_id: str
    display_name: str = "User"
    entity_type: str = "business"
    avatar_url: Optional[str] = None
    is_active: bool = True


@dataclass(slots=True)
class ThreadSummary:
    """Per-caller view of a thread for the thread list."""

    thread: Thread
    member_ids: Tuple[str, ...]
    last_message: Optional[Message]
    unread_count: int
    pinned: bool
    muted: bool
    display_title: Optional[str] = None

    @property
    def last_activity_at(self) -> datetime:
        if self.last_message is not None:
            return self.last_message.created_at
        return self.thread.created_at


@dataclass(slots=True)
class AttachmentWithContext:
    attachment: Attachment
    thread_id: str
    message_created_at: datetime


@dataclass(slots=True)
class ChatSettings:
    user_id: str
    accept_new_chats: bool = True
    who_can_contact: str = CONTACT_EVERYONE
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class Presence:
    user_id: str
    status: str = PRESENCE_OFFLINE
    status_message: Optional[str] = None
    last_seen_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class QuickReply:
    id: str
    user_id: str
    title: str
    content: str
    created_at: datetime
    updated_at: datetime
    category: Optional[str] = None
    shortcut: Optional[str] = None
    sort_order: int = 0
