"""Pydantic schemas for the messaging API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class OpenDirectRequest(BaseModel):
    other_user_id: str = Field(..., min_length=1, max_length=64)


class CreateGroupRequest(BaseModel):
    title: str = Field(default="", max_length=512)
    member_ids: List[str] = Field(default_factory=list, max_length=256)


class AddMembersRequest(BaseModel):
    member_ids: List[str] = Field(..., min_length=1, max_length=256)


class MuteRequest(BaseModel):
    muted: bool


class AttachmentDeclaration(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(default="application/octet-stream", max_length=255)
    size_bytes: Optional[int] = Field(default=None, ge=0, description="Declared size, checked before signing")


class SendMessageRequest(BaseModel):
    content: Optional[str] = None
    reply_to_message_id: Optional[str] = None
    attachments: List[AttachmentDeclaration] = Field(default_factory=list)


class EditMessageRequest(BaseModel):
    content: str


class ConfirmUploadRequest(BaseModel):
    size_bytes: int


class ReportRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)
    message_id: Optional[str] = None


class SettingsUpdateRequest(BaseModel):
    accept_new_chats: Optional[bool] = None
    who_can_contact: Optional[str] = None


class PresenceUpdateRequest(BaseModel):
    status: Optional[str] = None
    status_message: Optional[str] = None


class QuickReplyCreateRequest(BaseModel):
    title: str = Field(default="", max_length=120)
    content: str = Field(default="", max_length=4000)
    category: Optional[str] = Field(default=None, max_length=60)
    shortcut: Optional[str] = Field(default=None, max_length=40)
    sort_order: int = 0


class QuickReplyUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=120)
    content: Optional[str] = Field(default=None, max_length=4000)
    category: Optional[str] = Field(default=None, max_length=60)
    shortcut: Optional[str] = Field(default=None, max_length=40)
    sort_order: Optional[int] = None


class AttachmentDTO(BaseModel):
    id: str
    message_id: str
    file_name: str
    mime_type: str
    byte_size: Optional[int] = None
    storage_path: str
    upload_status: str
    created_at: datetime
    confirmed_at: Optional[datetime] = None


class MessageDTO(BaseModel):
    id: str
    thread_id: str
    sender_id: str
    content: Optional[str] = None
    kind: str
    reply_to_message_id: Optional[str] = None
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime
    attachments: List[AttachmentDTO] = Field(default_factory=list)


class PendingUpload(BaseModel):
    attachment_id: str
    storage_path: str
    signed_url: str
    token: str
    expires_at: datetime


class SendMessageResponse(BaseModel):
    ok: bool = True
    message_id: str
    pending_uploads: List[PendingUpload] = Field(default_factory=list)


class MessageResponse(BaseModel):
    ok: bool = True
    message: MessageDTO


class MessagePageResponse(BaseModel):
    ok: bool = True
    messages: List[MessageDTO]
    next_cursor: Optional[str] = None


class SearchResponse(BaseModel):
    ok: bool = True
    messages: List[MessageDTO]


class ThreadCreatedResponse(BaseModel):
    ok: bool = True
    thread_id: str


class MembersAddedResponse(BaseModel):
    ok: bool = True
    added: List[str]


class ThreadSummaryDTO(BaseModel):
    id: str
    kind: str
    title: Optional[str] = None
    display_title: Optional[str] = None
    member_ids: List[str]
    last_message: Optional[MessageDTO] = None
    unread_count: int
    pinned: bool
    muted: bool
    last_activity_at: datetime


class ThreadListResponse(BaseModel):
    ok: bool = True
    threads: List[ThreadSummaryDTO]


class MemberProfileDTO(BaseModel):
    user_id: str
    role: str
    joined_at: datetime
    display_name: str
    entity_type: str
    avatar_url: Optional[str] = None


class ThreadAttachmentDTO(AttachmentDTO):
    thread_id: str
    message_created_at: datetime


class PinnedMessageDTO(BaseModel):
    message_id: str
    thread_id: str
    created_at: datetime


class ThreadInfoResponse(BaseModel):
    ok: bool = True
    members: List[MemberProfileDTO]
    attachments: List[ThreadAttachmentDTO]
    pinned_messages: List[PinnedMessageDTO]


class DownloadUrlResponse(BaseModel):
    ok: bool = True
    signed_url: str
    expires_at: datetime


class AttachmentResponse(BaseModel):
    ok: bool = True
    attachment: AttachmentDTO


class MuteResponse(BaseModel):
    ok: bool = True
    muted: bool


class PinResponse(BaseModel):
    ok: bool = True
    pinned: bool


class BlockResponse(BaseModel):
    ok: bool = True
    blocked: bool


class OkResponse(BaseModel):
    ok: bool = True


class ChatSettingsDTO(BaseModel):
    user_id: str
    accept_new_chats: bool
    who_can_contact: str
    updated_at: Optional[datetime] = None


class SettingsResponse(BaseModel):
    ok: bool = True
    settings: ChatSettingsDTO


class PresenceDTO(BaseModel):
    user_id: str
    status: str
    status_message: Optional[str] = None
    last_seen_at: Optional[datetime] = None


class PresenceResponse(BaseModel):
    ok: bool = True
    presence: PresenceDTO


class DirectoryEntryDTO(BaseModel):
    user_id: str
    display_name: str
    entity_type: str
    avatar_url: Optional[str] = None


class DirectorySearchResponse(BaseModel):
    ok: bool = True
    users: List[DirectoryEntryDTO]


class QuickReplyDTO(BaseModel):
    id: str
    title: str
    content: str
    category: Optional[str] = None
    shortcut: Optional[str] = None
    sort_order: int = 0
    created_at: datetime
    updated_at: datetime


class QuickReplyResponse(BaseModel):
    ok: bool = True
    quick_reply: QuickReplyDTO


class QuickReplyListResponse(BaseModel):
    ok: bool = True
    quick_replies: List[QuickReplyDTO]
