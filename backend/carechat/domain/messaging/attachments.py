"""Attachment helpers: naming, storage layout and upload reservations."""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import ulid

from carechat.domain.messaging import models, policy, schemas
from carechat.domain.messaging.exceptions import ValidationFailed
from carechat.infra.object_store import ObjectStore

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\-]+")
DEFAULT_MIME = "application/octet-stream"


def sanitize_file_name(name: str) -> str:
	cleaned = _UNSAFE_CHARS.sub("_", (name or "").strip())
	return cleaned or "file"


def build_storage_path(thread_id: str, message_id: str, file_name: str, *, nonce: Optional[str] = None) -> str:
	"""``<thread>/<message>/<nonce>_<safe name>``; the nonce keeps repeated names apart."""
	return f"{thread_id}/{message_id}/{nonce or uuid.uuid4().hex}_{sanitize_file_name(file_name)}"


def derive_kind(mime_types: Sequence[str]) -> models.MessageKind:
	if not mime_types:
		return models.KIND_TEXT
	if (mime_types[0] or "").lower().startswith("image/"):
		return models.KIND_IMAGE
	return models.KIND_FILE


def validate_declarations(declarations: Sequence[schemas.AttachmentDeclaration]) -> None:
	if len(declarations) > policy.MAX_ATTACHMENTS:
		raise ValidationFailed(
			"too_many_attachments",
			f"A message can carry at most {policy.MAX_ATTACHMENTS} attachments",
		)
	for declaration in declarations:
		if not declaration.file_name.strip():
			raise ValidationFailed("invalid_file_name", "Attachment file name is required")
		policy.ensure_attachment_size(declaration.size_bytes)


async def reserve(
	store: ObjectStore,
	*,
	thread_id: str,
	message_id: str,
	declarations: Sequence[schemas.AttachmentDeclaration],
	now: datetime,
) -> Tuple[List[models.Attachment], List[schemas.PendingUpload]]:
	"""Issue a signed upload target per declaration and build the pending rows.

	Nothing is persisted here; the caller writes the rows together with the
	message once every target was issued.
	"""
	rows: List[models.Attachment] = []
	uploads: List[schemas.PendingUpload] = []
	for declaration in declarations:
		path = build_storage_path(thread_id, message_id, declaration.file_name)
		target = await store.create_upload_target(path)
		attachment = models.Attachment(
			id=str(ulid.new()),
			message_id=message_id,
			file_name=declaration.file_name.strip(),
			mime_type=declaration.mime_type or DEFAULT_MIME,
			byte_size=declaration.size_bytes,
			storage_path=target.path,
			created_at=now,
		)
		rows.append(attachment)
		uploads.append(
			schemas.PendingUpload(
				attachment_id=attachment.id,
				storage_path=target.path,
				signed_url=target.signed_url,
				token=target.token,
				expires_at=target.expires_at,
			)
		)
	return rows, uploads
