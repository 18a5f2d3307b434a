"""FastAPI routes for the attachment upload handshake and downloads."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from carechat.domain.messaging import schemas
from carechat.domain.messaging.messages import MessageService
from carechat.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/messaging", tags=["messaging"])

_message_service = MessageService()


@router.post("/attachments/{attachment_id}/confirm", response_model=schemas.AttachmentResponse)
async def confirm_upload_endpoint(
	attachment_id: str,
	payload: schemas.ConfirmUploadRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.AttachmentResponse:
	attachment = await _message_service.confirm_upload(auth_user.id, attachment_id, payload.size_bytes)
	return schemas.AttachmentResponse(attachment=schemas.AttachmentDTO(**attachment.to_dict()))


@router.post("/attachments/{attachment_id}/download-url", response_model=schemas.DownloadUrlResponse)
async def download_url_endpoint(
	attachment_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.DownloadUrlResponse:
	target = await _message_service.get_download_url(auth_user.id, attachment_id)
	return schemas.DownloadUrlResponse(signed_url=target.signed_url, expires_at=target.expires_at)
