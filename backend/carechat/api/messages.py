"""FastAPI routes for message history and message mutations."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from carechat.domain.messaging import policy, schemas
from carechat.domain.messaging.history import HistoryService
from carechat.domain.messaging.membership import PIN_MESSAGE, MembershipService
from carechat.domain.messaging.messages import MessageService
from carechat.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/messaging", tags=["messaging"])

_membership = MembershipService()
_message_service = MessageService(membership=_membership)
_history_service = HistoryService(membership=_membership)


@router.get("/threads/{thread_id}/messages", response_model=schemas.MessagePageResponse)
async def list_messages_endpoint(
	thread_id: str,
	cursor: Optional[str] = Query(default=None),
	limit: int = Query(default=policy.PAGE_DEFAULT, ge=1, le=policy.PAGE_MAX),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MessagePageResponse:
	return await _history_service.list_messages(auth_user.id, thread_id, cursor=cursor, limit=limit)


@router.post("/threads/{thread_id}/messages", response_model=schemas.SendMessageResponse)
async def send_message_endpoint(
	thread_id: str,
	payload: schemas.SendMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.SendMessageResponse:
	return await _message_service.send(auth_user.id, thread_id, payload)


@router.post("/threads/{thread_id}/messages/{message_id}/pin", response_model=schemas.PinResponse)
async def pin_message_endpoint(
	thread_id: str,
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.PinResponse:
	pinned = await _membership.toggle_pin(PIN_MESSAGE, auth_user.id, thread_id, message_id)
	return schemas.PinResponse(pinned=pinned)


@router.patch("/messages/{message_id}", response_model=schemas.MessageResponse)
async def edit_message_endpoint(
	message_id: str,
	payload: schemas.EditMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MessageResponse:
	message = await _message_service.edit(auth_user.id, message_id, payload.content)
	return schemas.MessageResponse(message=schemas.MessageDTO(**message.to_dict()))


@router.delete("/messages/{message_id}", response_model=schemas.MessageResponse)
async def delete_message_endpoint(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MessageResponse:
	message = await _message_service.soft_delete(auth_user.id, message_id)
	return schemas.MessageResponse(message=schemas.MessageDTO(**message.to_dict()))


@router.post("/messages/{message_id}/hide", response_model=schemas.OkResponse)
async def hide_message_endpoint(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.OkResponse:
	await _message_service.hide_for_me(auth_user.id, message_id)
	return schemas.OkResponse()
