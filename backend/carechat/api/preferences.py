"""FastAPI routes for chat settings and quick replies."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from carechat.domain.messaging import models, schemas
from carechat.domain.messaging.preferences import PreferencesService
from carechat.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/messaging", tags=["messaging"])

_preferences = PreferencesService()


def _settings_dto(value: models.ChatSettings) -> schemas.ChatSettingsDTO:
	return schemas.ChatSettingsDTO.model_validate(value, from_attributes=True)


def _quick_reply_dto(value: models.QuickReply) -> schemas.QuickReplyDTO:
	return schemas.QuickReplyDTO.model_validate(value, from_attributes=True)


@router.get("/settings", response_model=schemas.SettingsResponse)
async def get_settings_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.SettingsResponse:
	value = await _preferences.get_settings(auth_user.id)
	return schemas.SettingsResponse(settings=_settings_dto(value))


@router.put("/settings", response_model=schemas.SettingsResponse)
async def update_settings_endpoint(
	payload: schemas.SettingsUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.SettingsResponse:
	value = await _preferences.update_settings(
		auth_user.id,
		accept_new_chats=payload.accept_new_chats,
		who_can_contact=payload.who_can_contact,
	)
	return schemas.SettingsResponse(settings=_settings_dto(value))


@router.get("/quick-replies", response_model=schemas.QuickReplyListResponse)
async def list_quick_replies_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.QuickReplyListResponse:
	replies = await _preferences.list_quick_replies(auth_user.id)
	return schemas.QuickReplyListResponse(quick_replies=[_quick_reply_dto(r) for r in replies])


@router.post("/quick-replies", response_model=schemas.QuickReplyResponse)
async def create_quick_reply_endpoint(
	payload: schemas.QuickReplyCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.QuickReplyResponse:
	reply = await _preferences.create_quick_reply(
		auth_user.id,
		title=payload.title,
		content=payload.content,
		category=payload.category,
		shortcut=payload.shortcut,
		sort_order=payload.sort_order,
	)
	return schemas.QuickReplyResponse(quick_reply=_quick_reply_dto(reply))


@router.patch("/quick-replies/{reply_id}", response_model=schemas.QuickReplyResponse)
async def update_quick_reply_endpoint(
	reply_id: str,
	payload: schemas.QuickReplyUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.QuickReplyResponse:
	reply = await _preferences.update_quick_reply(auth_user.id, reply_id, payload.model_dump(exclude_unset=True))
	return schemas.QuickReplyResponse(quick_reply=_quick_reply_dto(reply))


@router.delete("/quick-replies/{reply_id}", response_model=schemas.OkResponse)
async def delete_quick_reply_endpoint(
	reply_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.OkResponse:
	await _preferences.delete_quick_reply(auth_user.id, reply_id)
	return schemas.OkResponse()
