"""FastAPI routes for presence and the contact directory."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from carechat.domain.messaging import models, schemas
from carechat.domain.messaging.directory import get_directory, search_contacts
from carechat.domain.messaging.presence import PresenceService
from carechat.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/messaging", tags=["messaging"])

_presence = PresenceService()


def _presence_dto(value: models.Presence) -> schemas.PresenceDTO:
	return schemas.PresenceDTO.model_validate(value, from_attributes=True)


@router.put("/presence", response_model=schemas.PresenceResponse)
async def update_presence_endpoint(
	payload: schemas.PresenceUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.PresenceResponse:
	value = await _presence.update(auth_user.id, status=payload.status, status_message=payload.status_message)
	return schemas.PresenceResponse(presence=_presence_dto(value))


@router.get("/presence/{user_id}", response_model=schemas.PresenceResponse)
async def get_presence_endpoint(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.PresenceResponse:
	value = await _presence.get(user_id)
	return schemas.PresenceResponse(presence=_presence_dto(value))


@router.get("/directory", response_model=schemas.DirectorySearchResponse)
async def directory_search_endpoint(
	q: str = Query(default="", max_length=200),
	include_patients: bool = Query(default=False, alias="includePatients"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.DirectorySearchResponse:
	profiles = await search_contacts(get_directory(), auth_user.id, q, include_patients=include_patients)
	return schemas.DirectorySearchResponse(
		users=[schemas.DirectoryEntryDTO.model_validate(p, from_attributes=True) for p in profiles]
	)
