"""FastAPI routes for user-level moderation: block and report."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from carechat.domain.messaging import schemas
from carechat.domain.messaging.membership import MembershipService
from carechat.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/messaging", tags=["messaging"])

_membership = MembershipService()


@router.post("/users/{user_id}/block", response_model=schemas.BlockResponse)
async def block_toggle_endpoint(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.BlockResponse:
	blocked = await _membership.toggle_block(auth_user.id, user_id)
	return schemas.BlockResponse(blocked=blocked)


@router.post("/users/{user_id}/report", response_model=schemas.OkResponse)
async def report_endpoint(
	user_id: str,
	payload: Optional[schemas.ReportRequest] = None,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.OkResponse:
	payload = payload or schemas.ReportRequest()
	await _membership.report(auth_user.id, user_id, reason=payload.reason, message_id=payload.message_id)
	return schemas.OkResponse()
