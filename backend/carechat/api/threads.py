"""FastAPI routes for threads: list, create, membership and thread views."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from carechat.domain.messaging import schemas
from carechat.domain.messaging.history import HistoryService
from carechat.domain.messaging.membership import PIN_THREAD, MembershipService
from carechat.domain.messaging.threads import ThreadService
from carechat.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/messaging", tags=["messaging"])

_membership = MembershipService()
_thread_service = ThreadService(membership=_membership)
_history_service = HistoryService(membership=_membership)


@router.get("/threads", response_model=schemas.ThreadListResponse)
async def list_threads_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ThreadListResponse:
	threads = await _history_service.list_threads(auth_user.id)
	return schemas.ThreadListResponse(threads=threads)


@router.post("/threads/direct", response_model=schemas.ThreadCreatedResponse)
async def open_direct_endpoint(
	payload: schemas.OpenDirectRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ThreadCreatedResponse:
	thread_id = await _thread_service.open_direct(auth_user.id, payload.other_user_id)
	return schemas.ThreadCreatedResponse(thread_id=thread_id)


@router.post("/threads/group", response_model=schemas.ThreadCreatedResponse)
async def create_group_endpoint(
	payload: schemas.CreateGroupRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ThreadCreatedResponse:
	thread_id = await _thread_service.create_group(auth_user.id, payload.title, payload.member_ids)
	return schemas.ThreadCreatedResponse(thread_id=thread_id)


@router.post("/threads/{thread_id}/members", response_model=schemas.MembersAddedResponse)
async def add_members_endpoint(
	thread_id: str,
	payload: schemas.AddMembersRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MembersAddedResponse:
	added = await _thread_service.add_members(auth_user.id, thread_id, payload.member_ids)
	return schemas.MembersAddedResponse(added=added)


@router.post("/threads/{thread_id}/mute", response_model=schemas.MuteResponse)
async def mute_endpoint(
	thread_id: str,
	payload: schemas.MuteRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MuteResponse:
	muted = await _membership.set_muted(auth_user.id, thread_id, payload.muted)
	return schemas.MuteResponse(muted=muted)


@router.post("/threads/{thread_id}/leave", response_model=schemas.OkResponse)
async def leave_endpoint(
	thread_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.OkResponse:
	await _membership.leave(auth_user.id, thread_id)
	return schemas.OkResponse()


@router.post("/threads/{thread_id}/pin", response_model=schemas.PinResponse)
async def pin_thread_endpoint(
	thread_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.PinResponse:
	pinned = await _membership.toggle_pin(PIN_THREAD, auth_user.id, thread_id)
	return schemas.PinResponse(pinned=pinned)


@router.get("/threads/{thread_id}/info", response_model=schemas.ThreadInfoResponse)
async def thread_info_endpoint(
	thread_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ThreadInfoResponse:
	return await _history_service.thread_info(auth_user.id, thread_id)


@router.get("/threads/{thread_id}/search", response_model=schemas.SearchResponse)
async def search_endpoint(
	thread_id: str,
	q: str = Query(default="", max_length=200),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.SearchResponse:
	messages = await _history_service.search(auth_user.id, thread_id, q)
	return schemas.SearchResponse(messages=messages)
