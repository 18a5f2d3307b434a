import pytest

from carechat.domain.messaging.exceptions import Conflict, NotAMember, NotFound, ValidationFailed
from carechat.domain.messaging.membership import PIN_MESSAGE, PIN_THREAD, MembershipService
from carechat.domain.messaging.messages import MessageService
from carechat.domain.messaging.repo import MessagingRepository
from carechat.domain.messaging.schemas import SendMessageRequest
from carechat.domain.messaging.threads import ThreadService


def _services(clock):
    membership = MembershipService(clock=clock)
    return membership, ThreadService(membership=membership, clock=clock), MessageService(membership=membership, clock=clock)


@pytest.mark.asyncio
async def test_mute_is_per_member(clock):
    membership, threads, _ = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    assert await membership.set_muted("alice", thread_id, True) is True
    repo = MessagingRepository()
    assert (await repo.get_member(thread_id, "alice")).muted is True
    assert (await repo.get_member(thread_id, "bob")).muted is False
    assert await membership.set_muted("alice", thread_id, False) is False
    with pytest.raises(NotAMember):
        await membership.set_muted("mallory", thread_id, True)


@pytest.mark.asyncio
async def test_leave_group_but_not_direct(clock):
    membership, threads, _ = _services(clock)
    direct_id = await threads.open_direct("alice", "bob")
    with pytest.raises(Conflict) as exc:
        await membership.leave("alice", direct_id)
    assert exc.value.code == "cannot_leave_direct"

    group_id = await threads.create_group("alice", "Group", ["bob", "carol"])
    await membership.leave("bob", group_id)
    members = await MessagingRepository().list_members(group_id)
    assert sorted(m.user_id for m in members) == ["alice", "carol"]
    with pytest.raises(NotAMember):
        await membership.leave("bob", group_id)
    with pytest.raises(NotFound):
        await membership.leave("bob", "missing")


@pytest.mark.asyncio
async def test_everyone_can_leave_and_group_remains(clock):
    membership, threads, _ = _services(clock)
    group_id = await threads.create_group("alice", "Group", ["bob", "carol"])
    for user in ("alice", "bob", "carol"):
        await membership.leave(user, group_id)
    repo = MessagingRepository()
    assert await repo.get_thread(group_id) is not None
    assert await repo.list_members(group_id) == []


@pytest.mark.asyncio
async def test_block_toggle(clock):
    membership, threads, _ = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    assert await membership.toggle_block("alice", "bob") is True
    repo = MessagingRepository()
    assert await repo.block_exists_between("bob", "alice") is True
    # Blocking leaves membership untouched.
    assert await repo.get_member(thread_id, "bob") is not None
    assert await membership.toggle_block("alice", "bob") is False
    assert await repo.block_exists_between("alice", "bob") is False
    with pytest.raises(ValidationFailed) as exc:
        await membership.toggle_block("alice", "alice")
    assert exc.value.code == "cannot_block_self"


@pytest.mark.asyncio
async def test_pin_toggles(clock):
    membership, threads, messages = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    other_id = await threads.open_direct("alice", "carol")
    sent = await messages.send("alice", thread_id, SendMessageRequest(content="pin me"))
    elsewhere = await messages.send("alice", other_id, SendMessageRequest(content="other"))

    assert await membership.toggle_pin(PIN_THREAD, "alice", thread_id) is True
    assert await membership.toggle_pin(PIN_THREAD, "alice", thread_id) is False
    assert await membership.toggle_pin(PIN_MESSAGE, "alice", thread_id, sent.message_id) is True

    with pytest.raises(ValidationFailed) as exc:
        await membership.toggle_pin(PIN_MESSAGE, "alice", thread_id)
    assert exc.value.code == "missing_message_id"
    with pytest.raises(NotFound):
        await membership.toggle_pin(PIN_MESSAGE, "alice", thread_id, elsewhere.message_id)
    with pytest.raises(NotAMember):
        await membership.toggle_pin(PIN_THREAD, "carol", thread_id)


@pytest.mark.asyncio
async def test_report_appends_event(clock, fake_redis):
    membership, _, _ = _services(clock)
    await membership.report("alice", "bob", reason="spam", message_id="m1")
    entries = await fake_redis.xrange("x:messaging.events")
    reported = [fields for _, fields in entries if fields["event"] == "user_reported"]
    assert reported[0]["meta_reported_id"] == "bob"
    assert reported[0]["message_id"] == "m1"
    with pytest.raises(ValidationFailed) as exc:
        await membership.report("alice", "alice")
    assert exc.value.code == "cannot_report_self"
