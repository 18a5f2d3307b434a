import pytest

from carechat.domain.messaging.exceptions import NotFound, ValidationFailed
from carechat.domain.messaging.preferences import PreferencesService


@pytest.mark.asyncio
async def test_settings_default_and_update(clock):
    service = PreferencesService(clock=clock)
    current = await service.get_settings("alice")
    assert current.accept_new_chats is True
    assert current.updated_at is None

    updated = await service.update_settings("alice", accept_new_chats=False)
    assert updated.accept_new_chats is False
    assert (await service.get_settings("alice")).accept_new_chats is False
    assert await service.accepts_new_chats("bob") is True


@pytest.mark.asyncio
async def test_contact_policy_update_keeps_other_settings(clock):
    service = PreferencesService(clock=clock)
    assert await service.contact_policy("alice") == "everyone"
    await service.update_settings("alice", accept_new_chats=False)

    updated = await service.update_settings("alice", who_can_contact="professionals")
    assert updated.who_can_contact == "professionals"
    assert updated.accept_new_chats is False
    assert (await service.get_settings("alice")).who_can_contact == "professionals"

    with pytest.raises(ValidationFailed) as exc:
        await service.update_settings("alice", who_can_contact="friends")
    assert exc.value.code == "invalid_contact_policy"
    assert await service.contact_policy("alice") == "professionals"


@pytest.mark.asyncio
async def test_quick_reply_crud(clock):
    service = PreferencesService(clock=clock)
    later = await service.create_quick_reply("dr", title="Follow-up", content="See you next week", sort_order=2)
    first = await service.create_quick_reply("dr", title=" Hours ", content="Open 9-5", shortcut="/hours")
    assert first.title == "Hours"

    listed = await service.list_quick_replies("dr")
    assert [q.id for q in listed] == [first.id, later.id]
    assert await service.list_quick_replies("someone-else") == []

    changed = await service.update_quick_reply("dr", later.id, {"content": "See you soon", "category": "visits"})
    assert changed.content == "See you soon"
    assert changed.category == "visits"
    assert changed.updated_at > later.updated_at

    with pytest.raises(NotFound):
        await service.update_quick_reply("intruder", later.id, {"title": "x"})
    with pytest.raises(NotFound):
        await service.delete_quick_reply("intruder", later.id)

    await service.delete_quick_reply("dr", later.id)
    assert [q.id for q in await service.list_quick_replies("dr")] == [first.id]


@pytest.mark.asyncio
async def test_quick_reply_validation(clock):
    service = PreferencesService(clock=clock)
    with pytest.raises(ValidationFailed) as exc:
        await service.create_quick_reply("dr", title=" ", content="x")
    assert exc.value.code == "missing_title"
    with pytest.raises(ValidationFailed) as exc:
        await service.create_quick_reply("dr", title="x", content="")
    assert exc.value.code == "missing_content"
