import pytest

from carechat.domain.messaging.exceptions import ValidationFailed
from carechat.domain.messaging.presence import PresenceService


@pytest.mark.asyncio
async def test_unknown_user_reads_as_offline(clock):
    presence = await PresenceService(clock=clock).get("nobody-yet")
    assert presence.status == "offline"
    assert presence.last_seen_at is None
    assert presence.status_message is None


@pytest.mark.asyncio
async def test_update_defaults_to_online_and_stamps_last_seen(clock):
    service = PresenceService(clock=clock)
    first = await service.update("dr", status_message="  In clinic until 5  ")
    assert first.status == "online"
    assert first.status_message == "In clinic until 5"
    assert first.last_seen_at == first.updated_at

    second = await service.update("dr", status="away")
    assert second.status == "away"
    assert second.status_message is None
    assert second.last_seen_at > first.last_seen_at

    stored = await service.get("dr")
    assert stored.status == "away"
    assert stored.last_seen_at == second.last_seen_at


@pytest.mark.asyncio
async def test_update_rejects_bad_input(clock):
    service = PresenceService(clock=clock)
    with pytest.raises(ValidationFailed) as exc:
        await service.update("dr", status="invisible")
    assert exc.value.code == "invalid_status"
    with pytest.raises(ValidationFailed) as exc:
        await service.update("dr", status="busy", status_message="x" * 141)
    assert exc.value.code == "status_message_too_long"
    assert (await service.get("dr")).status == "offline"
