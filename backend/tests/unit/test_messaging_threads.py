import pytest

from carechat.domain.messaging import models
from carechat.domain.messaging.directory import StaticDirectory
from carechat.domain.messaging.exceptions import Blocked, Conflict, Forbidden, NotAMember, NotFound, ValidationFailed
from carechat.domain.messaging.membership import MembershipService
from carechat.domain.messaging.preferences import PreferencesService
from carechat.domain.messaging.repo import DirectThreadExists, MessagingRepository
from carechat.domain.messaging.threads import ThreadService


def _services(clock):
    membership = MembershipService(clock=clock)
    threads = ThreadService(membership=membership, clock=clock)
    return membership, threads


@pytest.mark.asyncio
async def test_open_direct_is_unique_per_pair(clock):
    _, threads = _services(clock)
    first = await threads.open_direct("alice", "bob")
    again = await threads.open_direct("alice", "bob")
    reverse = await threads.open_direct("bob", "alice")
    assert first == again == reverse

    members = await MessagingRepository().list_members(first)
    assert sorted(m.user_id for m in members) == ["alice", "bob"]
    assert all(m.role == models.ROLE_MEMBER for m in members)


@pytest.mark.asyncio
async def test_open_direct_rejects_self(clock):
    _, threads = _services(clock)
    with pytest.raises(ValidationFailed) as exc:
        await threads.open_direct("alice", "alice")
    assert exc.value.code == "cannot_message_self"


@pytest.mark.asyncio
@pytest.mark.parametrize("blocker,blocked", [("alice", "bob"), ("bob", "alice")])
async def test_open_direct_blocked_in_either_direction(clock, blocker, blocked):
    membership, threads = _services(clock)
    await membership.toggle_block(blocker, blocked)
    with pytest.raises(Blocked) as exc:
        await threads.open_direct("alice", "bob")
    assert exc.value.kind == "conflict"
    assert exc.value.code == "blocked"


@pytest.mark.asyncio
async def test_open_direct_respects_accept_new_chats(clock):
    _, threads = _services(clock)
    preferences = PreferencesService(clock=clock)
    existing = await threads.open_direct("alice", "bob")
    await preferences.update_settings("bob", accept_new_chats=False)

    # Existing conversations stay reachable.
    assert await threads.open_direct("alice", "bob") == existing
    await preferences.update_settings("carol", accept_new_chats=False)
    with pytest.raises(Conflict) as exc:
        await threads.open_direct("alice", "carol")
    assert exc.value.code == "not_accepting_chats"


@pytest.mark.asyncio
async def test_open_direct_respects_contact_policy(clock):
    directory = StaticDirectory(
        {
            "dr-lee": models.Profile(user_id="dr-lee", display_name="Dr. Lee", entity_type="doctor"),
            "pat": models.Profile(user_id="pat", display_name="Pat", entity_type="patient"),
        }
    )
    membership = MembershipService(clock=clock)
    threads = ThreadService(membership=membership, directory=directory, clock=clock)
    preferences = PreferencesService(clock=clock)
    await preferences.update_settings("clinic", who_can_contact=models.CONTACT_PROFESSIONALS)
    await preferences.update_settings("hermit", who_can_contact=models.CONTACT_NOBODY)

    assert await threads.open_direct("dr-lee", "clinic")
    with pytest.raises(Forbidden) as exc:
        await threads.open_direct("pat", "clinic")
    assert exc.value.code == "contact_restricted"

    with pytest.raises(Conflict) as exc:
        await threads.open_direct("dr-lee", "hermit")
    assert exc.value.code == "not_accepting_chats"


@pytest.mark.asyncio
async def test_contact_policy_only_gates_new_threads(clock):
    directory = StaticDirectory({"pat": models.Profile(user_id="pat", entity_type="patient")})
    membership = MembershipService(clock=clock)
    threads = ThreadService(membership=membership, directory=directory, clock=clock)
    existing = await threads.open_direct("pat", "dr-lee")
    await PreferencesService(clock=clock).update_settings("dr-lee", who_can_contact=models.CONTACT_NOBODY)
    assert await threads.open_direct("pat", "dr-lee") == existing


class _RacingRepository(MessagingRepository):
    """Simulates another writer creating the same direct thread first."""

    def __init__(self, clock):
        super().__init__()
        self._clock = clock
        self.winner_id = None

    async def create_thread(self, thread, members):
        if thread.direct_key and self.winner_id is None:
            winner = models.Thread(
                id="winner-thread",
                kind=models.THREAD_DIRECT,
                title=None,
                created_by="bob",
                created_at=self._clock(),
                direct_key=thread.direct_key,
            )
            await super().create_thread(
                winner,
                [
                    models.ThreadMember(thread_id=winner.id, user_id=m.user_id, role=m.role, joined_at=m.joined_at)
                    for m in members
                ],
            )
            self.winner_id = winner.id
        return await super().create_thread(thread, members)


@pytest.mark.asyncio
async def test_open_direct_race_returns_winner(clock):
    repo = _RacingRepository(clock)
    membership = MembershipService(repository=repo, clock=clock)
    threads = ThreadService(membership=membership, clock=clock)
    thread_id = await threads.open_direct("alice", "bob")
    assert thread_id == "winner-thread"
    assert await repo.direct_thread_ids_for("alice") == ["winner-thread"]


@pytest.mark.asyncio
async def test_memory_store_enforces_direct_key():
    repo = MessagingRepository()
    now = models.utcnow()
    key = models.direct_key("a", "b")
    await repo.create_thread(models.Thread(id="t1", kind="direct", title=None, created_by="a", created_at=now, direct_key=key), [])
    with pytest.raises(DirectThreadExists):
        await repo.create_thread(
            models.Thread(id="t2", kind="direct", title=None, created_by="b", created_at=now, direct_key=key), []
        )


@pytest.mark.asyncio
async def test_create_group_assigns_roles(clock):
    _, threads = _services(clock)
    thread_id = await threads.create_group("owner", "  Care team ", ["nurse", "doctor", "nurse", "owner", " "])
    repo = MessagingRepository()
    thread = await repo.get_thread(thread_id)
    assert thread.kind == models.THREAD_GROUP
    assert thread.title == "Care team"
    assert thread.direct_key is None
    roles = {m.user_id: m.role for m in await repo.list_members(thread_id)}
    assert roles == {"owner": "owner", "nurse": "member", "doctor": "member"}


@pytest.mark.asyncio
async def test_create_group_validation(clock):
    _, threads = _services(clock)
    with pytest.raises(ValidationFailed) as exc:
        await threads.create_group("owner", "Pair", ["other", "owner"])
    assert exc.value.code == "too_few_members"

    with pytest.raises(ValidationFailed) as exc:
        await threads.create_group("owner", "   ", ["a", "b"])
    assert exc.value.code == "missing_title"

    with pytest.raises(ValidationFailed) as exc:
        await threads.create_group("owner", "x" * 121, ["a", "b"])
    assert exc.value.code == "title_too_long"


@pytest.mark.asyncio
async def test_add_members_owner_only_and_groups_only(clock):
    _, threads = _services(clock)
    group_id = await threads.create_group("owner", "Group", ["a", "b"])

    added = await threads.add_members("owner", group_id, ["c", "a", "owner"])
    assert added == ["c"]

    with pytest.raises(Forbidden) as exc:
        await threads.add_members("a", group_id, ["d"])
    assert exc.value.code == "forbidden"

    with pytest.raises(NotAMember):
        await threads.add_members("stranger", group_id, ["d"])

    direct_id = await threads.open_direct("owner", "a")
    with pytest.raises(Conflict) as exc:
        await threads.add_members("owner", direct_id, ["b"])
    assert exc.value.code == "cannot_add_to_direct"

    with pytest.raises(NotFound):
        await threads.add_members("owner", "missing", ["b"])
