import asyncio

import asyncpg
import pytest

from carechat.domain.messaging import models
from carechat.domain.messaging.directory import StaticDirectory
from carechat.domain.messaging.exceptions import NotAMember, ValidationFailed
from carechat.domain.messaging.history import HistoryService, decode_cursor, encode_cursor
from carechat.domain.messaging.membership import PIN_MESSAGE, PIN_THREAD, MembershipService
from carechat.domain.messaging.messages import MessageService
from carechat.domain.messaging.repo import MessagingRepository
from carechat.domain.messaging.schemas import AttachmentDeclaration, SendMessageRequest
from carechat.domain.messaging.threads import ThreadService
from carechat.settings import settings


class _BrokenDirectory:
    async def lookup(self, user_ids):
        raise RuntimeError("directory offline")


def _services(clock, directory=None):
    membership = MembershipService(clock=clock)
    threads = ThreadService(membership=membership, clock=clock)
    messages = MessageService(membership=membership, clock=clock)
    history = HistoryService(membership=membership, directory=directory or StaticDirectory())
    return membership, threads, messages, history


async def _last_read(thread_id, user_id):
    member = await MessagingRepository().get_member(thread_id, user_id)
    return member.last_read_message_id


@pytest.mark.asyncio
async def test_pagination_reproduces_full_history(clock, monkeypatch):
    monkeypatch.setattr(settings, "send_rate_limit_per_minute", 1000)
    _, threads, messages, history = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    sent = []
    for index in range(100):
        result = await messages.send("alice", thread_id, SendMessageRequest(content=f"message {index}"))
        sent.append(result.message_id)

    pages = []
    cursor = None
    while True:
        page = await history.list_messages("bob", thread_id, cursor=cursor, limit=40)
        pages.append(page)
        if page.next_cursor is None:
            break
        cursor = page.next_cursor

    assert [len(p.messages) for p in pages] == [40, 40, 20]
    collected = [m.id for page in reversed(pages) for m in page.messages]
    assert collected == sent
    assert [m.content for m in pages[-1].messages][:2] == ["message 0", "message 1"]


@pytest.mark.asyncio
async def test_exact_page_has_no_next_cursor(clock):
    _, threads, messages, history = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    for index in range(3):
        await messages.send("alice", thread_id, SendMessageRequest(content=str(index)))
    page = await history.list_messages("alice", thread_id, limit=3)
    assert len(page.messages) == 3
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_read_receipt_only_moves_forward(clock):
    _, threads, messages, history = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    ids = [(await messages.send("alice", thread_id, SendMessageRequest(content=str(i)))).message_id for i in range(5)]

    head = await history.list_messages("bob", thread_id, limit=2)
    assert [m.id for m in head.messages] == ids[3:]
    assert await _last_read(thread_id, "bob") == ids[4]

    # Older pages never move the marker.
    await history.list_messages("bob", thread_id, cursor=head.next_cursor, limit=2)
    assert await _last_read(thread_id, "bob") == ids[4]

    # Hiding the newest message makes the head page end earlier; the marker stays.
    await messages.hide_for_me("bob", ids[4])
    await history.list_messages("bob", thread_id, limit=2)
    assert await _last_read(thread_id, "bob") == ids[4]

    newer = await messages.send("alice", thread_id, SendMessageRequest(content="new"))
    await history.list_messages("bob", thread_id, limit=2)
    assert await _last_read(thread_id, "bob") == newer.message_id


@pytest.mark.asyncio
async def test_list_messages_requires_membership_and_valid_cursor(clock):
    _, threads, _, history = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    with pytest.raises(NotAMember):
        await history.list_messages("mallory", thread_id)
    with pytest.raises(ValidationFailed) as exc:
        await history.list_messages("alice", thread_id, cursor="not-a-cursor")
    assert exc.value.code == "invalid_cursor"


def test_cursor_codec_round_trip():
    created = models.utcnow()
    assert decode_cursor(encode_cursor(created, "01ABC")) == (created, "01ABC")
    assert decode_cursor(None) is None


@pytest.mark.asyncio
async def test_deleted_messages_are_flagged_in_history(clock):
    _, threads, messages, history = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    sent = await messages.send("alice", thread_id, SendMessageRequest(content="oops"))
    await messages.soft_delete("alice", sent.message_id)
    page = await history.list_messages("bob", thread_id)
    assert page.messages[0].is_deleted is True
    assert page.messages[0].content is None


@pytest.mark.asyncio
async def test_thread_list_unread_and_order(clock):
    membership, threads, messages, history = _services(
        clock,
        directory=StaticDirectory({"dr-who": models.Profile(user_id="dr-who", display_name="Dr. Who", entity_type="professional")}),
    )
    quiet = await threads.open_direct("patient", "dr-who")
    busy = await threads.create_group("patient", "Family", ["mum", "dad"])
    await messages.send("dr-who", quiet, SendMessageRequest(content="hello"))
    await messages.send("mum", busy, SendMessageRequest(content="a"))
    await messages.send("dad", busy, SendMessageRequest(content="b"))

    listed = await history.list_threads("patient")
    assert [t.id for t in listed] == [busy, quiet]
    by_id = {t.id: t for t in listed}
    assert by_id[busy].unread_count == 2
    assert by_id[busy].display_title == "Family"
    assert by_id[busy].last_message.content == "b"
    assert by_id[quiet].display_title == "Dr. Who"
    assert by_id[quiet].unread_count == 1

    await history.list_messages("patient", busy)
    await membership.toggle_pin(PIN_THREAD, "patient", quiet)
    await membership.set_muted("patient", busy, True)

    listed = await history.list_threads("patient")
    assert [t.id for t in listed] == [quiet, busy]
    by_id = {t.id: t for t in listed}
    assert by_id[quiet].pinned is True
    assert by_id[busy].unread_count == 0
    assert by_id[busy].muted is True


@pytest.mark.asyncio
async def test_thread_list_survives_directory_failure(clock):
    _, threads, messages, history = _services(clock, directory=_BrokenDirectory())
    thread_id = await threads.open_direct("alice", "bob")
    listed = await history.list_threads("alice")
    assert listed[0].id == thread_id
    assert listed[0].display_title == "User"
    assert listed[0].last_message is None
    assert listed[0].last_activity_at is not None


@pytest.mark.asyncio
async def test_thread_info(clock):
    membership, threads, messages, history = _services(
        clock,
        directory=StaticDirectory({"bob": models.Profile(user_id="bob", display_name="Bob", avatar_url="https://cdn/bob.png")}),
    )
    thread_id = await threads.open_direct("alice", "bob")
    with_file = await messages.send(
        "alice",
        thread_id,
        SendMessageRequest(attachments=[AttachmentDeclaration(file_name="lab.pdf", mime_type="application/pdf", size_bytes=10)]),
    )
    await membership.toggle_pin(PIN_MESSAGE, "alice", thread_id, with_file.message_id)

    info = await history.thread_info("alice", thread_id)
    profiles = {m.user_id: m for m in info.members}
    assert profiles["bob"].display_name == "Bob"
    assert profiles["bob"].avatar_url == "https://cdn/bob.png"
    assert profiles["alice"].display_name == "User"
    assert profiles["alice"].entity_type == "business"
    assert [a.file_name for a in info.attachments] == ["lab.pdf"]
    assert info.attachments[0].thread_id == thread_id
    assert [p.message_id for p in info.pinned_messages] == [with_file.message_id]

    # Pins are per user.
    bob_info = await history.thread_info("bob", thread_id)
    assert bob_info.pinned_messages == []


class _ClosingPoolDirectory:
    def __init__(self, error):
        self.error = error

    async def lookup(self, user_ids):
        raise self.error


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [asyncpg.InterfaceError("pool is closing"), asyncio.TimeoutError()],
    ids=["pool-closing", "timeout"],
)
async def test_directory_driver_errors_fall_back_to_placeholders(clock, error):
    _, threads, _, history = _services(clock, directory=_ClosingPoolDirectory(error))
    thread_id = await threads.open_direct("alice", "bob")

    listed = await history.list_threads("alice")
    assert listed[0].id == thread_id
    assert listed[0].display_title == "User"

    info = await history.thread_info("alice", thread_id)
    assert {m.display_name for m in info.members} == {"User"}


@pytest.mark.asyncio
async def test_thread_info_keeps_newest_thirty_attachments(clock, monkeypatch):
    monkeypatch.setattr(settings, "send_rate_limit_per_minute", 1000)
    _, threads, messages, history = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    for index in range(35):
        await messages.send(
            "alice",
            thread_id,
            SendMessageRequest(
                attachments=[AttachmentDeclaration(file_name=f"scan-{index}.pdf", mime_type="application/pdf", size_bytes=10)]
            ),
        )

    info = await history.thread_info("bob", thread_id)
    assert len(info.attachments) == 30
    assert [a.file_name for a in info.attachments] == [f"scan-{index}.pdf" for index in range(34, 4, -1)]


@pytest.mark.asyncio
async def test_thread_info_keeps_newest_twenty_pins(clock, monkeypatch):
    monkeypatch.setattr(settings, "send_rate_limit_per_minute", 1000)
    membership, threads, messages, history = _services(clock)
    thread_id = await threads.open_direct("alice", "bob")
    sent = []
    for index in range(25):
        result = await messages.send("alice", thread_id, SendMessageRequest(content=f"note {index}"))
        sent.append(result.message_id)
    for message_id in sent:
        await membership.toggle_pin(PIN_MESSAGE, "alice", thread_id, message_id)

    info = await history.thread_info("alice", thread_id)
    assert len(info.pinned_messages) == 20
    assert [p.message_id for p in info.pinned_messages] == list(reversed(sent))[:20]
