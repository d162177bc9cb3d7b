from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import pytest

from chat_engine.application.dto.conversation import SettingsPatch
from chat_engine.application.exceptions import (
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    UnavailableError,
)
from chat_engine.domain.entities.message import ForwardedFrom
from chat_engine.domain.value_objects.enums import Reaction
from chat_engine.domain.value_objects.rooms import conversation_room
from chat_engine.services import message_service, query_service
from chat_engine.services.delivery_engine import DeliveryEngine
from tests.conftest import TYPING_TIMEOUT, FakePublisher, FlakyStore, RecordingSink, settle

A, B, C = 1, 2, 3


class JoinDuringCall:
    """Wraps a store and runs a callback when the given unit_of_work call opens."""

    def __init__(self, inner, on_call: int, callback) -> None:
        self.inner = inner
        self.on_call = on_call
        self.callback = callback
        self.calls = 0

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator:
        self.calls += 1
        if self.calls == self.on_call:
            self.callback()
        async with self.inner.unit_of_work() as uow:
            yield uow


async def _unread(store, conversation_id, user_id):
    async with store.unit_of_work() as uow:
        return await query_service.unread_count(conversation_id, user_id, uow)


@pytest.mark.asyncio
async def test_first_contact_offline_recipient_then_catch_up(engine, store, connect):
    session_a, _ = connect(A)

    msg = await engine.send_direct(A, B, "hi")

    conv_id = msg.conversation_id
    assert msg.delivered_to == frozenset()
    assert await _unread(store, conv_id, B) == 1

    session_b, transport_b = connect(B)
    await session_b.join_room(conv_id)
    async with store.unit_of_work() as uow:
        history = await message_service.page(conv_id, B, uow)
    assert [m.content for m in history] == ["hi"]

    await engine.mark_read(conv_id, B, history[0].seq)
    await settle(session_b)

    assert await _unread(store, conv_id, B) == 0
    async with store.unit_of_work() as uow:
        assert B in (await uow.messages.get_by_id(msg.id)).read_by
    assert "message:received" not in transport_b.events()


@pytest.mark.asyncio
async def test_group_send_reaches_each_present_member_once(engine, connect):
    conv = await engine.create_group(A, [B, C])
    session_a, transport_a = connect(A)
    session_b, transport_b = connect(B)
    session_c, transport_c = connect(C)
    for session in (session_a, session_b, session_c):
        await session.join_room(conv.id)

    msg = await engine.send(conv.id, A, "hello group")
    await settle(session_a, session_b, session_c)

    assert msg.delivered_to == {B, C}
    assert len(transport_b.frames("message:received")) == 1
    assert len(transport_c.frames("message:received")) == 1
    assert transport_a.frames("message:received") == []
    received = transport_b.frames("message:received")[0]
    assert received["room"] == conversation_room(conv.id)
    assert received["payload"]["message"]["delivered_to"] == [B, C]


@pytest.mark.asyncio
async def test_typing_stop_emitted_after_timeout(engine, connect):
    conv = await engine.create_group(A, [B])
    session_a, _ = connect(A)
    session_b, transport_b = connect(B)
    await session_a.join_room(conv.id)
    await session_b.join_room(conv.id)

    session_a.start_typing(conv.id)
    await asyncio.sleep(TYPING_TIMEOUT * 3)
    await settle(session_b)

    assert [f["event"] for f in transport_b.frames() if f["event"].startswith("typing:")] == [
        "typing:start",
        "typing:stop",
    ]
    assert transport_b.frames("typing:stop")[0]["payload"]["reason"] == "timeout"


@pytest.mark.asyncio
async def test_duplicate_send_emits_nothing(engine, connect, publisher):
    conv = await engine.create_group(A, [B])
    session_b, transport_b = connect(B)
    await session_b.join_room(conv.id)
    client_msg_id = uuid.uuid4()

    first = await engine.send(conv.id, A, "once", client_msg_id=client_msg_id)
    second = await engine.send(conv.id, A, "once", client_msg_id=client_msg_id)
    await settle(session_b)

    assert first.id == second.id
    assert len(transport_b.frames("message:received")) == 1
    assert len(publisher.published) == 1


@pytest.mark.asyncio
async def test_failed_append_raises_and_emits_nothing(store, presence, router):
    flaky = FlakyStore(store)
    engine = DeliveryEngine(flaky.unit_of_work, presence, router)
    conv = await engine.create_group(A, [B])
    sink = RecordingSink()
    presence.connect("b", B)
    router.attach("b", sink)
    presence.subscribe("b", conversation_room(conv.id))

    flaky.fail_on = {flaky.calls + 1}
    with pytest.raises(UnavailableError):
        await engine.send(conv.id, A, "lost")

    assert sink.raw == []
    assert store.state.timelines[conv.id] == []


@pytest.mark.asyncio
async def test_failed_delivery_mark_is_logged_not_raised(store, presence, router, caplog):
    flaky = FlakyStore(store)
    engine = DeliveryEngine(flaky.unit_of_work, presence, router)
    conv = await engine.create_group(A, [B])
    sink = RecordingSink()
    presence.connect("b", B)
    router.attach("b", sink)
    presence.subscribe("b", conversation_room(conv.id))

    # call 1 appends, call 2 records delivery
    flaky.fail_on = {flaky.calls + 2}
    with caplog.at_level(logging.ERROR):
        msg = await engine.send(conv.id, A, "durable")

    assert msg.delivered_to == frozenset()
    assert sink.events == ["message:received"]
    assert "Could not record delivery" in caplog.text
    async with store.unit_of_work() as uow:
        assert (await uow.messages.get_by_id(msg.id)).content == "durable"


@pytest.mark.asyncio
async def test_online_member_outside_room_gets_notification(engine, connect):
    conv = await engine.create_group(A, [B, C])
    session_b, transport_b = connect(B)
    session_c, transport_c = connect(C)
    await engine.update_setting(conv.id, C, SettingsPatch(muted=True))

    msg = await engine.send(conv.id, A, "ping you")
    await settle(session_b, session_c)

    notes = transport_b.frames("notification:new")
    assert len(notes) == 1
    assert notes[0]["payload"]["type"] == "message"
    assert notes[0]["payload"]["message_id"] == str(msg.id)
    assert notes[0]["namespace"] == "notifications"
    assert transport_c.frames("notification:new") == []
    assert transport_b.frames("message:received") == []


@pytest.mark.asyncio
async def test_integration_event_lists_offline_recipients(engine, connect, publisher):
    conv = await engine.create_group(A, [B, C])
    connect(B)

    msg = await engine.send(conv.id, A, "hey")

    assert len(publisher.published) == 1
    channel, payload = publisher.published[0]
    assert channel == "chat.integration"
    assert payload["event_type"] == "chat.message_created"
    assert payload["message_id"] == str(msg.id)
    assert payload["offline_recipient_ids"] == [C]


@pytest.mark.asyncio
async def test_publisher_failure_does_not_fail_send(store, presence, router):
    engine = DeliveryEngine(
        store.unit_of_work, presence, router, publisher=FakePublisher(fail=True),
    )
    conv = await engine.create_group(A, [B])

    msg = await engine.send(conv.id, A, "still stored")

    assert msg.seq > 0


@pytest.mark.asyncio
async def test_mark_read_emits_receipt(engine, connect):
    conv = await engine.create_group(A, [B])
    session_a, transport_a = connect(A)
    await session_a.join_room(conv.id)
    msg = await engine.send(conv.id, A, "read me")

    mark = await engine.mark_read(conv.id, B, msg.seq)
    repeat = await engine.mark_read(conv.id, B, msg.seq)
    await settle(session_a)

    assert mark.advanced and not repeat.advanced
    receipts = transport_a.frames("message:read")
    assert len(receipts) == 1
    assert receipts[0]["payload"]["user_id"] == B
    assert receipts[0]["payload"]["up_to_seq"] == msg.seq
    assert receipts[0]["payload"]["message_ids"] == [str(msg.id)]


@pytest.mark.asyncio
async def test_mark_message_read_reads_up_to_it_and_updates_unread(engine, store):
    conv = await engine.create_group(A, [B])
    first = await engine.send(conv.id, A, "1")
    await engine.send(conv.id, A, "2")

    assert await _unread(store, conv.id, B) == 2

    mark = await engine.mark_message_read(first.id, B)

    assert mark.last_read_seq == first.seq
    assert await _unread(store, conv.id, B) == 1


@pytest.mark.asyncio
async def test_edit_delete_and_react_are_broadcast(engine, connect):
    conv = await engine.create_group(A, [B])
    session_b, transport_b = connect(B)
    await session_b.join_room(conv.id)
    msg = await engine.send(conv.id, A, "v1")

    await engine.edit(msg.id, A, "v2")
    await engine.react(msg.id, B, Reaction.HAHA)
    await engine.delete(msg.id, A)
    await engine.delete(msg.id, A)
    await settle(session_b)

    assert transport_b.frames("message:edited")[0]["payload"]["message"]["content"] == "v2"
    reaction = transport_b.frames("message:reaction")[0]["payload"]
    assert reaction["reaction"] == "haha"
    assert reaction["reactions"] == {str(B): "haha"}
    deleted = transport_b.frames("message:deleted")
    assert len(deleted) == 1
    assert deleted[0]["payload"]["message"]["deleted"] is True
    assert deleted[0]["payload"]["message"]["content"] is None


@pytest.mark.asyncio
async def test_removed_member_stops_receiving(engine, connect, presence):
    conv = await engine.create_group(A, [B, C])
    session_c, transport_c = connect(C)
    await session_c.join_room(conv.id)
    await engine.send(conv.id, A, "before")

    await engine.remove_participant(conv.id, A, C)
    await engine.send(conv.id, A, "after")
    await settle(session_c)

    received = [f["payload"]["message"]["content"] for f in transport_c.frames("message:received")]
    assert received == ["before"]
    assert not presence.is_subscribed(session_c.session_id, conversation_room(conv.id))
    updates = transport_c.frames("conversation:updated")
    assert any(u["payload"]["action"] == "participant_removed" for u in updates)


@pytest.mark.asyncio
async def test_added_member_is_told_in_personal_room(engine, connect):
    conv = await engine.create_group(A, [B])
    session_c, transport_c = connect(C)

    updated = await engine.add_participant(conv.id, A, C)
    await settle(session_c)

    assert updated.participant_ids == {A, B, C}
    frames = transport_c.frames("conversation:updated")
    assert frames[-1]["payload"]["action"] == "participant_added"
    assert frames[-1]["payload"]["conversation"]["participant_ids"] == [A, B, C]


@pytest.mark.asyncio
async def test_new_conversation_is_announced_to_members(engine, connect):
    session_b, transport_b = connect(B)

    conv = await engine.get_or_create_direct(A, B)
    await engine.get_or_create_direct(B, A)
    await settle(session_b)

    frames = transport_b.frames("conversation:updated")
    assert len(frames) == 1
    assert frames[0]["payload"]["action"] == "created"
    assert frames[0]["payload"]["conversation"]["id"] == str(conv.id)


@pytest.mark.asyncio
async def test_session_without_messaging_is_not_counted_as_delivered(engine, connect, store):
    conv = await engine.create_group(A, [B])
    session_b, transport_b = connect(B, namespaces={"notifications"})
    await session_b.join_room(conv.id)

    msg = await engine.send(conv.id, A, "anyone there?")
    await settle(session_b)

    assert B not in msg.delivered_to
    async with store.unit_of_work() as uow:
        assert (await uow.messages.get_by_id(msg.id)).delivered_to == frozenset()
    assert transport_b.frames("message:received") == []
    notes = transport_b.frames("notification:new")
    assert len(notes) == 1
    assert notes[0]["payload"]["message_id"] == str(msg.id)


@pytest.mark.asyncio
async def test_session_joining_during_delivery_mark_is_outside_the_snapshot(
    store, presence, router,
):
    late = RecordingSink()
    room_of: dict[str, str] = {}

    def join_late() -> None:
        presence.connect("c", C)
        router.attach("c", late)
        presence.subscribe("c", room_of["room"])

    # call 1 creates the group, call 2 appends, call 3 records delivery
    wrapped = JoinDuringCall(store, 3, join_late)
    engine = DeliveryEngine(wrapped.unit_of_work, presence, router)
    conv = await engine.create_group(A, [B, C])
    room_of["room"] = conversation_room(conv.id)
    present = RecordingSink()
    presence.connect("b", B)
    router.attach("b", present)
    presence.subscribe("b", room_of["room"])

    msg = await engine.send(conv.id, A, "snapshot")

    assert wrapped.calls >= 3
    assert msg.delivered_to == {B}
    assert present.events == ["message:received"]
    assert "message:received" not in late.events
    async with store.unit_of_work() as uow:
        assert (await uow.messages.get_by_id(msg.id)).delivered_to == {B}


@pytest.mark.asyncio
async def test_removal_stops_typing_and_announces_offline(engine, connect, typing_tracker):
    conv = await engine.create_group(A, [B, C])
    session_b, transport_b = connect(B)
    session_c, _ = connect(C)
    await session_b.join_room(conv.id)
    await session_c.join_room(conv.id)
    session_c.start_typing(conv.id)

    await engine.remove_participant(conv.id, A, C)
    await settle(session_b)

    assert not typing_tracker.is_typing(conv.id, C)
    stops = transport_b.frames("typing:stop")
    assert len(stops) == 1
    assert stops[0]["payload"]["reason"] == "removed"
    changes = [
        (f["payload"]["user_id"], f["payload"]["status"])
        for f in transport_b.frames("presence:change")
    ]
    assert changes == [(C, "online"), (C, "offline")]


@pytest.mark.asyncio
async def test_forward_copies_into_conversations_of_the_requester(engine, connect, store):
    source = await engine.create_group(A, [B])
    target = await engine.create_group(A, [C])
    foreign = await engine.create_group(B, [C])
    session_c, transport_c = connect(C)
    await session_c.join_room(target.id)
    original = await engine.send(source.id, B, "worth sharing")

    copies = await engine.forward(original.id, A, [target.id, foreign.id, uuid.uuid4()])
    await settle(session_c)

    assert [c.conversation_id for c in copies] == [target.id]
    copy = copies[0]
    assert copy.sender_id == A
    assert copy.content == "worth sharing"
    assert copy.type == original.type
    assert copy.forwarded_from == ForwardedFrom(original.id, source.id, B)
    assert copy.delivered_to == {C}
    received = transport_c.frames("message:received")
    assert len(received) == 1
    assert received[0]["payload"]["message"]["forwarded_from"] == {
        "message_id": str(original.id),
        "conversation_id": str(source.id),
        "sender_id": B,
    }
    assert await _unread(store, target.id, C) == 1
    assert await _unread(store, foreign.id, C) == 0


@pytest.mark.asyncio
async def test_forward_rejects_bad_sources(engine):
    conv = await engine.create_group(A, [B])
    other = await engine.create_group(C, [B])
    msg = await engine.send(conv.id, B, "secret")

    with pytest.raises(ForbiddenError):
        await engine.forward(msg.id, C, [other.id])
    with pytest.raises(InvalidArgumentError):
        await engine.forward(msg.id, A, [])
    await engine.delete(msg.id, B)
    with pytest.raises(InvalidStateError):
        await engine.forward(msg.id, B, [other.id])


@pytest.mark.asyncio
async def test_pin_and_unpin_are_broadcast(engine, connect):
    conv = await engine.create_group(A, [B])
    session_b, transport_b = connect(B)
    await session_b.join_room(conv.id)
    msg = await engine.send(conv.id, B, "remember this")

    with pytest.raises(ForbiddenError):
        await engine.pin(conv.id, msg.id, B)
    pin = await engine.pin(conv.id, msg.id, A)
    with pytest.raises(InvalidStateError):
        await engine.pin(conv.id, msg.id, A)
    pinned = await engine.list_pinned(conv.id, B)
    assert await engine.unpin(conv.id, msg.id, A) is True
    assert await engine.unpin(conv.id, msg.id, A) is False
    await settle(session_b)

    assert pin.pinned_by == A
    assert [p.message_id for p in pinned] == [msg.id]
    updates = [f["payload"] for f in transport_b.frames("conversation:updated")]
    assert [u["action"] for u in updates] == ["message_pinned", "message_unpinned"]
    assert updates[0]["message_id"] == str(msg.id)
    assert updates[0]["pinned_by"] == A
    assert updates[1]["unpinned_by"] == A


@pytest.mark.asyncio
async def test_admin_changes_are_broadcast(engine, connect):
    conv = await engine.create_group(A, [B, C])
    session_c, transport_c = connect(C)
    await session_c.join_room(conv.id)

    promoted = await engine.add_admin(conv.id, A, B)
    await engine.add_admin(conv.id, A, B)
    demoted = await engine.remove_admin(conv.id, B, A)
    await settle(session_c)

    assert promoted.admin_ids == {A, B}
    assert demoted.admin_ids == {B}
    updates = [f["payload"] for f in transport_c.frames("conversation:updated")]
    assert [(u["action"], u["user_id"]) for u in updates] == [
        ("admin_added", B),
        ("admin_removed", A),
    ]
    assert updates[-1]["conversation"]["admin_ids"] == [B]
