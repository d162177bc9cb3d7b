from __future__ import annotations

import json
import uuid

import pytest

from chat_engine.domain.entities.presence import PresenceChange
from chat_engine.domain.value_objects.enums import EventName, Namespace, PresenceStatus
from chat_engine.domain.value_objects.rooms import conversation_room
from chat_engine.realtime import events
from chat_engine.realtime.protocol import Envelope
from tests.conftest import ExplodingSink, RecordingSink

CONV = uuid.uuid4()
ROOM = conversation_room(CONV)


def _envelope(namespace=Namespace.MESSAGING, event=EventName.MESSAGE_RECEIVED, room=ROOM):
    return Envelope(namespace=namespace, event=event, room=room, payload={"n": 1})


def _join(presence, router, session_id, user_id, *, namespaces=None, sink=None):
    sink = sink or RecordingSink()
    presence.connect(session_id, user_id, namespaces=namespaces)
    router.attach(session_id, sink)
    presence.subscribe(session_id, ROOM)
    return sink


def test_publish_reaches_every_subscribed_session(presence, router):
    a = _join(presence, router, "a", 1)
    b = _join(presence, router, "b", 2)

    assert router.publish(_envelope()) == 2
    assert a.events == ["message:received"]
    assert b.events == ["message:received"]
    assert json.loads(b.raw[0])["room"] == ROOM


def test_publish_excludes_users_and_sessions(presence, router):
    a = _join(presence, router, "a", 1)
    a2 = _join(presence, router, "a2", 1)
    b = _join(presence, router, "b", 2)
    c = _join(presence, router, "c", 3)

    assert router.publish(_envelope(), exclude_users={1}, exclude_sessions={"c"}) == 1
    assert a.raw == [] and a2.raw == [] and c.raw == []
    assert len(b.raw) == 1


def test_publish_filters_by_namespace(presence, router):
    social_only = _join(presence, router, "a", 1, namespaces={Namespace.SOCIAL})
    everything = _join(presence, router, "b", 2)

    router.publish(_envelope())
    router.publish(_envelope(Namespace.SOCIAL, EventName.PRESENCE_CHANGE))

    assert social_only.events == ["presence:change"]
    assert everything.events == ["message:received", "presence:change"]


def test_publish_without_room_is_an_error(router):
    with pytest.raises(ValueError):
        router.publish(events.pong())


def test_failing_sink_does_not_block_others(presence, router):
    _join(presence, router, "bad", 1, sink=ExplodingSink())
    good = _join(presence, router, "good", 2)

    assert router.publish(_envelope()) == 1
    assert len(good.raw) == 1


def test_released_registration_stops_delivery(presence, router):
    sink = RecordingSink()
    presence.connect("a", 1)
    presence.subscribe("a", ROOM)
    with router.attach("a", sink) as registration:
        router.publish(_envelope())
    registration.release()
    router.publish(_envelope())

    assert len(sink.raw) == 1
    assert len(router) == 0


def test_attach_twice_rejected(presence, router):
    router.attach("a", RecordingSink())
    with pytest.raises(ValueError):
        router.attach("a", RecordingSink())


def test_send_to_session_ignores_rooms(presence, router):
    sink = RecordingSink()
    presence.connect("a", 1)
    router.attach("a", sink)

    assert router.send_to_session("a", events.pong()) is True
    assert router.send_to_session("ghost", events.pong()) is False
    assert sink.events == ["pong"]


def test_publish_presence_skips_the_user_itself(presence, router):
    a = _join(presence, router, "a", 1)
    b = _join(presence, router, "b", 2)
    change = PresenceChange(1, PresenceStatus.OFFLINE, frozenset({ROOM}), presence.now())

    assert router.publish_presence(change) == 1
    assert a.raw == []
    frame = json.loads(b.raw[0])
    assert frame["namespace"] == "social"
    assert frame["payload"]["status"] == "offline"
    assert frame["payload"]["user_id"] == 1


def test_each_emission_is_one_whole_frame(presence, router):
    """A session detached before publish misses it entirely; one attached gets exactly one frame."""
    a = _join(presence, router, "a", 1)
    b = _join(presence, router, "b", 2)
    presence.disconnect("a")

    router.publish(_envelope())

    assert a.raw == []
    assert len(b.raw) == 1
    assert json.loads(b.raw[0])["payload"] == {"n": 1}


def test_publish_to_given_sessions_ignores_later_joins(presence, router):
    a = _join(presence, router, "a", 1)
    snapshot = router.audience(ROOM, Namespace.MESSAGING)
    late = _join(presence, router, "late", 2)

    assert router.publish(_envelope(), sessions=snapshot) == 1
    assert a.events == ["message:received"]
    assert late.raw == []


def test_audience_only_lists_sessions_accepting_the_namespace(presence, router):
    _join(presence, router, "a", 1, namespaces={Namespace.NOTIFICATIONS})
    _join(presence, router, "b", 2)

    assert router.audience(ROOM, Namespace.MESSAGING) == {"b"}
    assert router.audience(ROOM, Namespace.NOTIFICATIONS) == {"a", "b"}
