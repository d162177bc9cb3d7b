"""End-to-end tests of the REST and WebSocket surface over the in-memory store."""
from __future__ import annotations

import uuid

import jwt
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from chat_engine.app import create_app
from chat_engine.config import settings

BASE = "/api/v1/chat"


def _make_token(sub: int) -> str:
    return jwt.encode({"sub": str(sub)}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _auth(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {_make_token(user_id)}"}


@pytest.fixture
def client():
    with TestClient(create_app(), raise_server_exceptions=False) as c:
        yield c


def _group(client, creator=1, members=(2, 3), name="team") -> dict:
    resp = client.post(
        f"{BASE}/conversations/group",
        json={"participant_ids": list(members), "name": name},
        headers=_auth(creator),
    )
    assert resp.status_code == 201
    return resp.json()


def _send(client, conversation_id, sender, content="hello") -> dict:
    resp = client.post(
        f"{BASE}/conversations/{conversation_id}/messages",
        json={"content": content},
        headers=_auth(sender),
    )
    assert resp.status_code == 201
    return resp.json()


def test_healthz_and_readyz(client):
    health = client.get("/healthz")
    ready = client.get("/readyz")

    assert health.status_code == 200
    assert health.json() == {"status": "ok", "sessions": 0}
    assert ready.status_code == 200
    assert ready.json() == {"status": "ready"}


def test_invalid_token_is_unauthorized(client):
    resp = client.get(
        f"{BASE}/conversations",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert resp.status_code == 401


def test_direct_conversation_is_shared_by_both_users(client):
    first = client.post(f"{BASE}/conversations/direct", json={"user_id": 2}, headers=_auth(1))
    second = client.post(f"{BASE}/conversations/direct", json={"user_id": 1}, headers=_auth(2))

    assert first.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert first.json()["participant_ids"] == [1, 2]
    assert first.json()["type"] == "direct"


def test_direct_conversation_with_self_is_rejected(client):
    resp = client.post(f"{BASE}/conversations/direct", json={"user_id": 1}, headers=_auth(1))
    assert resp.status_code == 422


def test_send_list_and_unread(client):
    conv = _group(client)
    _send(client, conv["id"], 1, "one")
    second = _send(client, conv["id"], 2, "two")

    listed = client.get(f"{BASE}/conversations", headers=_auth(3)).json()
    page = client.get(f"{BASE}/conversations/{conv['id']}", headers=_auth(3)).json()
    messages = client.get(
        f"{BASE}/conversations/{conv['id']}/messages",
        params={"limit": 1},
        headers=_auth(3),
    ).json()

    assert [s["conversation"]["id"] for s in listed] == [conv["id"]]
    assert listed[0]["unread_count"] == 2
    assert [m["content"] for m in page["messages"]] == ["two", "one"]
    assert page["summary"]["unread_count"] == 2
    assert [m["id"] for m in messages["items"]] == [second["id"]]
    assert messages["next_before_seq"] == second["seq"]


def test_mark_read_resets_unread(client):
    conv = _group(client)
    _send(client, conv["id"], 1, "one")
    last = _send(client, conv["id"], 1, "two")

    resp = client.put(
        f"{BASE}/conversations/{conv['id']}/read",
        json={"up_to_seq": last["seq"]},
        headers=_auth(2),
    )

    assert resp.status_code == 200
    assert resp.json()["unread_count"] == 0
    assert resp.json()["last_read_seq"] == last["seq"]
    summary = client.get(f"{BASE}/conversations", headers=_auth(2)).json()[0]
    assert summary["unread_count"] == 0


def test_send_direct_creates_conversation(client):
    resp = client.post(
        f"{BASE}/messages/direct",
        json={"recipient_id": 5, "content": "hey"},
        headers=_auth(4),
    )

    assert resp.status_code == 201
    listed = client.get(f"{BASE}/conversations", headers=_auth(5)).json()
    assert listed[0]["conversation"]["id"] == resp.json()["conversation_id"]
    assert listed[0]["unread_count"] == 1


def test_edit_react_and_delete(client):
    conv = _group(client)
    msg = _send(client, conv["id"], 1, "draft")

    edited = client.patch(f"{BASE}/messages/{msg['id']}", json={"content": "final"}, headers=_auth(1))
    reacted = client.put(
        f"{BASE}/messages/{msg['id']}/reaction", json={"reaction": "love"}, headers=_auth(2),
    )
    not_sender = client.delete(f"{BASE}/messages/{msg['id']}", headers=_auth(2))
    deleted = client.delete(f"{BASE}/messages/{msg['id']}", headers=_auth(1))
    edit_after_delete = client.patch(
        f"{BASE}/messages/{msg['id']}", json={"content": "again"}, headers=_auth(1),
    )

    assert edited.status_code == 200
    assert edited.json()["content"] == "final" and edited.json()["edited"] is True
    assert reacted.json()["reactions"] == {"2": "love"}
    assert not_sender.status_code == 403
    assert deleted.status_code == 200
    assert deleted.json()["deleted"] is True and deleted.json()["content"] is None
    assert edit_after_delete.status_code == 409


def test_outsider_and_unknown_conversation(client):
    conv = _group(client)

    outsider = client.get(f"{BASE}/conversations/{conv['id']}", headers=_auth(9))
    unknown = client.get(f"{BASE}/conversations/{uuid.uuid4()}", headers=_auth(1))

    assert outsider.status_code == 403
    assert unknown.status_code == 404
    assert "detail" in unknown.json()


def test_participant_management_and_settings(client):
    conv = _group(client, members=(2,))

    added = client.post(
        f"{BASE}/conversations/{conv['id']}/participants", json={"user_id": 3}, headers=_auth(1),
    )
    by_member = client.post(
        f"{BASE}/conversations/{conv['id']}/participants", json={"user_id": 4}, headers=_auth(2),
    )
    left = client.delete(f"{BASE}/conversations/{conv['id']}/participants/3", headers=_auth(3))
    muted = client.patch(
        f"{BASE}/conversations/{conv['id']}/settings",
        json={"muted": True, "archived": True},
        headers=_auth(2),
    )

    assert added.json()["participant_ids"] == [1, 2, 3]
    assert by_member.status_code == 403
    assert left.json()["participant_ids"] == [1, 2]
    assert muted.json()["muted"] is True
    assert client.get(f"{BASE}/conversations", headers=_auth(2)).json() == []
    archived = client.get(
        f"{BASE}/conversations", params={"include_archived": True}, headers=_auth(2),
    ).json()
    assert archived[0]["archived"] is True


def test_group_admins(client):
    conv = _group(client)
    url = f"{BASE}/conversations/{conv['id']}/admins"

    by_member = client.post(url, json={"user_id": 3}, headers=_auth(2))
    promoted = client.post(url, json={"user_id": 2}, headers=_auth(1))
    demoted = client.delete(f"{url}/1", headers=_auth(2))
    last = client.delete(f"{url}/2", headers=_auth(2))

    assert conv["admin_ids"] == [1]
    assert by_member.status_code == 403
    assert promoted.json()["admin_ids"] == [1, 2]
    assert demoted.json()["admin_ids"] == [2]
    assert last.status_code == 409


def test_pin_and_unpin(client):
    conv = _group(client)
    msg = _send(client, conv["id"], 2, "pin me")
    url = f"{BASE}/conversations/{conv['id']}/pins"

    forbidden = client.post(f"{url}/{msg['id']}", headers=_auth(2))
    pinned = client.post(f"{url}/{msg['id']}", headers=_auth(1))
    again = client.post(f"{url}/{msg['id']}", headers=_auth(1))
    listed = client.get(url, headers=_auth(3))
    unpinned = client.delete(f"{url}/{msg['id']}", headers=_auth(1))

    assert forbidden.status_code == 403
    assert pinned.status_code == 201
    assert pinned.json()[0]["message_id"] == msg["id"]
    assert pinned.json()[0]["pinned_by"] == 1
    assert again.status_code == 409
    assert [p["message_id"] for p in listed.json()] == [msg["id"]]
    assert unpinned.json() == []


def test_forward_skips_foreign_targets(client):
    source = _group(client)
    target = _group(client, members=(4,))
    foreign = _group(client, creator=4, members=(5,))
    msg = _send(client, source["id"], 2, "pass it on")

    resp = client.post(
        f"{BASE}/messages/{msg['id']}/forward",
        json={"conversation_ids": [target["id"], foreign["id"]]},
        headers=_auth(1),
    )
    empty = client.post(
        f"{BASE}/messages/{msg['id']}/forward", json={"conversation_ids": []}, headers=_auth(1),
    )

    assert resp.status_code == 201
    copies = resp.json()
    assert len(copies) == 1
    assert copies[0]["conversation_id"] == target["id"]
    assert copies[0]["content"] == "pass it on"
    assert copies[0]["forwarded_from"] == {
        "message_id": msg["id"],
        "conversation_id": source["id"],
        "sender_id": 2,
    }
    assert msg["forwarded_from"] is None
    assert empty.status_code == 422


def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/chat?token=bogus"):
            pass
    assert exc_info.value.code == 4001


def test_websocket_message_flow(client):
    conv = _group(client, members=(2,))
    room = f"conversation:{conv['id']}"

    with client.websocket_connect(f"/ws/chat?token={_make_token(1)}") as alice, \
            client.websocket_connect(f"/ws/chat?token={_make_token(2)}") as bob:
        alice.send_json({"type": "ping", "data": {"n": 1}})
        assert alice.receive_json()["event"] == "pong"

        alice.send_json({"type": "join", "data": {"conversation_id": conv["id"]}})
        assert alice.receive_json()["event"] == "conversation:joined"

        bob.send_json({"type": "join", "data": {"conversation_id": conv["id"]}})
        assert bob.receive_json()["event"] == "conversation:joined"
        presence = alice.receive_json()
        assert presence["event"] == "presence:change"
        assert presence["payload"]["user_id"] == 2

        alice.send_json({
            "type": "send",
            "data": {"conversation_id": conv["id"], "content": "over the wire"},
        })
        ack = alice.receive_json()
        received = bob.receive_json()

        assert ack["event"] == "message:sent"
        assert received["event"] == "message:received"
        assert received["room"] == room
        assert received["payload"]["message"]["content"] == "over the wire"
        assert received["payload"]["message"]["delivered_to"] == [2]

        bob.send_json({"type": "send", "data": {"content": "nowhere"}})
        error = bob.receive_json()
        assert error["event"] == "error"
        assert error["payload"]["code"] == "invalid_payload"
