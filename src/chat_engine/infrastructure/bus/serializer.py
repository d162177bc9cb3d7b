from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, (set, frozenset)):
            return sorted(o)
        return super().default(o)


def serialize_event(event_type: str, payload: dict[str, Any]) -> str:
    envelope = {"event": event_type, "data": payload}
    return json.dumps(envelope, cls=_Encoder)


def deserialize_event(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    """Inverse of serialize_event. Raises ValueError on a malformed envelope."""
    data = json.loads(raw)
    if not isinstance(data, dict) or "event" not in data:
        raise ValueError("not an event envelope")
    payload = data.get("data") or {}
    if not isinstance(payload, dict):
        raise ValueError("event data must be an object")
    return data["event"], payload
