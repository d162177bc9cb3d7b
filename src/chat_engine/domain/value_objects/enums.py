from __future__ import annotations

from enum import StrEnum


class ConversationType(StrEnum):
    DIRECT = "direct"
    GROUP = "group"


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"
    AUDIO = "audio"


class Reaction(StrEnum):
    LIKE = "like"
    LOVE = "love"
    HAHA = "haha"
    WOW = "wow"
    SAD = "sad"
    ANGRY = "angry"


class PresenceStatus(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"


class Namespace(StrEnum):
    MESSAGING = "messaging"
    SOCIAL = "social"
    NOTIFICATIONS = "notifications"
    SYSTEM = "system"


class EventName(StrEnum):
    MESSAGE_RECEIVED = "message:received"
    MESSAGE_SENT = "message:sent"
    MESSAGE_EDITED = "message:edited"
    MESSAGE_DELETED = "message:deleted"
    MESSAGE_READ = "message:read"
    MESSAGE_REACTION = "message:reaction"
    TYPING_START = "typing:start"
    TYPING_STOP = "typing:stop"
    CONVERSATION_UPDATED = "conversation:updated"
    CONVERSATION_JOINED = "conversation:joined"
    CONVERSATION_LEFT = "conversation:left"
    PRESENCE_CHANGE = "presence:change"
    NOTIFICATION_NEW = "notification:new"
    PING = "ping"
    PONG = "pong"
    ERROR = "error"
