"""Value types shared by the transports and the bridge core."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


# ── Mattermost ───────────────────────────────────────────────────────

@dataclass
class ChatUser:
    id: str
    username: str

    @classmethod
    def from_dict(cls, data: dict) -> ChatUser:
        return cls(id=data.get("id", ""), username=data.get("username", ""))


@dataclass
class Post:
    """A Mattermost post as returned by the REST API or the event stream."""

    id: str
    channel_id: str
    user_id: str
    message: str
    root_id: str = ""
    parent_id: str = ""

    @property
    def is_reply(self) -> bool:
        return bool(self.root_id or self.parent_id)

    @classmethod
    def from_dict(cls, data: dict) -> Post:
        return cls(
            id=data.get("id", ""),
            channel_id=data.get("channel_id", ""),
            user_id=data.get("user_id", ""),
            message=data.get("message", "") or "",
            root_id=data.get("root_id", "") or "",
            parent_id=data.get("parent_id", "") or "",
        )


@dataclass
class ChatContext:
    """Everything resolved during the Mattermost handshake."""

    me: ChatUser
    team_id: str
    channel_id: str
    debug_channel_id: str = ""


@dataclass
class PendingCommand:
    """One inbound chat message, alive for the duration of a single dispatch."""

    text: str
    sender_id: str
    channel_id: str
    post_id: str
    root_id: str = ""
    is_direct: bool = False

    @property
    def thread_id(self) -> str:
        """Post id replies must hang off so the conversation stays grouped."""
        return self.root_id or self.post_id

    @classmethod
    def from_post(cls, post: Post, *, is_direct: bool = False) -> PendingCommand:
        return cls(
            text=post.message,
            sender_id=post.user_id,
            channel_id=post.channel_id,
            post_id=post.id,
            root_id=post.root_id,
            is_direct=is_direct,
        )


def decode_event(event: dict[str, Any]) -> PendingCommand | None:
    """Turn a websocket ``posted`` event into a PendingCommand.

    Returns ``None`` for any other event type or for a payload that does not
    carry a usable post.
    """
    if event.get("event") != "posted":
        return None
    data = event.get("data")
    if not isinstance(data, dict):
        return None
    raw = data.get("post")
    if not raw:
        return None
    try:
        post_data = json.loads(raw) if isinstance(raw, str) else raw
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(post_data, dict) or not post_data.get("id"):
        return None
    return PendingCommand.from_post(
        Post.from_dict(post_data),
        is_direct=data.get("channel_type") == "D",
    )


# ── Twitter ──────────────────────────────────────────────────────────

@dataclass
class TwitterUser:
    id: int
    screen_name: str

    @classmethod
    def from_dict(cls, data: dict) -> TwitterUser:
        return cls(id=int(data.get("id", 0)), screen_name=data.get("screen_name", ""))


@dataclass
class Tweet:
    id: int
    user: TwitterUser
    text: str
    retweeted_status: Tweet | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Tweet:
        inner = data.get("retweeted_status")
        return cls(
            id=int(data["id"]),
            user=TwitterUser.from_dict(data.get("user") or {}),
            text=data.get("full_text") or data.get("text") or "",
            retweeted_status=cls.from_dict(inner) if inner else None,
        )
