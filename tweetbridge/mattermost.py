"""Mattermost transport — REST API v4 over httpx, push events over websockets."""
from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from tweetbridge.errors import StreamClosed, TransportError
from tweetbridge.models import ChatUser, Post

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v4"


def _error_message(resp: httpx.Response) -> str:
    """Extract Mattermost's error text from a failed response."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return f"{data['message']} (HTTP {resp.status_code})"
    return f"HTTP {resp.status_code}: {resp.text[:200]}"


def _body(resp: httpx.Response, *, need_id: bool = True) -> dict[str, Any]:
    """Decode a 2xx reply that must carry a JSON object (with an ``id`` by default)."""
    path = resp.request.url.path
    try:
        data = resp.json()
    except ValueError as e:
        raise TransportError(f"{path}: invalid JSON response", status=resp.status_code) from e
    if not isinstance(data, dict):
        raise TransportError(f"{path}: expected a JSON object", status=resp.status_code)
    if need_id and not data.get("id"):
        raise TransportError(f"{path}: response carries no id", status=resp.status_code)
    return data


def websocket_url(base_url: str) -> str:
    """Derive the websocket endpoint from the server URL (http→ws, https→wss)."""
    parts = urlsplit(base_url.rstrip("/"))
    scheme = "ws" if parts.scheme == "http" else "wss"
    return urlunsplit((scheme, parts.netloc, parts.path + API_PREFIX + "/websocket", "", ""))


class EventStream:
    """A live websocket subscription to Mattermost's event feed."""

    def __init__(self, ws: Any) -> None:
        self._ws = ws
        self._closed = False

    @classmethod
    async def connect(cls, url: str, token: str, *, open_timeout: float = 30.0) -> EventStream:
        logger.info("Connecting websocket to listen for events ...")
        try:
            ws = await websockets.connect(url, open_timeout=open_timeout, max_size=None)
        except (OSError, WebSocketException) as e:
            raise StreamClosed(f"websocket connect failed: {e}") from e
        stream = cls(ws)
        try:
            await ws.send(json.dumps({
                "seq": 1,
                "action": "authentication_challenge",
                "data": {"token": token},
            }))
        except ConnectionClosed as e:
            await stream.close()
            raise StreamClosed(f"websocket closed during authentication: {e}") from e
        return stream

    async def next_event(self) -> dict[str, Any] | None:
        """Return the next decoded frame, or ``None`` once the stream is gone."""
        while not self._closed:
            try:
                raw = await self._ws.recv()
            except ConnectionClosed:
                self._closed = True
                return None
            try:
                msg = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                logger.debug("Dropping undecodable websocket frame")
                continue
            if isinstance(msg, dict):
                return msg
        return None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.close()
        except (OSError, WebSocketException):
            logger.debug("websocket close error (ignored)", exc_info=True)


class MattermostClient:
    """Thin async client for the handful of endpoints the bridge needs."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._token = ""
        self._http = httpx.AsyncClient(
            base_url=self._url + API_PREFIX, timeout=timeout, transport=transport,
        )

    def use_token(self, token: str) -> None:
        self._token = token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            resp = await self._http.request(
                method, path, json=json_body, params=params, headers=headers,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path}: {e}") from e
        if resp.is_error:
            raise TransportError(_error_message(resp), status=resp.status_code)
        return resp

    # --- Handshake ---

    async def ping(self) -> None:
        await self._request("GET", "/system/ping")

    async def login(self, login_id: str, password: str) -> ChatUser:
        resp = await self._request(
            "POST", "/users/login", json_body={"login_id": login_id, "password": password},
        )
        token = resp.headers.get("Token", "")
        if not token:
            raise TransportError("login succeeded but no session token was returned")
        self._token = token
        return ChatUser.from_dict(_body(resp))

    async def get_me(self) -> ChatUser:
        resp = await self._request("GET", "/users/me")
        return ChatUser.from_dict(_body(resp))

    async def get_team_by_name(self, name: str) -> str:
        resp = await self._request("GET", f"/teams/name/{name}")
        return _body(resp)["id"]

    async def get_channel_by_name(self, team_id: str, name: str) -> str:
        resp = await self._request("GET", f"/teams/{team_id}/channels/name/{name}")
        return _body(resp)["id"]

    async def add_channel_member(self, channel_id: str, user_id: str) -> None:
        await self._request(
            "POST", f"/channels/{channel_id}/members", json_body={"user_id": user_id},
        )

    # --- Posts ---

    async def create_post(self, channel_id: str, message: str, root_id: str = "") -> Post:
        body = {"channel_id": channel_id, "message": message}
        if root_id:
            body["root_id"] = root_id
        resp = await self._request("POST", "/posts", json_body=body)
        return Post.from_dict(_body(resp))

    async def get_posts_for_channel(self, channel_id: str, page: int, per_page: int) -> list[Post]:
        resp = await self._request(
            "GET", f"/channels/{channel_id}/posts",
            params={"page": page, "per_page": per_page},
        )
        data = _body(resp, need_id=False)
        posts = data.get("posts") or {}
        order = data.get("order") or list(posts)
        return [Post.from_dict(posts[pid]) for pid in order if pid in posts]

    async def delete_post(self, post_id: str) -> None:
        await self._request("DELETE", f"/posts/{post_id}")

    # --- Users ---

    async def get_user_by_username(self, username: str) -> ChatUser:
        resp = await self._request("GET", f"/users/username/{username}")
        return ChatUser.from_dict(_body(resp))

    # --- Events ---

    async def open_stream(self, *, open_timeout: float = 30.0) -> EventStream:
        return await EventStream.connect(
            websocket_url(self._url), self._token, open_timeout=open_timeout,
        )

    async def aclose(self) -> None:
        await self._http.aclose()
