"""Twitter transport — API v1.1 over httpx, OAuth 1.0a signing via authlib."""
from __future__ import annotations

import logging
from typing import Any

import httpx
from authlib.integrations.httpx_client import AsyncOAuth1Client

from tweetbridge.errors import TransportError
from tweetbridge.models import Tweet, TwitterUser

logger = logging.getLogger(__name__)

API_BASE = "https://api.twitter.com/1.1"

# friends/list page size (API maximum)
_FRIENDS_PAGE = 200


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("errors"):
        errs = data["errors"]
        if isinstance(errs, list):
            text = "; ".join(
                f"{e.get('message', '')} (code {e.get('code', '?')})"
                for e in errs if isinstance(e, dict)
            )
            if text:
                return f"{text} (HTTP {resp.status_code})"
    return f"HTTP {resp.status_code}: {resp.text[:200]}"


def _object(data: Any, endpoint: str) -> dict:
    if not isinstance(data, dict):
        raise TransportError(f"{endpoint}: expected a JSON object")
    return data


class TwitterClient:
    """Signed client for the timeline, friendship and account endpoints.

    ``http`` lets callers supply a ready client (e.g. one wired to a mock
    transport); otherwise an authlib ``AsyncOAuth1Client`` is built from the
    four credentials.
    """

    def __init__(
        self,
        consumer_key: str = "",
        consumer_secret: str = "",
        access_token: str = "",
        access_secret: str = "",
        *,
        base_url: str = API_BASE,
        timeout: float = 30.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._http = http or AsyncOAuth1Client(
            consumer_key,
            consumer_secret,
            token=access_token,
            token_secret=access_secret,
            timeout=timeout,
        )

    async def _request(
        self, method: str, endpoint: str, params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base}/{endpoint}.json"
        try:
            resp = await self._http.request(method, url, params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {endpoint}: {e}") from e
        if resp.is_error:
            raise TransportError(_error_message(resp), status=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"{endpoint}: invalid JSON response") from e

    async def verify_credentials(self) -> TwitterUser:
        data = await self._request("GET", "account/verify_credentials", {"skip_status": "true"})
        return TwitterUser.from_dict(_object(data, "account/verify_credentials"))

    async def home_timeline(self, count: int, since_id: int = 0) -> list[Tweet]:
        """Fetch up to ``count`` home-timeline tweets newer than ``since_id``."""
        params: dict[str, Any] = {"count": count, "tweet_mode": "extended"}
        if since_id > 0:
            params["since_id"] = since_id
        data = await self._request("GET", "statuses/home_timeline", params)
        if not isinstance(data, list):
            raise TransportError("statuses/home_timeline: expected a list")
        try:
            return [Tweet.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TransportError(f"statuses/home_timeline: malformed tweet: {e}") from e

    async def follow(self, screen_name: str) -> TwitterUser:
        data = await self._request("POST", "friendships/create", {"screen_name": screen_name})
        return TwitterUser.from_dict(_object(data, "friendships/create"))

    async def unfollow(self, screen_name: str) -> TwitterUser:
        data = await self._request("POST", "friendships/destroy", {"screen_name": screen_name})
        return TwitterUser.from_dict(_object(data, "friendships/destroy"))

    async def friends(self) -> list[str]:
        """Screen names of every account we follow, across all pages."""
        names: list[str] = []
        cursor = -1
        seen: set[int] = set()
        while cursor != 0 and cursor not in seen:
            seen.add(cursor)
            data = await self._request("GET", "friends/list", {
                "cursor": cursor,
                "count": _FRIENDS_PAGE,
                "skip_status": "true",
                "include_user_entities": "false",
            })
            users = _object(data, "friends/list").get("users") or []
            if not users:
                break
            names.extend(u.get("screen_name", "") for u in users)
            cursor = int(data.get("next_cursor") or 0)
        return names

    async def aclose(self) -> None:
        await self._http.aclose()
