"""Tests for the Mattermost and Twitter HTTP clients against mock transports."""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from fakes import make_config
from tweetbridge.errors import StartupError, TransportError
from tweetbridge.mattermost import MattermostClient, websocket_url
from tweetbridge.models import decode_event
from tweetbridge.session import SessionManager
from tweetbridge.twitter import TwitterClient


class Recorder:
    """MockTransport handler that records requests and answers from a route table."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"message": f"no route {key}"})
        return self.routes[key]


def mm(routes) -> tuple[MattermostClient, Recorder]:
    rec = Recorder(routes)
    return MattermostClient("http://chat.example.com", transport=httpx.MockTransport(rec)), rec


def tw(routes) -> tuple[TwitterClient, Recorder]:
    rec = Recorder(routes)
    http = httpx.AsyncClient(transport=httpx.MockTransport(rec))
    return TwitterClient(http=http, base_url="https://api.example.com/1.1"), rec


class TestMattermostClient:
    def test_login_stores_session_token(self):
        client, rec = mm({
            ("POST", "/api/v4/users/login"): httpx.Response(
                200, json={"id": "u1", "username": "bot"}, headers={"Token": "sess"},
            ),
            ("GET", "/api/v4/users/me"): httpx.Response(200, json={"id": "u1", "username": "bot"}),
        })

        async def go():
            me = await client.login("bot", "pw")
            await client.get_me()
            await client.aclose()
            return me

        me = asyncio.run(go())
        assert me.username == "bot"
        assert json.loads(rec.requests[0].content) == {"login_id": "bot", "password": "pw"}
        assert rec.requests[1].headers["Authorization"] == "Bearer sess"

    def test_error_carries_server_message(self):
        client, _ = mm({
            ("GET", "/api/v4/teams/name/nope"): httpx.Response(
                404, json={"message": "Unable to find the existing team"},
            ),
        })
        with pytest.raises(TransportError) as exc:
            asyncio.run(client.get_team_by_name("nope"))
        assert exc.value.status == 404
        assert "Unable to find the existing team" in str(exc.value)

    def test_network_error(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client = MattermostClient("http://chat.example.com", transport=httpx.MockTransport(refuse))
        with pytest.raises(TransportError):
            asyncio.run(client.ping())

    def test_create_post_reply(self):
        client, rec = mm({
            ("POST", "/api/v4/posts"): httpx.Response(
                201, json={"id": "new", "channel_id": "c1", "user_id": "u1", "message": "pong", "root_id": "r1"},
            ),
        })
        post = asyncio.run(client.create_post("c1", "pong", root_id="r1"))
        assert post.root_id == "r1"
        assert json.loads(rec.requests[0].content) == {"channel_id": "c1", "message": "pong", "root_id": "r1"}

    def test_top_level_post_has_no_root(self):
        client, rec = mm({
            ("POST", "/api/v4/posts"): httpx.Response(201, json={"id": "new", "channel_id": "c1"}),
        })
        asyncio.run(client.create_post("c1", "hello"))
        assert "root_id" not in json.loads(rec.requests[0].content)

    def test_posts_follow_server_order(self):
        client, rec = mm({
            ("GET", "/api/v4/channels/c1/posts"): httpx.Response(200, json={
                "order": ["b", "a"],
                "posts": {
                    "a": {"id": "a", "channel_id": "c1", "user_id": "u1", "message": "first"},
                    "b": {"id": "b", "channel_id": "c1", "user_id": "u1", "message": "second", "root_id": "a"},
                },
            }),
        })
        posts = asyncio.run(client.get_posts_for_channel("c1", 2, 50))
        assert [p.id for p in posts] == ["b", "a"]
        assert posts[0].is_reply and not posts[1].is_reply
        assert rec.requests[0].url.params["page"] == "2"


@pytest.mark.parametrize("base, expected", [
    ("http://chat.local:8065", "ws://chat.local:8065/api/v4/websocket"),
    ("https://chat.example.com/", "wss://chat.example.com/api/v4/websocket"),
    ("https://example.com/mm", "wss://example.com/mm/api/v4/websocket"),
])
def test_websocket_url(base, expected):
    assert websocket_url(base) == expected


def test_decode_direct_message_event():
    event = {
        "event": "posted",
        "data": {
            "channel_type": "D",
            "post": json.dumps({"id": "p1", "channel_id": "dm", "user_id": "u1", "message": "ping"}),
        },
    }
    cmd = decode_event(event)
    assert cmd is not None
    assert cmd.is_direct
    assert cmd.thread_id == "p1"


class TestTwitterClient:
    def test_first_poll_omits_since_id(self):
        client, rec = tw({
            ("GET", "/1.1/statuses/home_timeline.json"): httpx.Response(200, json=[]),
        })
        asyncio.run(client.home_timeline(20))
        params = rec.requests[0].url.params
        assert params["count"] == "20"
        assert "since_id" not in params

    def test_timeline_parses_retweets(self):
        client, rec = tw({
            ("GET", "/1.1/statuses/home_timeline.json"): httpx.Response(200, json=[{
                "id": 200,
                "full_text": "RT @esa: Ariane",
                "user": {"id": 1, "screen_name": "nasa"},
                "retweeted_status": {
                    "id": 100,
                    "full_text": "Ariane 6 is go",
                    "user": {"id": 2, "screen_name": "esa"},
                },
            }]),
        })
        [t] = asyncio.run(client.home_timeline(20, since_id=150))
        assert rec.requests[0].url.params["since_id"] == "150"
        assert t.id == 200
        assert t.retweeted_status.user.screen_name == "esa"
        assert t.retweeted_status.text == "Ariane 6 is go"

    def test_friends_follows_cursor(self):
        pages = iter([
            {"users": [{"screen_name": "a"}, {"screen_name": "b"}], "next_cursor": 99},
            {"users": [{"screen_name": "c"}], "next_cursor": 0},
        ])
        seen_cursors = []

        def handler(request):
            seen_cursors.append(request.url.params["cursor"])
            return httpx.Response(200, json=next(pages))

        client = TwitterClient(
            http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            base_url="https://api.example.com/1.1",
        )
        assert asyncio.run(client.friends()) == ["a", "b", "c"]
        assert seen_cursors == ["-1", "99"]

    def test_follow_error_message(self):
        client, _ = tw({
            ("POST", "/1.1/friendships/create.json"): httpx.Response(
                403, json={"errors": [{"code": 161, "message": "You are unable to follow more people"}]},
            ),
        })
        with pytest.raises(TransportError) as exc:
            asyncio.run(client.follow("nasa"))
        assert exc.value.status == 403
        assert "unable to follow" in str(exc.value)


class TestMalformedReplies:
    def test_html_team_lookup_is_a_startup_error(self, tmp_path):
        client, _ = mm({
            ("GET", "/api/v4/system/ping"): httpx.Response(200, json={"status": "OK"}),
            ("POST", "/api/v4/users/login"): httpx.Response(
                200, json={"id": "u1", "username": "bot"}, headers={"Token": "sess"},
            ),
            ("GET", "/api/v4/teams/name/team"): httpx.Response(200, text="<html>proxy page</html>"),
        })
        sm = SessionManager(client, make_config(tmp_path))
        with pytest.raises(StartupError, match="Could not find team team"):
            asyncio.run(sm.setup())

    @pytest.mark.parametrize("reply", [
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["a", "list"]),
        httpx.Response(200, json={"name": "tweets"}),
    ])
    def test_channel_lookup_without_id(self, reply):
        client, _ = mm({("GET", "/api/v4/teams/t1/channels/name/tweets"): reply})
        with pytest.raises(TransportError):
            asyncio.run(client.get_channel_by_name("t1", "tweets"))

    def test_created_post_without_id(self):
        client, _ = mm({("POST", "/api/v4/posts"): httpx.Response(201, text="")})
        with pytest.raises(TransportError, match="invalid JSON"):
            asyncio.run(client.create_post("c1", "hello"))

    def test_posts_page_must_be_an_object(self):
        client, _ = mm({("GET", "/api/v4/channels/c1/posts"): httpx.Response(200, json=[])})
        with pytest.raises(TransportError, match="expected a JSON object"):
            asyncio.run(client.get_posts_for_channel("c1", 0, 200))

    def test_timeline_with_broken_tweet(self):
        client, _ = tw({
            ("GET", "/1.1/statuses/home_timeline.json"): httpx.Response(200, json=[{"text": "no id"}]),
        })
        with pytest.raises(TransportError, match="malformed tweet"):
            asyncio.run(client.home_timeline(20))

    def test_follow_reply_not_an_object(self):
        client, _ = tw({("POST", "/1.1/friendships/create.json"): httpx.Response(200, json=[1])})
        with pytest.raises(TransportError, match="friendships/create"):
            asyncio.run(client.follow("nasa"))
