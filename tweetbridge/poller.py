"""Timeline poller — fixed-interval loop that republishes new tweets."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from tweetbridge.errors import FatalError, TransportError
from tweetbridge.models import Tweet
from tweetbridge.state import StateStore

logger = logging.getLogger(__name__)

PROFILE_URL = "https://twitter.com/{}"
STATUS_URL = "https://twitter.com/statuses/{}"


def _user_link(screen_name: str) -> str:
    return f"@[{screen_name}]({PROFILE_URL.format(screen_name)})"


def _quote(text: str) -> str:
    return "\n".join(f"> {line}" for line in text.split("\n"))


def format_tweet(tweet: Tweet) -> str:
    """Render a tweet as a Mattermost message attributed to its author.

    Retweets additionally credit the original author and quote the original
    text; everything else quotes the tweet's own text.
    """
    text = f"{_user_link(tweet.user.screen_name)} [tweeted]({STATUS_URL.format(tweet.id)})"
    original = tweet.retweeted_status
    if original is not None:
        text += f" RT {_user_link(original.user.screen_name)}\n{_quote(original.text)}"
    else:
        text += f"\n{_quote(tweet.text)}"
    return text


class TimelinePoller:
    """Background asyncio task that polls the home timeline.

    Follows the HeartbeatRunner pattern:
    - start() → asyncio.Task running _loop()
    - stop() → sets _stop_event and waits for the task
    - check() → one poll cycle, also used by the ``check`` chat command
    """

    def __init__(
        self,
        timeline: Any,
        chat: Any,
        store: StateStore,
        *,
        channel_id: str,
        interval: int,
        max_tweets: int,
        report: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self._timeline = timeline
        self._chat = chat
        self._store = store
        self._channel_id = channel_id
        self._interval = interval
        self._max_tweets = max_tweets
        self._report = report
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    # --- Poll cycle ---

    async def check(self) -> int:
        """Fetch, claim and publish new tweets. Returns how many were published."""
        since = self._store.cursor
        try:
            tweets = await self._timeline.home_timeline(self._max_tweets, since)
        except TransportError as e:
            await self._emit(f"checkTimeline error: {e}")
            return 0

        fresh = await self._store.claim_newer(tweets)
        if not fresh:
            logger.debug("No new tweets since %d", since)
            return 0

        published = 0
        for tweet in fresh:
            if await self._publish(tweet):
                published += 1
        logger.info("Published %d/%d new tweets (cursor %d)", published, len(fresh), self._store.cursor)
        return published

    async def _publish(self, tweet: Tweet) -> bool:
        try:
            await self._chat.create_post(self._channel_id, format_tweet(tweet))
        except TransportError as e:
            logger.warning("Posting tweet %d failed: %s", tweet.id, e)
            return False
        return True

    async def _emit(self, message: str) -> None:
        if self._report is None:
            logger.warning("%s", message)
            return
        await self._report(message)

    # --- Timer ---

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.check()
            except FatalError:
                raise
            except Exception:
                logger.exception("Timeline check failed")

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name="timeline-poller")
        logger.info("Timeline poller started (interval=%ds)", self._interval)

    async def stop(self) -> None:
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                task.cancel()
        logger.info("Timeline poller stopped")
