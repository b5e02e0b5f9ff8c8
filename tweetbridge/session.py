"""Transport session manager — Mattermost handshake, event stream, reconnects."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from tweetbridge.config import BridgeConfig
from tweetbridge.errors import FatalError, StartupError, StreamClosed, TransportError
from tweetbridge.models import ChatContext, PendingCommand, decode_event
from tweetbridge.retry import Backoff, retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")

CommandCallback = Callable[[PendingCommand], Awaitable[None]]


class SessionManager:
    """Keeps a live push-event connection to Mattermost.

    Lifecycle:
    - setup() → ping, login, resolve team and channels, join them
    - subscribe() → open the stream and wait for its first event
    - start() → asyncio.Task running run(), the receive loop
    - close() → idempotent teardown of the stream and the loop

    This class is the only writer of the live stream handle.
    """

    def __init__(
        self,
        chat: Any,
        config: BridgeConfig,
        *,
        backoff: Backoff | None = None,
    ) -> None:
        self._chat = chat
        self._config = config
        self._backoff = backoff or Backoff(max_elapsed=config.reconnect_max_elapsed)
        self._on_command: CommandCallback | None = None
        self._context: ChatContext | None = None
        self._stream: Any = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.reconnects = 0

    @property
    def context(self) -> ChatContext:
        if self._context is None:
            raise RuntimeError("setup() has not completed")
        return self._context

    @property
    def stream(self) -> Any:
        return self._stream

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def set_handler(self, on_command: CommandCallback) -> None:
        self._on_command = on_command

    # --- Handshake ---

    async def _step(self, call: Awaitable[T], failure: str) -> T:
        try:
            return await call
        except TransportError as e:
            raise StartupError(f"{failure}: {e}") from e

    async def setup(self) -> ChatContext:
        """Run the startup sequence. Any failure raises StartupError."""
        cfg = self._config
        await self._step(self._chat.ping(), "mattermost: could not connect")
        logger.info("Connected to mattermost server at %s", cfg.url)

        if cfg.token:
            self._chat.use_token(cfg.token)
            me = await self._step(self._chat.get_me(), "mattermost: could not login")
        else:
            me = await self._step(
                self._chat.login(cfg.user, cfg.password), "mattermost: could not login",
            )
        logger.info("mattermost: logged in as %s", me.username)

        team_id = await self._step(
            self._chat.get_team_by_name(cfg.team), f"Could not find team {cfg.team}",
        )

        debug_channel_id = ""
        if cfg.debug_channel:
            debug_channel_id = await self._step(
                self._chat.get_channel_by_name(team_id, cfg.debug_channel),
                f"Could not find debug channel {cfg.debug_channel}",
            )
        else:
            logger.info("No debug channel set, reporting to the log instead")

        channel_id = await self._step(
            self._chat.get_channel_by_name(team_id, cfg.channel),
            f"Could not find channel {cfg.channel}",
        )

        await self._step(
            self._chat.add_channel_member(channel_id, me.id),
            f"Could not join channel {cfg.channel}",
        )
        if debug_channel_id:
            await self._step(
                self._chat.add_channel_member(debug_channel_id, me.id),
                f"Could not join channel {cfg.debug_channel}",
            )

        self._context = ChatContext(
            me=me,
            team_id=team_id,
            channel_id=channel_id,
            debug_channel_id=debug_channel_id,
        )
        return self._context

    # --- Event stream ---

    async def subscribe(self) -> Any:
        """Open a new stream and confirm it is live by reading one event.

        Returns ``None`` (and discards the stream) if close() was called
        while the stream was being opened.
        """
        stream = await self._chat.open_stream(open_timeout=self._config.ready_timeout)
        try:
            first = await asyncio.wait_for(stream.next_event(), timeout=self._config.ready_timeout)
        except asyncio.TimeoutError:
            await stream.close()
            raise StreamClosed("no event received on the new stream")
        if first is None:
            await stream.close()
            raise StreamClosed("failed to read the first event")
        if self._stop_event.is_set():
            await stream.close()
            logger.info("Closed while subscribing, dropping the new stream")
            return None

        previous, self._stream = self._stream, stream
        if previous is not None and previous is not stream:
            await previous.close()
        logger.info("Event stream ready")
        await self._deliver(first)
        return stream

    async def _deliver(self, event: dict[str, Any]) -> None:
        try:
            cmd = decode_event(event)
            if cmd is None or self._on_command is None:
                return
            await self._on_command(cmd)
        except FatalError:
            raise
        except Exception:
            logger.exception("Handling event %r failed", event.get("event"))

    async def _on_retry(self, error: BaseException, attempt: int, delay: float) -> None:
        logger.warning("Reconnect attempt %d failed (%s), retrying in %.1fs", attempt, error, delay)

    async def reconnect(self) -> bool:
        """Re-subscribe with exponential backoff.

        Returns False if the manager was closed while waiting; raises
        ReconnectExhausted when the retry ceiling is hit.
        """
        stream = await retry_with_backoff(
            self.subscribe, self._backoff,
            stop_event=self._stop_event, on_retry=self._on_retry,
        )
        if stream is None:
            return False
        self.reconnects += 1
        logger.info("Event stream re-established (reconnect #%d)", self.reconnects)
        return True

    async def run(self) -> None:
        """Receive loop: forward events in order, reconnect when the stream drops."""
        while not self._stop_event.is_set():
            stream = self._stream
            if stream is None:
                if not await self.reconnect():
                    break
                continue
            event = await stream.next_event()
            if event is None:
                if self._stop_event.is_set():
                    break
                logger.warning("Websocket connection lost")
                if self._stream is stream:
                    self._stream = None
                continue
            await self._deliver(event)

    def start(self) -> None:
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="event-stream")

    async def close(self) -> None:
        """Stop the receive loop and close the stream. Safe to call repeatedly."""
        self._stop_event.set()
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.close()
            logger.info("Event stream closed")
        task, self._task = self._task, None
        try:
            if task is not None and not task.done():
                try:
                    await asyncio.wait_for(task, timeout=5.0)
                except (asyncio.TimeoutError, asyncio.CancelledError):
                    task.cancel()
        finally:
            # A reconnect in flight may have installed a stream after the first check
            late, self._stream = self._stream, None
            if late is not None:
                await late.close()
