"""Bridge runtime — wires the components, runs the tasks, coordinates shutdown."""
from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any, Awaitable, Callable

from tweetbridge.commands import CommandRouter
from tweetbridge.config import BridgeConfig
from tweetbridge.errors import FatalError, StartupError, TransportError
from tweetbridge.mattermost import MattermostClient
from tweetbridge.poller import TimelinePoller
from tweetbridge.session import SessionManager
from tweetbridge.state import StateStore
from tweetbridge.trust import TrustAuthority
from tweetbridge.twitter import TwitterClient

logger = logging.getLogger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Bridge:
    """One running bridge process.

    Three tasks share the StateStore: the event-stream consumer (owned by
    SessionManager), the poll timer (owned by TimelinePoller) and the stop
    waiter started in wait(). The first of them to finish ends the run.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        chat: Any = None,
        timeline: Any = None,
        store: StateStore | None = None,
        session: SessionManager | None = None,
    ) -> None:
        self._config = config
        self._chat = chat if chat is not None else MattermostClient(config.url)
        self._timeline = timeline if timeline is not None else TwitterClient(
            config.consumer_key,
            config.consumer_secret,
            config.access_token,
            config.access_secret,
        )
        self._store = store or StateStore(config.data_path)
        self._trust = TrustAuthority(self._store)
        self._session = session or SessionManager(self._chat, config)
        self._poller: TimelinePoller | None = None
        self._router: CommandRouter | None = None
        self._stop_requested = asyncio.Event()
        self._running = False
        self._shut_down = False
        self.exit_code = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def session(self) -> SessionManager:
        return self._session

    @property
    def poller(self) -> TimelinePoller | None:
        return self._poller

    # --- Startup ---

    async def start(self) -> None:
        """Load state, log in to both platforms, subscribe, start the tasks."""
        if self.running:
            raise RuntimeError("already running")
        problems = self._config.problems()
        if problems:
            raise StartupError("Invalid configuration: " + "; ".join(problems))
        self._running = True

        self._store.load()

        try:
            twu = await self._timeline.verify_credentials()
        except TransportError as e:
            raise StartupError(f"twitter: failed to login: {e}") from e
        logger.info("twitter: logged in as @%s", twu.screen_name)

        ctx = await self._session.setup()

        self._poller = TimelinePoller(
            self._timeline,
            self._chat,
            self._store,
            channel_id=ctx.channel_id,
            interval=self._config.check_interval,
            max_tweets=self._config.max_tweets,
            report=self.report,
        )
        self._router = CommandRouter(
            self._chat,
            self._timeline,
            self._trust,
            me=ctx.me,
            check=self._poller.check,
            debug_channel_id=ctx.debug_channel_id,
        )
        self._session.set_handler(self._router.dispatch)

        try:
            await self._session.subscribe()
        except TransportError as e:
            raise StartupError(f"Could not subscribe to events: {e}") from e

        self._session.start()
        self._poller.start()

    async def report(self, message: str) -> None:
        """Send a diagnostic to the debug channel, or the log without one."""
        debug_channel_id = self._session.context.debug_channel_id
        if not debug_channel_id:
            logger.warning("DebugChannel: %s", message)
            return
        try:
            await self._chat.create_post(debug_channel_id, message)
        except TransportError as e:
            logger.warning("Failed to send debug message (%s): %s", e, message)

    # --- Running ---

    def request_stop(self) -> None:
        if not self._stop_requested.is_set():
            logger.info("Interrupt received, shutting down...")
        self._stop_requested.set()

    async def wait(self) -> None:
        """Block until stop is requested or a background task dies."""
        waiter = asyncio.create_task(self._stop_requested.wait(), name="stop-waiter")
        tasks = {waiter}
        for task in (self._session.task, self._poller.task if self._poller else None):
            if task is not None:
                tasks.add(task)
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not waiter.done():
                waiter.cancel()

        for task in done:
            if task is waiter or task.cancelled():
                continue
            exc = task.exception()
            if exc is not None:
                logger.error("Fatal: %s", exc)
                self.exit_code = 1
            elif not self._stop_requested.is_set():
                logger.error("Task %s exited unexpectedly", task.get_name())
                self.exit_code = 1

    async def shutdown(self) -> None:
        """Close the stream, stop polling, flush state. Safe to call twice.

        Each step runs even if an earlier one failed.
        """
        if self._shut_down:
            logger.debug("Shutdown already done")
            return
        self._shut_down = True
        self._running = False

        steps: list[tuple[str, Callable[[], Awaitable[None]]]] = [
            ("websockets", self._session.close),
            ("ticker", self._stop_poller),
            ("data", self._store.flush),
            ("clients", self._close_clients),
        ]
        for name, step in steps:
            logger.info("  %s", name)
            try:
                await step()
            except Exception:
                logger.exception("Shutdown step %r failed", name)
                if name == "data":
                    self.exit_code = 1
        logger.info("     ... done: bye!")

    async def _stop_poller(self) -> None:
        if self._poller is not None:
            await self._poller.stop()

    async def _close_clients(self) -> None:
        try:
            await self._chat.aclose()
        finally:
            await self._timeline.aclose()

    async def run(self) -> int:
        """Run until SIGINT/SIGTERM or a fatal error. Returns the exit status."""
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in _SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_stop)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("Cannot install handler for %s", sig.name)

        try:
            await self.start()
            await self.wait()
        except FatalError as e:
            logger.error("%s", e)
            self.exit_code = 1
        finally:
            await self.shutdown()
            for sig in installed:
                loop.remove_signal_handler(sig)
        return self.exit_code
