"""Chat command router — activation, dispatch, and the command handlers."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from tweetbridge.errors import TransportError, UserInputError
from tweetbridge.models import ChatUser, PendingCommand, Post
from tweetbridge.trust import TrustAuthority

logger = logging.getLogger(__name__)

REFUSAL = "Sorry, I don't trust you :/"
OK = "Ok!"
DONE = "done!"

# Commands that require the sender to be trusted
PRIVILEGED = frozenset({
    "follow", "unfollow", "followers", "trust", "distrust", "check", "clear",
})

# Page size used when sweeping the debug channel
_CLEAR_PAGE_SIZE = 200

Handler = Callable[[PendingCommand, str], Awaitable[None]]


def _screen_name(rest: str) -> str:
    """First argument token with an optional leading '@' removed."""
    parts = rest.split()
    if not parts:
        raise UserInputError("Missing argument")
    name = parts[0].removeprefix("@")
    if not name:
        raise UserInputError("Missing argument")
    return name


class CommandRouter:
    """Turns chat messages addressed to the bot into actions and replies.

    The handler table is fixed at construction. Privileged commands are
    checked against the TrustAuthority before their handler runs; ``ping``
    and unknown commands are always answered.
    """

    def __init__(
        self,
        chat: Any,
        timeline: Any,
        trust: TrustAuthority,
        *,
        me: ChatUser,
        check: Callable[[], Awaitable[int]],
        debug_channel_id: str = "",
    ) -> None:
        self._chat = chat
        self._timeline = timeline
        self._trust = trust
        self._me = me
        self._check = check
        self._debug_channel_id = debug_channel_id
        self._handlers: dict[str, Handler] = {
            "ping": self._cmd_ping,
            "follow": self._cmd_follow,
            "unfollow": self._cmd_unfollow,
            "followers": self._cmd_followers,
            "trust": self._cmd_trust,
            "distrust": self._cmd_distrust,
            "check": self._cmd_check,
            "clear": self._cmd_clear,
        }

    @property
    def commands(self) -> list[str]:
        return list(self._handlers)

    # --- Activation / dispatch ---

    def activate(self, cmd: PendingCommand) -> str | None:
        """Return the command text if the message is addressed to us, else None.

        Direct messages always activate. Channel messages must start with
        ``@<our username>``; the mention is stripped either way.
        """
        if cmd.sender_id == self._me.id:
            return None
        text = cmd.text.strip()
        mention = "@" + self._me.username
        if text.startswith(mention):
            return text[len(mention):].strip()
        if cmd.is_direct:
            return text
        return None

    async def dispatch(self, cmd: PendingCommand) -> None:
        text = self.activate(cmd)
        if text is None:
            return

        parts = text.split(None, 1)
        name = parts[0] if parts else ""
        rest = parts[1] if len(parts) > 1 else ""
        logger.info("Command %r from %s", name, cmd.sender_id)

        handler = self._handlers.get(name)
        if handler is None:
            await self._cmd_unknown(cmd, rest)
            return

        if name in PRIVILEGED and not self._trust.is_trusted(cmd.sender_id):
            await self.reply(cmd, REFUSAL)
            return

        try:
            await handler(cmd, rest)
        except UserInputError as e:
            logger.debug("Command %r rejected: %s", name, e)
            await self.reply(cmd, str(e))
        except TransportError as e:
            logger.warning("Command %r failed: %s", name, e)
            await self.reply(cmd, f"error: {e}")

    async def reply(self, cmd: PendingCommand, message: str) -> None:
        """Post ``message`` into the thread of the originating post."""
        try:
            await self._chat.create_post(cmd.channel_id, message, root_id=cmd.thread_id)
        except TransportError as e:
            logger.warning("Reply to %s failed: %s", cmd.post_id, e)

    # --- Handlers ---

    async def _cmd_unknown(self, cmd: PendingCommand, rest: str) -> None:
        await self.reply(
            cmd,
            "Sorry, I don't understand that command.  "
            f"Available commands: {', '.join(self.commands)}",
        )

    async def _cmd_ping(self, cmd: PendingCommand, rest: str) -> None:
        await self.reply(cmd, "pong")

    async def _cmd_follow(self, cmd: PendingCommand, rest: str) -> None:
        name = _screen_name(rest)
        try:
            await self._timeline.follow(name)
        except TransportError as e:
            await self.reply(cmd, f"Something went wrong: {e}")
            return
        logger.info("Now following @%s", name)
        await self.reply(cmd, OK)

    async def _cmd_unfollow(self, cmd: PendingCommand, rest: str) -> None:
        name = _screen_name(rest)
        try:
            await self._timeline.unfollow(name)
        except TransportError as e:
            await self.reply(cmd, f"Something went wrong: {e}")
            return
        logger.info("Stopped following @%s", name)
        await self.reply(cmd, OK)

    async def _cmd_followers(self, cmd: PendingCommand, rest: str) -> None:
        names = await self._timeline.friends()
        if not names:
            await self.reply(cmd, "I'm not following anyone")
            return
        await self.reply(cmd, f"I'm following: {', '.join(names)}")

    async def _resolve_identity(self, cmd: PendingCommand, rest: str) -> str:
        """``me`` → the sender; anything else is looked up as a username."""
        parts = rest.split()
        if not parts:
            raise UserInputError("Missing argument")
        if parts[0] == "me":
            return cmd.sender_id
        user = await self._chat.get_user_by_username(_screen_name(rest))
        return user.id

    async def _cmd_trust(self, cmd: PendingCommand, rest: str) -> None:
        uid = await self._resolve_identity(cmd, rest)
        if not await self._trust.set_trusted(uid, True):
            await self.reply(cmd, "already trusted")
            return
        await self.reply(cmd, OK)

    async def _cmd_distrust(self, cmd: PendingCommand, rest: str) -> None:
        uid = await self._resolve_identity(cmd, rest)
        if not await self._trust.set_trusted(uid, False):
            await self.reply(cmd, "already distrusted")
            return
        await self.reply(cmd, OK)

    async def _cmd_check(self, cmd: PendingCommand, rest: str) -> None:
        await self._check()
        await self.reply(cmd, DONE)

    async def _cmd_clear(self, cmd: PendingCommand, rest: str) -> None:
        if not self._debug_channel_id:
            await self.reply(cmd, "No DebugChannel set: there is nothing to clear!")
            return

        # Collect first: deleting while paging would shift later pages.
        ours: list[Post] = []
        page = 0
        while True:
            posts = await self._chat.get_posts_for_channel(
                self._debug_channel_id, page, _CLEAR_PAGE_SIZE,
            )
            if not posts:
                break
            ours.extend(p for p in posts if p.user_id == self._me.id and not p.is_reply)
            page += 1

        for post in ours:
            await self._chat.delete_post(post.id)
        logger.info("Cleared %d posts from the debug channel", len(ours))
        await self.reply(cmd, DONE)
