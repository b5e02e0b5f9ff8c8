"""Bot state — JSON-backed trust map and timeline cursor."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from tweetbridge.errors import StateError
from tweetbridge.models import Tweet

logger = logging.getLogger(__name__)

# The state file sits next to credentials in config; keep it owner-only.
_FILE_MODE = 0o600


@dataclass
class BotState:
    """In-memory copy of everything the bridge persists."""

    trusted: dict[str, bool] = field(default_factory=dict)
    last_post: int = 0

    def to_dict(self) -> dict:
        return {"trusted": dict(self.trusted), "last_post": self.last_post}

    @classmethod
    def from_dict(cls, data: dict) -> BotState:
        # A hand-edited file may carry "trusted": null.
        trusted = data.get("trusted") or {}
        if not isinstance(trusted, dict):
            raise ValueError("'trusted' must be a mapping")
        return cls(
            trusted={str(k): bool(v) for k, v in trusted.items()},
            last_post=int(data.get("last_post") or 0),
        )


class StateStore:
    """Owns the single BotState of the process and its on-disk copy.

    Every read-modify-persist sequence runs under ``lock``. The lock is never
    held across a remote call; callers fetch first, then enter the critical
    section to claim or mutate.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._state = BotState()
        self._loaded = False
        self.lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def trusted(self) -> dict[str, bool]:
        return self._state.trusted

    @property
    def cursor(self) -> int:
        return self._state.last_post

    # --- Load / save ---

    def load(self) -> BotState:
        """Read the state file. A missing file means open mode and cursor 0."""
        if not self._path.is_file():
            logger.info("No state file at %s, starting empty", self._path)
            self._state = BotState()
            self._loaded = True
            return self._state
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("top-level value must be an object")
            self._state = BotState.from_dict(raw)
        except (OSError, ValueError, TypeError) as e:
            raise StateError(f"Could not load state file {self._path}: {e}") from e
        self._loaded = True
        logger.info(
            "Loaded state: %d trust entries, cursor %d",
            len(self._state.trusted), self._state.last_post,
        )
        return self._state

    def save(self) -> None:
        """Write the whole state atomically. Any failure is fatal."""
        text = json.dumps(self._state.to_dict(), indent=2, sort_keys=True) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=self._path.name + ".", dir=str(self._path.parent))
            try:
                os.fchmod(fd, _FILE_MODE)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp, self._path)
            finally:
                if os.path.exists(tmp):
                    os.unlink(tmp)
        except OSError as e:
            raise StateError(f"Could not write state file {self._path}: {e}") from e

    async def flush(self) -> None:
        """Persist the in-memory state. No-op until load() has succeeded."""
        if not self.loaded:
            logger.debug("State never loaded, not flushing")
            return
        async with self.lock:
            self.save()

    # --- Mutations ---

    async def set_trusted(self, identity_id: str, flag: bool) -> bool:
        """Record a trust decision. Returns False if it was already recorded."""
        async with self.lock:
            old = self._state.trusted.get(identity_id)
            if old is not None and old == flag:
                return False
            self._state.trusted[identity_id] = flag
            self.save()
            return True

    async def claim_newer(self, tweets: Sequence[Tweet]) -> list[Tweet]:
        """Advance the cursor past ``tweets`` and return the ones to publish.

        Only items strictly newer than the cursor at the moment of the claim
        are returned, in their original order. The new cursor is persisted
        before this returns, so a crash while publishing loses items rather
        than repeating them.
        """
        async with self.lock:
            cursor = self._state.last_post
            fresh = [t for t in tweets if t.id > cursor]
            if not fresh:
                return []
            self._state.last_post = max(cursor, max(t.id for t in fresh))
            self.save()
            logger.debug("Cursor advanced %d -> %d", cursor, self._state.last_post)
            return fresh
