"""Trust authority — who may issue privileged commands."""
from __future__ import annotations

import logging

from tweetbridge.state import StateStore

logger = logging.getLogger(__name__)


class TrustAuthority:
    """Answers trust questions against the persisted trust map.

    While the map is empty every identity is trusted, so the first operator
    can bootstrap with ``trust me``. The first entry written closes the bridge
    to everyone not explicitly trusted. There is no way back to open mode.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def is_open(self) -> bool:
        return not self._store.trusted

    def is_trusted(self, identity_id: str) -> bool:
        trusted = self._store.trusted
        if not trusted:
            return True
        return trusted.get(identity_id, False)

    async def set_trusted(self, identity_id: str, flag: bool) -> bool:
        """Grant or revoke trust. Returns False if nothing changed."""
        changed = await self._store.set_trusted(identity_id, flag)
        if changed:
            logger.info("%s %s", "Trusted" if flag else "Distrusted", identity_id)
        return changed
