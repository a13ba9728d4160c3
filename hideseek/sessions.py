"""Session registry — game session creation, lookup, and teardown.

Also owns the post_mapping secondary index (external post id → session
id). The mapping is a best-effort lookup aid: attach_post does not check
the session exists, and a mapping that outlives its session resolves to
None rather than a partial record. The sweeper removes such orphans.

Tier 3 service module: imports from store, guesses (Tier 2-3), schemas,
errors (Tier 1).

Usage:
    from hideseek.sessions import SessionRegistry

    registry = SessionRegistry(store, ledger)
    session = await registry.create_session("t2_abc", "octmap", spot)
    await registry.attach_post(session.session_id, "t3_post1")
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from hideseek.errors import ValidationError
from hideseek.guesses import GuessLedger
from hideseek.schemas import GameSession, HidingSpot, PostMapping
from hideseek.store import RecordKind, SchemaStore

logger = logging.getLogger("hideseek.sessions")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _invalid(exc: PydanticValidationError) -> ValidationError:
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return ValidationError(f"{loc}: {first.get('msg', 'invalid value')}")


class SessionRegistry:
    """Creates and resolves game sessions.

    Args:
        store: Schema store for sessions and post mappings.
        ledger: Guess ledger, used to tear down a session's guesses.
    """

    def __init__(self, store: SchemaStore, ledger: GuessLedger) -> None:
        self._store = store
        self._ledger = ledger

    async def create_session(
        self,
        creator_id: str,
        map_key: str,
        hiding_spot: HidingSpot | dict[str, Any],
        post_id: str | None = None,
        post_url: str | None = None,
    ) -> GameSession:
        """Creates a session with a fresh id and the current timestamp.

        When post_id is given the post mapping is written too.

        Raises:
            ValidationError: Empty map key, out-of-range coordinates, or
                malformed identifiers. Nothing is written.
        """
        try:
            spot = (
                hiding_spot
                if isinstance(hiding_spot, HidingSpot)
                else HidingSpot.model_validate(hiding_spot)
            )
            session = GameSession(
                session_id=uuid.uuid4().hex,
                creator_id=creator_id,
                map_key=map_key,
                hiding_spot=spot,
                created_at=_now_ms(),
                post_id=post_id,
                post_url=post_url,
            )
        except PydanticValidationError as exc:
            raise _invalid(exc) from exc

        await self._store.put(RecordKind.SESSION, session.session_id, session)
        if post_id is not None:
            await self.attach_post(session.session_id, post_id)

        logger.info("Created game session %s on map %s", session.session_id, map_key)
        return session

    async def get_session(self, session_id: str) -> GameSession | None:
        return await self._store.get(RecordKind.SESSION, session_id)

    async def attach_post(self, session_id: str, post_id: str) -> None:
        """Writes post_mapping:{post_id} → session_id.

        The mapping is written even when the session is gone. A live session
        also records the post id, so delete_session can find the mapping.
        The hiding spot is never touched.
        """
        try:
            mapping = PostMapping(post_id=post_id, session_id=session_id)
        except PydanticValidationError as exc:
            raise _invalid(exc) from exc
        await self._store.put(RecordKind.POST_MAPPING, post_id, mapping)

        session = await self.get_session(session_id)
        if session is not None and session.post_id != post_id:
            updated = session.model_copy(update={"post_id": post_id})
            await self._store.put(RecordKind.SESSION, session_id, updated)

    async def get_session_by_post(self, post_id: str) -> GameSession | None:
        """Resolves a post to its session; None if either link has expired."""
        mapping = await self._store.get(RecordKind.POST_MAPPING, post_id)
        if mapping is None:
            return None
        session = await self.get_session(mapping.session_id)
        if session is None:
            logger.info("Post %s maps to expired session %s", post_id, mapping.session_id)
        return session

    async def is_creator(self, session_id: str, player_id: str) -> bool:
        session = await self.get_session(session_id)
        return session is not None and session.creator_id == player_id

    async def delete_session(self, session_id: str) -> int:
        """Removes a session, its guesses, its stats cache, and its post mapping.

        Keys under game:{session_id}: that the log no longer references are
        swept too. Returns the number of keys removed.
        """
        session = await self.get_session(session_id)
        deleted = await self._ledger.delete_session_guesses(session_id)
        deleted += await self._store.delete_namespace(self._store.session_namespace(session_id))
        if session is not None and session.post_id:
            deleted += await self._store.delete_all(RecordKind.POST_MAPPING, session.post_id)
        deleted += await self._store.delete_all(RecordKind.SESSION, session_id)
        logger.info("Deleted game session %s (%d keys)", session_id, deleted)
        return deleted
