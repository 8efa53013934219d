"""
Match Repository

Persistence for bracket matches. Every operation accepts an optional
session so callers can compose several writes inside one
Database.transaction(); without one, the repository opens and commits
its own.

Per-match writes are guarded by the version column: an update issued
against a stale version raises ConcurrencyConflictError instead of
overwriting the other writer.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import select, update, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from tourney.database.models import Match, MatchStatus
from tourney.utils.exceptions import (
    ConcurrencyConflictError, InvalidArgumentError, NotFoundError
)
from tourney.utils.logger import setup_logger
from tourney.utils.time_parser import utcnow

logger = setup_logger(__name__)

# Columns that update_by_id never writes directly
PROTECTED_COLUMNS = frozenset({'id', 'version', 'created_at'})


class MatchRepository:
    """Data access for Match rows"""

    def __init__(self, database):
        self.db = database
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise creates and manages a new session.
        """
        if session:
            # If a session is provided, we do not manage its lifecycle
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    async def create(self, match: Match, session: Optional[AsyncSession] = None) -> Match:
        created = await self.create_bulk([match], session=session)
        return created[0]

    async def create_bulk(self, matches: Sequence[Match], session: Optional[AsyncSession] = None) -> List[Match]:
        """
        Insert a batch of matches (typically one generated bracket).

        Args:
            matches: Matches to insert
            session: Optional session for transaction participation

        Returns:
            The inserted matches, versions populated
        """
        matches = list(matches)
        async with self._get_session_context(session) as s:
            s.add_all(matches)
            if not session:  # Only commit if we manage the session
                await s.commit()
            else:
                await s.flush()

        if matches:
            self.logger.info(f"Created {len(matches)} match(es) for tournament {matches[0].tournament_id}")
        return matches

    async def find_by_id(self, match_id: str, session: Optional[AsyncSession] = None) -> Optional[Match]:
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Match).where(Match.id == match_id)
            )
            return result.scalar_one_or_none()

    async def get_by_id(self, match_id: str, session: Optional[AsyncSession] = None) -> Match:
        """Like find_by_id but raises NotFoundError for a missing row"""
        match = await self.find_by_id(match_id, session=session)
        if match is None:
            raise NotFoundError("Match", match_id)
        return match

    async def find_by_tournament(
        self,
        tournament_id: str,
        round_number: Optional[int] = None,
        status: Optional[MatchStatus] = None,
        session: Optional[AsyncSession] = None
    ) -> List[Match]:
        """All matches of a tournament ordered by round then slot"""
        async with self._get_session_context(session) as s:
            query = select(Match).where(Match.tournament_id == tournament_id)
            if round_number is not None:
                query = query.where(Match.round_number == round_number)
            if status is not None:
                query = query.where(Match.status == status)
            query = query.order_by(Match.round_number, Match.match_number_in_round)

            result = await s.execute(query)
            return list(result.scalars().all())

    async def find_by_participant(
        self,
        participant_id: str,
        tournament_id: Optional[str] = None,
        status: Optional[MatchStatus] = None,
        session: Optional[AsyncSession] = None
    ) -> List[Match]:
        async with self._get_session_context(session) as s:
            query = select(Match).where(
                or_(Match.participant1_id == participant_id, Match.participant2_id == participant_id)
            )
            if tournament_id is not None:
                query = query.where(Match.tournament_id == tournament_id)
            if status is not None:
                query = query.where(Match.status == status)
            query = query.order_by(Match.round_number, Match.match_number_in_round)

            result = await s.execute(query)
            return list(result.scalars().all())

    async def find_feeders(self, match_id: str, session: Optional[AsyncSession] = None) -> List[Match]:
        """Matches whose winners advance into match_id, ordered by slot"""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Match)
                .where(Match.next_match_id == match_id)
                .order_by(Match.match_number_in_round)
            )
            return list(result.scalars().all())

    async def update_by_id(
        self,
        match_id: str,
        update_data: Dict[str, Any],
        expected_version: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ) -> Match:
        """
        Write columns of a single match.

        With expected_version the write is a single guarded UPDATE that only
        applies when the stored version still matches; otherwise the match is
        loaded and flushed through the ORM, which checks the version it read.

        Raises:
            InvalidArgumentError: Unknown or protected column in update_data
            NotFoundError: No match with match_id
            ConcurrencyConflictError: Version mismatch
        """
        columns = {attr.key for attr in Match.__mapper__.column_attrs}
        unknown = [key for key in update_data if key not in columns or key in PROTECTED_COLUMNS]
        if unknown:
            raise InvalidArgumentError(f"Cannot update match columns: {', '.join(sorted(unknown))}")

        values = dict(update_data)
        values.setdefault('updated_at', utcnow())

        async with self._get_session_context(session) as s:
            try:
                if expected_version is not None:
                    result = await s.execute(
                        update(Match)
                        .where(Match.id == match_id, Match.version == expected_version)
                        .values(version=expected_version + 1, **values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        existing = await s.execute(select(Match.id).where(Match.id == match_id))
                        if existing.scalar_one_or_none() is None:
                            raise NotFoundError("Match", match_id)
                        self.logger.warning(f"Version conflict updating match {match_id} (expected {expected_version})")
                        raise ConcurrencyConflictError(match_id, expected_version)
                    match = (await s.execute(
                        select(Match).where(Match.id == match_id).execution_options(populate_existing=True)
                    )).scalar_one()
                else:
                    match = (await s.execute(select(Match).where(Match.id == match_id))).scalar_one_or_none()
                    if match is None:
                        raise NotFoundError("Match", match_id)
                    for key, value in values.items():
                        setattr(match, key, value)
                    await s.flush()

                if not session:
                    await s.commit()
            except StaleDataError as e:
                self.logger.warning(f"Version conflict updating match {match_id}: {e}")
                raise ConcurrencyConflictError(match_id, expected_version) from e

        self.logger.debug(f"Updated match {match_id}: {sorted(update_data)}")
        return match

    async def save(self, match: Match, session: Optional[AsyncSession] = None) -> Match:
        """
        Flush a mutated match.

        The UPDATE is qualified by the version the match was loaded with, so
        a concurrent writer that got there first turns this into a
        ConcurrencyConflictError.
        """
        # A failed flush expires the instance, so the error must not touch it
        match_id, loaded_version = match.id, match.version
        async with self._get_session_context(session) as s:
            try:
                s.add(match)
                if not session:
                    await s.commit()
                else:
                    await s.flush()
            except StaleDataError as e:
                self.logger.warning(f"Version conflict saving match {match_id} (loaded at version {loaded_version}): {e}")
                raise ConcurrencyConflictError(match_id, loaded_version) from e
        return match

    async def delete_by_id(self, match_id: str, session: Optional[AsyncSession] = None) -> bool:
        """Delete a match; returns False when there was nothing to delete"""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                delete(Match).where(Match.id == match_id)
            )
            if not session:
                await s.commit()
            deleted = result.rowcount > 0

        if deleted:
            self.logger.info(f"Deleted match {match_id}")
        return deleted
