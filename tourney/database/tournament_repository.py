from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.database.models import (
    Tournament, TournamentParticipant, TournamentStatus, BracketType, ParticipantType
)
from tourney.utils.exceptions import InvalidArgumentError, NotFoundError
from tourney.utils.logger import setup_logger

logger = setup_logger(__name__)


class TournamentRepository:
    """Data access for tournaments and their registered participants"""

    def __init__(self, database):
        self.db = database
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        if session:
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    async def create(
        self,
        name: str,
        status: TournamentStatus = TournamentStatus.PENDING,
        bracket_type: BracketType = BracketType.SINGLE_ELIMINATION,
        is_single_match: bool = False,
        entry_fee: int = 0,
        max_participants: Optional[int] = None,
        start_date: Optional[datetime] = None,
        description: Optional[str] = None,
        session: Optional[AsyncSession] = None
    ) -> Tournament:
        if not name:
            raise InvalidArgumentError("Tournament name is required.")
        if entry_fee < 0:
            raise InvalidArgumentError("Entry fee cannot be negative.")

        tournament = Tournament(
            name=name,
            description=description,
            status=status,
            bracket_type=bracket_type,
            is_single_match=is_single_match,
            entry_fee=entry_fee,
            max_participants=max_participants,
            start_date=start_date
        )
        async with self._get_session_context(session) as s:
            s.add(tournament)
            if not session:
                await s.commit()
            else:
                await s.flush()

        self.logger.info(f"Created tournament {tournament.id} ({name})")
        return tournament

    async def find_by_id(self, tournament_id: str, session: Optional[AsyncSession] = None) -> Optional[Tournament]:
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Tournament).where(Tournament.id == tournament_id)
            )
            return result.scalar_one_or_none()

    async def get_by_id(self, tournament_id: str, session: Optional[AsyncSession] = None) -> Tournament:
        tournament = await self.find_by_id(tournament_id, session=session)
        if tournament is None:
            raise NotFoundError("Tournament", tournament_id)
        return tournament

    async def update_status(
        self,
        tournament_id: str,
        status: TournamentStatus,
        session: Optional[AsyncSession] = None
    ) -> Tournament:
        async with self._get_session_context(session) as s:
            tournament = await self.get_by_id(tournament_id, session=s)
            previous = tournament.status
            tournament.update_status(status)
            if not session:
                await s.commit()
            else:
                await s.flush()

        self.logger.info(f"Tournament {tournament_id}: {previous.value} -> {tournament.status.value}")
        return tournament

    async def save(self, tournament: Tournament, session: Optional[AsyncSession] = None) -> Tournament:
        async with self._get_session_context(session) as s:
            s.add(tournament)
            if not session:
                await s.commit()
            else:
                await s.flush()
        return tournament

    async def add_participant(
        self,
        tournament_id: str,
        participant_id: str,
        participant_type: ParticipantType = ParticipantType.USER,
        seed: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ) -> TournamentParticipant:
        """
        Register a user or team.

        Raises:
            NotFoundError: Unknown tournament
            InvalidArgumentError: Participant already registered
        """
        async with self._get_session_context(session) as s:
            await self.get_by_id(tournament_id, session=s)
            existing = await s.execute(
                select(TournamentParticipant.id).where(
                    TournamentParticipant.tournament_id == tournament_id,
                    TournamentParticipant.participant_id == participant_id
                )
            )
            if existing.scalar_one_or_none() is not None:
                raise InvalidArgumentError(
                    f"Participant {participant_id} is already registered in tournament {tournament_id}",
                    "❌ You are already registered for this tournament!"
                )

            participant = TournamentParticipant(
                tournament_id=tournament_id,
                participant_id=participant_id,
                participant_type=participant_type,
                seed=seed
            )
            s.add(participant)
            if not session:
                await s.commit()
            else:
                await s.flush()

        self.logger.info(f"Registered {participant_type.value} {participant_id} in tournament {tournament_id}")
        return participant

    async def list_participants(
        self,
        tournament_id: str,
        session: Optional[AsyncSession] = None
    ) -> List[TournamentParticipant]:
        """Registered participants in registration order"""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(TournamentParticipant)
                .where(TournamentParticipant.tournament_id == tournament_id)
                .order_by(TournamentParticipant.registered_at, TournamentParticipant.id)
            )
            return list(result.scalars().all())
