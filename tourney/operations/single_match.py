"""
Single-match start path: a tournament that is just one match between its
first two registrants.
"""

from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.constants import BracketConstants
from tourney.database.match_repository import MatchRepository
from tourney.database.models import Match, Tournament
from tourney.database.tournament_repository import TournamentRepository
from tourney.operations.bracket_generator import BracketEntrant, BracketGenerator
from tourney.utils.exceptions import InvalidArgumentError
from tourney.utils.logger import setup_logger

logger = setup_logger(__name__)


class SingleMatchStarter:
    def __init__(
        self,
        database,
        match_repository: Optional[MatchRepository] = None,
        tournament_repository: Optional[TournamentRepository] = None,
        generator: Optional[BracketGenerator] = None
    ):
        self.db = database
        self.match_repo = match_repository or MatchRepository(database)
        self.tournament_repo = tournament_repository or TournamentRepository(database)
        self.generator = generator or BracketGenerator()
        self.logger = logger

    async def execute(self, tournament: Tournament, session: AsyncSession) -> List[Match]:
        """
        Create the tournament's only match from its first two registrants.

        Raises:
            InvalidArgumentError: Fewer than two registered participants
        """
        participants = await self.tournament_repo.list_participants(tournament.id, session=session)
        if len(participants) < BracketConstants.MIN_PARTICIPANTS:
            raise InvalidArgumentError(
                f"Tournament {tournament.id} has {len(participants)} participant(s); "
                f"{BracketConstants.MIN_PARTICIPANTS} are needed to start a match.",
                "❌ Not enough participants to start a match."
            )

        entrants = [
            BracketEntrant(id=p.participant_id, participant_type=p.participant_type)
            for p in participants[:BracketConstants.SLOTS_PER_MATCH]
        ]
        matches = self.generator.generate(
            tournament.id,
            entrants,
            shuffle=False,
            default_match_time=tournament.start_date
        )
        created = await self.match_repo.create_bulk(matches, session=session)
        self.logger.info(f"Started single match {created[0].id} for tournament {tournament.id}")
        return created
