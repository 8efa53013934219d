"""
Match Action Operations

Per-match use cases. Each call loads one match, applies one state-machine
method, flushes it under the version guard and runs progression, all in a
single transaction. Two writers racing on the same match cannot both
apply: the loser gets ConcurrencyConflictError and nothing is committed.
"""

from datetime import datetime
from typing import Callable, Optional

from tourney.database.match_repository import MatchRepository
from tourney.database.models import Match, MatchStatus
from tourney.operations.progression import ProgressionService
from tourney.utils.exceptions import (
    ConcurrencyConflictError, InvalidArgumentError, PermissionDeniedError
)
from tourney.utils.logger import setup_logger

logger = setup_logger(__name__)


class MatchActionService:
    """
    Transactional wrappers around the Match state machine.

    Authorization beyond "the submitter plays in this match" is the
    caller's responsibility.
    """

    def __init__(self, database, match_repository: Optional[MatchRepository] = None,
                 progression: Optional[ProgressionService] = None):
        self.db = database
        self.match_repo = match_repository or MatchRepository(database)
        self.progression = progression or ProgressionService(self.match_repo)
        self.logger = logger

    async def _apply(
        self,
        match_id: str,
        action_name: str,
        mutate: Callable[[Match], None],
        expected_version: Optional[int] = None,
        tournament_id: Optional[str] = None
    ) -> Match:
        async with self.db.transaction() as session:
            match = await self.match_repo.get_by_id(match_id, session=session)
            if tournament_id is not None and match.tournament_id != tournament_id:
                raise InvalidArgumentError(
                    f"Match {match_id} does not belong to tournament {tournament_id}"
                )
            if expected_version is not None and match.version != expected_version:
                self.logger.warning(
                    f"Stale {action_name} on match {match_id}: expected version {expected_version}, found {match.version}"
                )
                raise ConcurrencyConflictError(match_id, expected_version)

            # A winner may already have been moved on by a result that is now being withdrawn
            advanced = match.is_finished or match.status == MatchStatus.DISPUTED
            previous_winner_id = match.winner_id if advanced else None
            mutate(match)
            await self.match_repo.save(match, session=session)

            if previous_winner_id is not None and match.status in (MatchStatus.CANCELED, MatchStatus.SCHEDULED):
                await self.progression.on_result_withdrawn(match, previous_winner_id, session)

            if match.is_finished:
                await self.progression.on_match_finalized(match, session)
            elif match.status == MatchStatus.CANCELED:
                await self.progression.on_match_canceled(match, session)

        self.logger.info(f"Match {match_id}: {action_name} -> {match.status.value} (version {match.version})")
        return match

    async def start_match(self, match_id: str, expected_version: Optional[int] = None) -> Match:
        return await self._apply(match_id, "start", lambda m: m.start(), expected_version)

    async def await_scores(self, match_id: str, expected_version: Optional[int] = None) -> Match:
        return await self._apply(match_id, "await_scores", lambda m: m.await_scores(), expected_version)

    async def submit_result(
        self,
        match_id: str,
        submitter_id: str,
        winner_id: Optional[str],
        score1=None,
        score2=None,
        proof_url: Optional[str] = None,
        tournament_id: Optional[str] = None,
        expected_version: Optional[int] = None
    ) -> Match:
        """
        Record a result reported by one of the two participants.

        The proof URL is stored against the submitter's own slot.

        Raises:
            PermissionDeniedError: submitter is not in the match
        """
        def mutate(match: Match):
            if not match.has_participant(submitter_id):
                raise PermissionDeniedError(f"User {submitter_id} is not a participant in match {match.id}")
            is_first = submitter_id == match.participant1_id
            match.record_result(
                winner_id, score1, score2,
                proof_a=proof_url if is_first else None,
                proof_b=None if is_first else proof_url
            )

        return await self._apply(match_id, "submit_result", mutate, expected_version, tournament_id)

    async def confirm_result(self, match_id: str, confirmer_id: Optional[str] = None,
                             expected_version: Optional[int] = None) -> Match:
        return await self._apply(
            match_id, "confirm_result", lambda m: m.confirm_result(confirmer_id), expected_version
        )

    async def dispute_result(self, match_id: str, reporter_id: str, reason: str,
                             expected_version: Optional[int] = None) -> Match:
        return await self._apply(
            match_id, "dispute_result", lambda m: m.dispute_result(reporter_id, reason), expected_version
        )

    async def resolve_dispute(
        self,
        match_id: str,
        resolved_winner_id: Optional[str],
        admin_notes: Optional[str],
        target_status: MatchStatus = MatchStatus.COMPLETED,
        participant1_score=None,
        participant2_score=None,
        expected_version: Optional[int] = None
    ) -> Match:
        return await self._apply(
            match_id,
            "resolve_dispute",
            lambda m: m.resolve_dispute(
                resolved_winner_id, admin_notes, target_status,
                participant1_score=participant1_score, participant2_score=participant2_score
            ),
            expected_version
        )

    async def cancel_match(self, match_id: str, reason: Optional[str] = None,
                           expected_version: Optional[int] = None) -> Match:
        if reason:
            mutate = lambda m: m.cancel_match(reason)
        else:
            mutate = lambda m: m.cancel_match()
        return await self._apply(match_id, "cancel_match", mutate, expected_version)

    async def reschedule_match(self, match_id: str, new_time: datetime,
                               expected_version: Optional[int] = None) -> Match:
        return await self._apply(
            match_id, "reschedule_match", lambda m: m.update_scheduled_time(new_time), expected_version
        )
