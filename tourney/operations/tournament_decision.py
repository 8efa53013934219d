"""
Tournament Decision Operations

A manager's start/cancel decision for a tournament that has closed
registration and is AWAITING_DECISION.

The collaborator side effect (match generation or refunds) and the
tournament status change are committed in one transaction: a failure
in either leaves no matches, no refunds and the status untouched.
"""

from enum import Enum
from typing import Dict, Optional, Union

from tourney.constants import TournamentConstants
from tourney.database.models import TournamentStatus
from tourney.database.tournament_repository import TournamentRepository
from tourney.operations.refund_operations import RefundOperations
from tourney.operations.single_match import SingleMatchStarter
from tourney.services.authorization import AuthorizationService
from tourney.utils.exceptions import (
    BracketNotImplementedError, InvalidArgumentError, InvalidStateError, PermissionDeniedError
)
from tourney.utils.logger import setup_logger

logger = setup_logger(__name__)


class TournamentDecision(Enum):
    START = "start"
    CANCEL = "cancel"


class TournamentDecisionOperation:
    """
    Orchestrates the start/cancel decision.

    Checks run in this order: manager capability, tournament existence,
    AWAITING_DECISION status, then the decision value.
    """

    def __init__(
        self,
        database,
        tournament_repository: Optional[TournamentRepository] = None,
        authorization: Optional[AuthorizationService] = None,
        single_match_starter: Optional[SingleMatchStarter] = None,
        refund_operations: Optional[RefundOperations] = None
    ):
        self.db = database
        self.tournament_repo = tournament_repository or TournamentRepository(database)
        self.authorization = authorization or AuthorizationService(lambda: database.async_session())
        self.single_match_starter = single_match_starter or SingleMatchStarter(
            database, tournament_repository=self.tournament_repo
        )
        self.refund_operations = refund_operations or RefundOperations(
            database, tournament_repository=self.tournament_repo
        )
        self.logger = logger

    async def execute(
        self,
        tournament_id: str,
        manager_id: str,
        decision: Union[TournamentDecision, str]
    ) -> Dict[str, str]:
        """
        Apply a manager's decision.

        Args:
            tournament_id: Tournament awaiting a decision
            manager_id: Acting user, must hold manager capability
            decision: "start" or "cancel"

        Returns:
            Dict with a confirmation message and the new status

        Raises:
            PermissionDeniedError: manager_id lacks manager capability
            NotFoundError: Unknown tournament
            InvalidStateError: Tournament is not AWAITING_DECISION
            BracketNotImplementedError: Starting anything but a single match
            InvalidArgumentError: Unknown decision
        """
        async with self.db.transaction() as session:
            if not await self.authorization.has_manager_capability(manager_id, session=session):
                raise PermissionDeniedError("Only tournament managers can decide on a tournament.")

            tournament = await self.tournament_repo.get_by_id(tournament_id, session=session)

            if tournament.status != TournamentStatus.AWAITING_DECISION:
                raise InvalidStateError(
                    f"Tournament is not awaiting a decision. Current status: {tournament.status.value}",
                    "❌ This tournament is not awaiting a decision."
                )

            decision = self._parse_decision(decision)

            if decision == TournamentDecision.START:
                if not tournament.is_single_match:
                    raise BracketNotImplementedError(tournament.bracket_type)
                await self.single_match_starter.execute(tournament, session)
                tournament.update_status(TournamentStatus.ONGOING)
                message = TournamentConstants.START_MESSAGE
            else:
                await self.refund_operations.execute(tournament, session)
                tournament.cancel_tournament(TournamentConstants.MANAGER_CANCEL_REASON)
                message = TournamentConstants.CANCEL_MESSAGE

            await self.tournament_repo.save(tournament, session=session)

        self.logger.info(
            f"Manager {manager_id} decided '{decision.value}' for tournament {tournament_id}: "
            f"now {tournament.status.value}"
        )
        return {'message': message, 'status': tournament.status.value}

    @staticmethod
    def _parse_decision(decision) -> TournamentDecision:
        if isinstance(decision, TournamentDecision):
            return decision
        if isinstance(decision, str):
            try:
                return TournamentDecision(decision.strip().lower())
            except ValueError:
                pass
        raise InvalidArgumentError(
            f"Invalid decision {decision!r}. Must be \"start\" or \"cancel\".",
            "❌ Decision must be start or cancel."
        )
