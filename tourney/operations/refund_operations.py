"""
Refund Operations Module

Reverses entry-fee holds when a tournament is canceled. Each refund
credits the participant's wallet and appends a TicketLedger entry.

Runs inside the caller's transaction; errors propagate so the caller's
status change rolls back with the refunds.
"""

from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.config import Config
from tourney.database.models import Player, Tournament, TicketLedger, ParticipantType
from tourney.database.tournament_repository import TournamentRepository
from tourney.utils.logger import setup_logger

logger = setup_logger(__name__)


class RefundOperations:
    """Entry-fee refunds for canceled tournaments"""

    def __init__(self, database, tournament_repository: Optional[TournamentRepository] = None):
        self.db = database
        self.tournament_repo = tournament_repository or TournamentRepository(database)
        self.logger = logger

    async def credit_player(
        self,
        player_id: str,
        amount: int,
        reason: str,
        session: AsyncSession,
        tournament_id: Optional[str] = None
    ) -> Optional[TicketLedger]:
        """
        Credit a player's wallet with atomic balance tracking (session-aware).

        Returns:
            The ledger entry, or None when the player does not exist
        """
        # Lock the player record for atomic balance update
        player_result = await session.execute(
            select(Player).where(Player.id == player_id).with_for_update()
        )
        player = player_result.scalar_one_or_none()
        if player is None:
            return None

        new_balance = player.tickets + amount
        player.tickets = new_balance

        ledger_entry = TicketLedger(
            player_id=player_id,
            change_amount=amount,
            reason=reason,
            balance_after=new_balance,
            related_tournament_id=tournament_id
        )
        session.add(ledger_entry)
        await session.flush()  # Use flush to get ID, let caller handle commit
        return ledger_entry

    async def execute(self, tournament: Tournament, session: AsyncSession) -> int:
        """
        Refund the entry fee to every registered participant.

        Args:
            tournament: Tournament being canceled
            session: The caller's transaction

        Returns:
            Number of refunds issued
        """
        fee = tournament.entry_fee or 0
        if fee <= 0:
            self.logger.info(f"Tournament {tournament.id} has no entry fee; nothing to refund")
            return 0

        participants = await self.tournament_repo.list_participants(tournament.id, session=session)
        refunded = 0
        for participant in participants:
            if participant.participant_type != ParticipantType.USER:
                self.logger.warning(
                    f"Skipping refund for {participant.participant_type.value} {participant.participant_id}: "
                    f"only user wallets are refunded"
                )
                continue

            entry = await self.credit_player(
                participant.participant_id, fee, Config.REFUND_REASON, session, tournament.id
            )
            if entry is None:
                self.logger.warning(
                    f"Skipping refund for {participant.participant_id}: no player record"
                )
                continue
            refunded += 1

        self.logger.info(f"Refunded {refunded} participant(s) of tournament {tournament.id} ({fee} tickets each)")
        return refunded
