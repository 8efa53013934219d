"""
Winner Progression Module

Moves the winner of a finished match into its slot of the next-round
match. Progression is always an explicit step taken by the caller of a
state-machine method; matches never advance themselves.

Key functionality:
- feeder_slot(): which downstream slot a feeder's winner occupies
- advance_winner(): seat one winner, deriving the downstream state once
  both slots are known
- advance_byes(): in-memory pass over a freshly generated bracket
- ProgressionService: the persisted counterpart, run inside the
  transaction that finalized, canceled or reopened the upstream match
"""

from typing import Dict, List, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.constants import MatchConstants
from tourney.database.models import Match, MatchStatus
from tourney.utils.exceptions import InvalidArgumentError
from tourney.utils.logger import setup_logger

logger = setup_logger(__name__)

# Downstream states that can still take a participant
SEATABLE_STATUSES = frozenset({MatchStatus.PENDING, MatchStatus.SCHEDULED, MatchStatus.BYE})


def feeder_slot(feeders: Sequence[Match], match: Match) -> int:
    """
    Slot (1 or 2) that match's winner takes in the next round.

    The feeder with the lower match_number_in_round fills slot 1.
    """
    ordered = sorted(feeders, key=lambda m: m.match_number_in_round)
    for position, feeder in enumerate(ordered):
        if feeder.id == match.id:
            if position >= 2:
                raise InvalidArgumentError(f"Match {match.id} is feeder #{position + 1}; at most two are allowed")
            return MatchConstants.SLOT_ONE if position == 0 else MatchConstants.SLOT_TWO
    raise InvalidArgumentError(f"Match {match.id} does not feed the given match")


def _sibling(feeders: Sequence[Match], match: Match) -> Optional[Match]:
    for feeder in feeders:
        if feeder.id != match.id:
            return feeder
    return None


def advance_winner(completed: Match, downstream: Match, feeders: Sequence[Match]) -> bool:
    """
    Seat the winner of completed in downstream.

    With the other slot still open the winner is seated alone and the
    downstream state is left as is. Once both slots are filled,
    set_participants schedules the match. A canceled sibling feeder leaves
    nobody to wait for, so the winner gets a bye.

    Returns:
        True if downstream changed, False if the winner was already seated
    """
    if not completed.is_finished or completed.winner_id is None:
        raise InvalidArgumentError(f"Match {completed.id} has no final winner to advance")
    if completed.next_match_id != downstream.id:
        raise InvalidArgumentError(f"Match {completed.id} does not feed match {downstream.id}")

    winner_id = completed.winner_id
    winner_type = completed.winner_type or completed.participant_type_for(winner_id)
    if downstream.has_participant(winner_id):
        return False

    slot = feeder_slot(feeders, completed)
    if slot == MatchConstants.SLOT_ONE:
        p1_id, p1_type = winner_id, winner_type
        p2_id, p2_type = downstream.participant2_id, downstream.participant2_type
        other_id = p2_id
    else:
        p1_id, p1_type = downstream.participant1_id, downstream.participant1_type
        p2_id, p2_type = winner_id, winner_type
        other_id = p1_id

    sibling = _sibling(feeders, completed)
    if other_id is not None:
        downstream.set_participants(p1_id, p1_type, p2_id, p2_type)
    elif sibling is not None and sibling.status == MatchStatus.CANCELED:
        downstream.set_as_bye(winner_id, winner_type)
    else:
        downstream.seat_participant(slot, winner_id, winner_type)
    return True


def advance_byes(matches: Sequence[Match]) -> List[Match]:
    """
    Push the winners of already-finished matches (generator byes) one round on.

    Works on unsaved matches, before the bracket is persisted.

    Returns:
        Downstream matches that changed
    """
    by_id: Dict[str, Match] = {m.id: m for m in matches}
    changed = []
    for match in sorted(matches, key=lambda m: (m.round_number, m.match_number_in_round)):
        if not match.is_finished or match.winner_id is None or match.is_final:
            continue
        downstream = by_id.get(match.next_match_id)
        if downstream is None or downstream.status not in SEATABLE_STATUSES:
            continue
        feeders = [m for m in matches if m.next_match_id == downstream.id]
        if advance_winner(match, downstream, feeders):
            changed.append(downstream)
    return changed


class ProgressionService:
    """Persisted progression between rounds"""

    def __init__(self, match_repository):
        self.match_repo = match_repository
        self.logger = logger

    async def on_match_finalized(self, match: Match, session: AsyncSession) -> List[Match]:
        """
        Advance the winner of a COMPLETED or BYE match.

        A downstream match that itself becomes a BYE is advanced in turn.
        No-op for the final, for a match without a winner, or when the
        downstream match is already past scheduling.

        Returns:
            Downstream matches that were updated
        """
        advanced = []
        current = match
        while current is not None:
            if not current.is_finished or current.winner_id is None or current.is_final:
                break

            downstream = await self.match_repo.find_by_id(current.next_match_id, session=session)
            if downstream is None:
                self.logger.warning(f"Match {current.id} links to missing match {current.next_match_id}")
                break
            if downstream.status not in SEATABLE_STATUSES:
                self.logger.warning(
                    f"Not advancing winner of match {current.id}: match {downstream.id} is {downstream.status.value}"
                )
                break

            feeders = await self.match_repo.find_feeders(downstream.id, session=session)
            if not advance_winner(current, downstream, feeders):
                break
            await self.match_repo.save(downstream, session=session)
            advanced.append(downstream)
            self.logger.info(
                f"Advanced {current.winner_id} from match {current.id} to match {downstream.id} "
                f"({downstream.status.value})"
            )

            current = downstream if downstream.status == MatchStatus.BYE else None
        return advanced

    async def on_result_withdrawn(
        self,
        match: Match,
        previous_winner_id: Optional[str],
        session: AsyncSession
    ) -> Optional[Match]:
        """
        Take back a winner advanced by a result that no longer stands.

        Runs when a dispute is resolved as void or replay. The winner is
        removed from its feeder slot downstream while that match is still
        PENDING or SCHEDULED; once it is underway it is left alone and a
        warning is logged for a moderator to sort out.

        Returns:
            The downstream match if it was changed
        """
        if previous_winner_id is None or match.is_final:
            return None

        downstream = await self.match_repo.find_by_id(match.next_match_id, session=session)
        if downstream is None:
            self.logger.warning(f"Match {match.id} links to missing match {match.next_match_id}")
            return None

        feeders = await self.match_repo.find_feeders(downstream.id, session=session)
        slot = feeder_slot(feeders, match)
        seated = downstream.participant1_id if slot == MatchConstants.SLOT_ONE else downstream.participant2_id
        if seated != previous_winner_id:
            return None

        if downstream.status not in (MatchStatus.PENDING, MatchStatus.SCHEDULED):
            self.logger.warning(
                f"Result of match {match.id} withdrawn but {previous_winner_id} stays in match "
                f"{downstream.id}, which is already {downstream.status.value}"
            )
            return None

        downstream.unseat_participant(slot)
        await self.match_repo.save(downstream, session=session)
        self.logger.info(
            f"Withdrew {previous_winner_id} from match {downstream.id} after match {match.id} "
            f"was {match.status.value} ({downstream.status.value})"
        )
        return downstream

    async def on_match_canceled(self, match: Match, session: AsyncSession) -> List[Match]:
        """
        Give a walkover to the opponent waiting downstream of a canceled match.

        Applies when the sibling feeder already advanced its winner and
        this match will now never produce one.
        """
        if match.status != MatchStatus.CANCELED or match.is_final:
            return []

        downstream = await self.match_repo.find_by_id(match.next_match_id, session=session)
        if downstream is None or downstream.status not in (MatchStatus.PENDING, MatchStatus.SCHEDULED):
            return []

        seated = downstream.participant_ids
        if len(seated) != 1:
            return []

        feeders = await self.match_repo.find_feeders(downstream.id, session=session)
        sibling = _sibling(feeders, match)
        if sibling is None or not sibling.is_finished or sibling.winner_id != seated[0]:
            return []

        downstream.set_as_bye(seated[0], downstream.participant_type_for(seated[0]))
        await self.match_repo.save(downstream, session=session)
        self.logger.info(f"Match {match.id} canceled: {seated[0]} receives a walkover in match {downstream.id}")
        return [downstream] + await self.on_match_finalized(downstream, session)
