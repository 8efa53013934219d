"""
Bracket Generator Module

Builds single-elimination brackets: seeding, byes for non-power-of-two
fields and the next_match_id links between rounds.

Key functionality:
- generate(): entrant list -> flat list of Match objects across all rounds
- validate() / bracket_problems(): structural checks, also usable after
  manual bracket edits
- fisher_yates_shuffle(): seed shuffling with an injectable random source

Generation is pure: nothing is persisted and no I/O happens here.
"""

import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from tourney.config import Config
from tourney.constants import BracketConstants
from tourney.database.models import Match, MatchStatus, ParticipantType
from tourney.utils.exceptions import InvalidArgumentError, BracketIntegrityError
from tourney.utils.logger import setup_logger
from tourney.utils.time_parser import utcnow, as_utc, parse_duration, format_duration

logger = setup_logger(__name__)


@dataclass
class BracketEntrant:
    """One entrant of a bracket; seed 1 is the strongest"""
    id: str
    seed: Optional[int] = None
    participant_type: ParticipantType = ParticipantType.USER

EntrantLike = Union[str, dict, BracketEntrant]


def fisher_yates_shuffle(items: Sequence, rng: Optional[random.Random] = None) -> list:
    """Return a shuffled copy of items"""
    rng = rng or random.Random()
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def bracket_dimensions(participant_count: int) -> Tuple[int, int, int]:
    """(num_rounds, full_size, byes) for a field of participant_count"""
    num_rounds = math.ceil(math.log2(participant_count))
    full_size = 2 ** num_rounds
    return num_rounds, full_size, full_size - participant_count


class BracketGenerator:
    """
    Single-elimination bracket construction.

    Matches are built into an arena keyed by (round_number,
    match_number_in_round); links are resolved afterwards by key lookup,
    slot k of round r feeding slot (k + 1) // 2 of round r + 1.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self.logger = logger

    def generate(
        self,
        tournament_id: str,
        participants: Iterable[EntrantLike],
        shuffle: Optional[bool] = None,
        default_match_time: Optional[datetime] = None,
        time_per_round=None
    ) -> List[Match]:
        """
        Generate a complete single-elimination bracket.

        Args:
            tournament_id: Tournament the matches belong to
            participants: Entrant ids, {id, seed} dicts or BracketEntrant objects
            shuffle: Shuffle unseeded fields (defaults to Config.BRACKET_SHUFFLE)
            default_match_time: Scheduled time of round 1 (defaults to now)
            time_per_round: Gap added per later round, timedelta or duration
                string (defaults to Config.BRACKET_TIME_PER_ROUND)

        Returns:
            All matches ordered by round then slot

        Raises:
            InvalidArgumentError: Fewer than two entrants or duplicate ids
            BracketIntegrityError: The generated structure failed validation
        """
        entrants = self._normalize(participants)
        if len(entrants) < BracketConstants.MIN_PARTICIPANTS:
            raise InvalidArgumentError(
                "At least two participants are required to generate a bracket.",
                "❌ At least two participants are needed to start."
            )
        ids = [e.id for e in entrants]
        if len(set(ids)) != len(ids):
            raise InvalidArgumentError("Duplicate participants not allowed")

        shuffle = Config.BRACKET_SHUFFLE if shuffle is None else shuffle
        start_time = as_utc(default_match_time) if default_match_time else utcnow()
        if time_per_round is None:
            gap = Config.get_time_per_round()
        else:
            try:
                gap = parse_duration(time_per_round)
            except ValueError as e:
                raise InvalidArgumentError(f"Invalid time_per_round: {e}") from e

        seeded = self._seed_order(entrants, shuffle)
        num_rounds, full_size, byes = bracket_dimensions(len(seeded))

        arena: Dict[Tuple[int, int], Match] = {}
        self._build_first_round(arena, tournament_id, seeded, byes, start_time)
        for round_number in range(BracketConstants.FIRST_ROUND + 1, num_rounds + 1):
            for slot in range(1, (full_size >> round_number) + 1):
                arena[(round_number, slot)] = Match(
                    tournament_id=tournament_id,
                    round_number=round_number,
                    match_number_in_round=slot,
                    status=MatchStatus.SCHEDULED,
                    scheduled_time=start_time + (round_number - 1) * gap
                )

        for (round_number, slot), match in arena.items():
            parent = arena.get((round_number + 1, (slot + 1) // 2))
            match.next_match_id = parent.id if parent else None

        matches = [arena[key] for key in sorted(arena)]

        problems = self.bracket_problems(matches, len(seeded))
        if problems:
            for problem in problems:
                self.logger.warning(f"Bracket integrity problem for tournament {tournament_id}: {problem}")
            raise BracketIntegrityError(problems)

        self.logger.info(
            f"Generated bracket for tournament {tournament_id}: {len(seeded)} entrants, "
            f"{num_rounds} round(s), {byes} bye(s), {len(matches)} match(es), "
            f"{format_duration(gap)} between rounds"
        )
        return matches

    def _build_first_round(
        self,
        arena: Dict[Tuple[int, int], Match],
        tournament_id: str,
        seeded: List[BracketEntrant],
        byes: int,
        start_time: datetime
    ) -> None:
        round_number = BracketConstants.FIRST_ROUND
        now = utcnow()

        # Top seeds advance without playing
        for slot, entrant in enumerate(seeded[:byes], start=1):
            arena[(round_number, slot)] = Match(
                tournament_id=tournament_id,
                round_number=round_number,
                match_number_in_round=slot,
                participant1_id=entrant.id,
                participant1_type=entrant.participant_type,
                status=MatchStatus.COMPLETED,
                scheduled_time=start_time,
                actual_start_time=now,
                actual_end_time=now,
                winner_id=entrant.id,
                winner_type=entrant.participant_type,
                is_confirmed=True
            )

        # Remaining field plays 1 vs N, 2 vs N-1, ...
        playing = seeded[byes:]
        for i in range(len(playing) // 2):
            high, low = playing[i], playing[len(playing) - 1 - i]
            slot = byes + i + 1
            arena[(round_number, slot)] = Match(
                tournament_id=tournament_id,
                round_number=round_number,
                match_number_in_round=slot,
                participant1_id=high.id,
                participant1_type=high.participant_type,
                participant2_id=low.id,
                participant2_type=low.participant_type,
                status=MatchStatus.SCHEDULED,
                scheduled_time=start_time
            )

    def _seed_order(self, entrants: List[BracketEntrant], shuffle: bool) -> List[BracketEntrant]:
        if all(e.seed is not None for e in entrants):
            return sorted(entrants, key=lambda e: e.seed)
        if shuffle:
            return fisher_yates_shuffle(entrants, self.rng)
        return list(entrants)

    @staticmethod
    def _normalize(participants: Optional[Iterable[EntrantLike]]) -> List[BracketEntrant]:
        entrants = []
        for p in participants or []:
            if isinstance(p, BracketEntrant):
                entrants.append(p)
            elif isinstance(p, str):
                entrants.append(BracketEntrant(id=p))
            elif isinstance(p, dict) and p.get('id'):
                participant_type = p.get('participant_type') or ParticipantType.USER
                if not isinstance(participant_type, ParticipantType):
                    try:
                        participant_type = ParticipantType(participant_type)
                    except ValueError:
                        raise InvalidArgumentError(f"Invalid participant type: {participant_type!r}")
                entrants.append(BracketEntrant(id=p['id'], seed=p.get('seed'), participant_type=participant_type))
            else:
                raise InvalidArgumentError(f"Invalid bracket entrant: {p!r}")
        return entrants

    @staticmethod
    def bracket_problems(matches: Sequence[Match], participant_count: int) -> List[str]:
        """
        Describe every structural defect of a bracket; empty when sound.

        Checks the match count, the single final in the last round, that
        each link points exactly one round ahead and that every later-round
        match has exactly two feeders.
        """
        if participant_count < BracketConstants.MIN_PARTICIPANTS:
            return [f"a bracket needs at least {BracketConstants.MIN_PARTICIPANTS} participants, got {participant_count}"]

        num_rounds, full_size, _ = bracket_dimensions(participant_count)
        problems = []

        if len(matches) != full_size - 1:
            problems.append(f"expected {full_size - 1} matches, found {len(matches)}")

        finals = [m for m in matches if m.is_final]
        if len(finals) != 1:
            problems.append(f"expected exactly 1 final match, found {len(finals)}")
        elif finals[0].round_number != num_rounds:
            problems.append(f"final match is in round {finals[0].round_number}, expected round {num_rounds}")

        by_id = {m.id: m for m in matches}
        feeder_counts = {m.id: 0 for m in matches}
        for m in matches:
            if m.next_match_id is None:
                continue
            parent = by_id.get(m.next_match_id)
            if parent is None:
                problems.append(f"match {m.id} links to unknown match {m.next_match_id}")
                continue
            if parent.round_number != m.round_number + 1:
                problems.append(
                    f"match {m.id} in round {m.round_number} links to round {parent.round_number}"
                )
            feeder_counts[parent.id] += 1

        for m in matches:
            if m.round_number > BracketConstants.FIRST_ROUND and feeder_counts[m.id] != BracketConstants.SLOTS_PER_MATCH:
                problems.append(f"match {m.id} in round {m.round_number} has {feeder_counts[m.id]} feeder(s)")

        return problems

    @classmethod
    def validate(cls, matches: Sequence[Match], participant_count: int) -> bool:
        """True when the bracket passes every structural check"""
        return not cls.bracket_problems(matches, participant_count)
