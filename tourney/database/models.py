from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, JSON,
    ForeignKey, Enum as SQLEnum, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
import uuid

from tourney.constants import MatchConstants
from tourney.utils.exceptions import (
    InvalidArgumentError, InvalidStateError, InvalidStateTransitionError,
    InvalidParticipantError, MissingArgumentError, InvalidScheduleError
)
from tourney.utils.logger import setup_logger
from tourney.utils.time_parser import utcnow, as_utc

logger = setup_logger(__name__)

Base = declarative_base()


def new_id() -> str:
    """Generate an opaque identifier for a new row"""
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """DateTime column that always hands back timezone-aware UTC values"""
    impl = DateTime
    cache_ok = True

    def __init__(self):
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)


class MatchStatus(Enum):
    """Status of a match from creation to completion"""
    PENDING = "pending"                              # Waiting for participants from earlier rounds
    SCHEDULED = "scheduled"                          # Ready to be played
    IN_PROGRESS = "in_progress"                      # Being played
    AWAITING_SCORES = "awaiting_scores"              # Play finished, no scores reported yet
    AWAITING_CONFIRMATION = "awaiting_confirmation"  # Result reported, awaiting confirmation
    DISPUTED = "disputed"                            # Result contested
    COMPLETED = "completed"                          # Result final
    CANCELED = "canceled"                            # Canceled by a moderator
    BYE = "bye"                                      # Sole participant advances without playing

class TournamentStatus(Enum):
    PENDING = "pending"
    REGISTRATION_OPEN = "registration_open"
    REGISTRATION_CLOSED = "registration_closed"
    AWAITING_DECISION = "awaiting_decision"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELED = "canceled"

class BracketType(Enum):
    SINGLE_ELIMINATION = "single_elimination"
    DOUBLE_ELIMINATION = "double_elimination"
    ROUND_ROBIN = "round_robin"
    SWISS = "swiss"

class ParticipantType(Enum):
    """Kind of entrant occupying a match slot"""
    USER = "user"
    TEAM = "team"

class PlayerRole(Enum):
    PLAYER = "player"
    TOURNAMENT_MANAGER = "tournament_manager"
    ADMIN = "admin"


class MatchAction(Enum):
    """Events accepted by the match state machine (value reads as a verb phrase)"""
    START = "start"
    AWAIT_SCORES = "await scores for"
    RECORD_RESULT = "record a result for"
    CONFIRM_RESULT = "confirm the result of"
    DISPUTE_RESULT = "dispute the result of"
    RESOLVE_DISPUTE = "resolve a dispute on"
    SET_PARTICIPANTS = "set participants on"
    SEAT_PARTICIPANT = "seat a participant in"
    UNSEAT_PARTICIPANT = "unseat a participant from"
    SET_AS_BYE = "set a bye on"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"


_SEATING_TARGETS = frozenset({MatchStatus.PENDING, MatchStatus.SCHEDULED, MatchStatus.BYE})
_CANCELABLE = [s for s in MatchStatus if s not in (MatchStatus.COMPLETED, MatchStatus.CANCELED)]

# action -> {current status -> permitted target statuses}
MATCH_TRANSITIONS: Dict[MatchAction, Dict[MatchStatus, frozenset]] = {
    MatchAction.START: {
        MatchStatus.SCHEDULED: frozenset({MatchStatus.IN_PROGRESS}),
    },
    MatchAction.AWAIT_SCORES: {
        MatchStatus.IN_PROGRESS: frozenset({MatchStatus.AWAITING_SCORES}),
    },
    MatchAction.RECORD_RESULT: {
        MatchStatus.IN_PROGRESS: frozenset({MatchStatus.AWAITING_CONFIRMATION}),
        MatchStatus.AWAITING_SCORES: frozenset({MatchStatus.AWAITING_CONFIRMATION}),
    },
    MatchAction.CONFIRM_RESULT: {
        MatchStatus.AWAITING_CONFIRMATION: frozenset({MatchStatus.COMPLETED}),
        MatchStatus.DISPUTED: frozenset({MatchStatus.COMPLETED}),
    },
    MatchAction.DISPUTE_RESULT: {
        MatchStatus.AWAITING_CONFIRMATION: frozenset({MatchStatus.DISPUTED}),
        MatchStatus.COMPLETED: frozenset({MatchStatus.DISPUTED}),
    },
    MatchAction.RESOLVE_DISPUTE: {
        MatchStatus.DISPUTED: frozenset({
            MatchStatus.COMPLETED, MatchStatus.CANCELED, MatchStatus.SCHEDULED
        }),
    },
    MatchAction.SET_PARTICIPANTS: {
        MatchStatus.PENDING: _SEATING_TARGETS,
        MatchStatus.SCHEDULED: _SEATING_TARGETS,
        MatchStatus.BYE: _SEATING_TARGETS,
    },
    MatchAction.SEAT_PARTICIPANT: {
        MatchStatus.PENDING: frozenset({MatchStatus.PENDING}),
        MatchStatus.SCHEDULED: frozenset({MatchStatus.SCHEDULED}),
    },
    MatchAction.UNSEAT_PARTICIPANT: {
        MatchStatus.PENDING: frozenset({MatchStatus.PENDING}),
        MatchStatus.SCHEDULED: frozenset({MatchStatus.SCHEDULED, MatchStatus.PENDING}),
    },
    MatchAction.SET_AS_BYE: {
        MatchStatus.PENDING: frozenset({MatchStatus.BYE}),
        MatchStatus.SCHEDULED: frozenset({MatchStatus.BYE}),
        MatchStatus.BYE: frozenset({MatchStatus.BYE}),
    },
    MatchAction.CANCEL: {
        status: frozenset({MatchStatus.CANCELED}) for status in _CANCELABLE
    },
    MatchAction.RESCHEDULE: {
        MatchStatus.SCHEDULED: frozenset({MatchStatus.SCHEDULED}),
        MatchStatus.PENDING: frozenset({MatchStatus.PENDING}),
    },
}


def _coerce_enum(enum_cls, value, field_name: str):
    """Accept an enum member, its value or its name"""
    if value is None or isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if value == member.value or value.upper() == member.name:
                return member
    raise InvalidArgumentError(f"Invalid {field_name}: {value!r}")

def _coerce_score(value, field_name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"{field_name} must be an integer, got {value!r}")

def _coerce_datetime(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise InvalidArgumentError(f"Invalid timestamp: {value!r}")
    return as_utc(value)


class Match(Base):
    """
    A single bracket match and its lifecycle state machine.

    Every mutator is checked against MATCH_TRANSITIONS before it touches
    any field, so a rejected call leaves the match unchanged. Mutators
    stamp updated_at. The version column guards concurrent writers: a
    flush against a stale version raises instead of overwriting.
    """
    __tablename__ = 'matches'

    id = Column(String(36), primary_key=True, default=new_id)
    tournament_id = Column(String(36), ForeignKey('tournaments.id'), nullable=False, index=True)

    # Bracket position
    round_number = Column(Integer, nullable=False)
    match_number_in_round = Column(Integer, nullable=False)

    # Slots (nullable until resolved from earlier rounds)
    participant1_id = Column(String(36), nullable=True, index=True)
    participant1_type = Column(SQLEnum(ParticipantType), nullable=True)
    participant2_id = Column(String(36), nullable=True, index=True)
    participant2_type = Column(SQLEnum(ParticipantType), nullable=True)

    status = Column(SQLEnum(MatchStatus), nullable=False, default=MatchStatus.SCHEDULED)

    # Timing
    scheduled_time = Column(UTCDateTime(), nullable=True)
    actual_start_time = Column(UTCDateTime(), nullable=True)
    actual_end_time = Column(UTCDateTime(), nullable=True)

    # Result
    winner_id = Column(String(36), nullable=True)
    winner_type = Column(SQLEnum(ParticipantType), nullable=True)
    participant1_score = Column(Integer, nullable=True)
    participant2_score = Column(Integer, nullable=True)
    result_proof_url_p1 = Column(String(500), nullable=True)
    result_proof_url_p2 = Column(String(500), nullable=True)
    is_confirmed = Column(Boolean, nullable=False, default=False)

    # Bracket links (no FK: a round is inserted before the round it feeds)
    next_match_id = Column(String(36), nullable=True, index=True)
    next_match_loser_id = Column(String(36), nullable=True)

    # Admin and meta information
    moderator_notes = Column(Text)
    match_metadata = Column('metadata', JSON, default=dict)

    # Optimistic concurrency counter
    version = Column(Integer, nullable=False)

    created_at = Column(UTCDateTime(), default=utcnow)
    updated_at = Column(UTCDateTime(), default=utcnow)

    tournament = relationship("Tournament", back_populates="matches")

    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        Index('ix_matches_tournament_round_slot', 'tournament_id', 'round_number', 'match_number_in_round'),
    )

    def __init__(self, **kwargs):
        if not kwargs.get('tournament_id'):
            raise InvalidArgumentError("Tournament ID for match is required.")
        if kwargs.get('round_number') is None or kwargs['round_number'] < 0:
            raise InvalidArgumentError("Valid round number is required.")
        if kwargs.get('match_number_in_round') is None or kwargs['match_number_in_round'] < 0:
            raise InvalidArgumentError("Valid match number in round is required.")

        now = utcnow()
        kwargs.setdefault('id', new_id())
        kwargs['status'] = _coerce_enum(MatchStatus, kwargs.get('status') or MatchStatus.SCHEDULED, 'match status')
        for field in ('participant1_type', 'participant2_type', 'winner_type'):
            kwargs[field] = _coerce_enum(ParticipantType, kwargs.get(field), field)
        for field in ('participant1_score', 'participant2_score'):
            kwargs[field] = _coerce_score(kwargs.get(field), field)
        for field in ('scheduled_time', 'actual_start_time', 'actual_end_time', 'created_at', 'updated_at'):
            kwargs[field] = _coerce_datetime(kwargs.get(field))
        if kwargs.get('is_confirmed') is None:
            kwargs['is_confirmed'] = False
        if kwargs.get('match_metadata') is None:
            kwargs['match_metadata'] = {}
        kwargs['created_at'] = kwargs['created_at'] or now
        kwargs['updated_at'] = kwargs['updated_at'] or now
        super().__init__(**kwargs)

    @classmethod
    def from_persistence(cls, data: Optional[Dict[str, Any]]) -> Optional['Match']:
        """
        Rebuild a match from a stored row.

        Tolerates legacy rows: a missing is_confirmed means False and a
        'round' column stands in for round_number.
        """
        if not data:
            return None

        round_number = data.get('round_number')
        if round_number is None:
            round_number = data.get('round')
        metadata = data.get('match_metadata')
        if metadata is None:
            metadata = data.get('metadata')

        match = cls(
            id=data.get('id') or new_id(),
            tournament_id=data.get('tournament_id'),
            round_number=round_number,
            match_number_in_round=data.get('match_number_in_round'),
            participant1_id=data.get('participant1_id'),
            participant1_type=data.get('participant1_type'),
            participant2_id=data.get('participant2_id'),
            participant2_type=data.get('participant2_type'),
            status=data.get('status'),
            scheduled_time=data.get('scheduled_time'),
            actual_start_time=data.get('actual_start_time'),
            actual_end_time=data.get('actual_end_time'),
            winner_id=data.get('winner_id'),
            winner_type=data.get('winner_type'),
            participant1_score=data.get('participant1_score'),
            participant2_score=data.get('participant2_score'),
            result_proof_url_p1=data.get('result_proof_url_p1'),
            result_proof_url_p2=data.get('result_proof_url_p2'),
            is_confirmed=bool(data.get('is_confirmed') or False),
            next_match_id=data.get('next_match_id'),
            next_match_loser_id=data.get('next_match_loser_id'),
            moderator_notes=data.get('moderator_notes'),
            match_metadata=dict(metadata or {}),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
        )
        if data.get('version') is not None:
            match.version = data['version']
        return match

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def participant_ids(self) -> List[str]:
        """Seated participant ids in slot order"""
        return [pid for pid in (self.participant1_id, self.participant2_id) if pid is not None]

    @property
    def has_both_participants(self) -> bool:
        return self.participant1_id is not None and self.participant2_id is not None

    @property
    def is_final(self) -> bool:
        return self.next_match_id is None

    @property
    def is_finished(self) -> bool:
        """True once the winner may progress (a BYE is immediately terminal)"""
        return self.status in (MatchStatus.COMPLETED, MatchStatus.BYE)

    def has_participant(self, participant_id: Optional[str]) -> bool:
        return participant_id is not None and participant_id in self.participant_ids

    def participant_type_for(self, participant_id: Optional[str]) -> Optional[ParticipantType]:
        """Type of whichever slot holds the participant, None if not seated"""
        if participant_id is None:
            return None
        if participant_id == self.participant1_id:
            return self.participant1_type
        if participant_id == self.participant2_id:
            return self.participant2_type
        return None

    def can(self, action: MatchAction) -> bool:
        return self.status in MATCH_TRANSITIONS[action]

    def allowed_actions(self) -> List[MatchAction]:
        return [action for action in MatchAction if self.can(action)]

    # ------------------------------------------------------------------
    # Transition plumbing
    # ------------------------------------------------------------------

    def _check(self, action: MatchAction, target: Optional[MatchStatus] = None) -> MatchStatus:
        """Return the target status for action, raising if the table forbids it"""
        permitted = MATCH_TRANSITIONS[action].get(self.status)
        if not permitted:
            raise InvalidStateTransitionError(action.value, self.status)
        if target is None:
            if len(permitted) != 1:
                raise InvalidStateTransitionError(action.value, self.status, "A target status is required.")
            return next(iter(permitted))
        if target not in permitted:
            raise InvalidStateTransitionError(
                action.value, self.status, f"Target status {target.value} is not permitted."
            )
        return target

    def _apply(self, action: MatchAction, target: MatchStatus, now: datetime) -> None:
        previous = self.status
        self.status = target
        self.updated_at = now
        logger.debug(f"Match {self.id}: {action.name} {previous.value} -> {target.value}")

    def _set_metadata(self, key: str, value: Any) -> None:
        # Reassign so the JSON column registers the change
        metadata = dict(self.match_metadata or {})
        metadata[key] = value
        self.match_metadata = metadata

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """SCHEDULED -> IN_PROGRESS"""
        target = self._check(MatchAction.START)
        now = utcnow()
        self.actual_start_time = now
        self._apply(MatchAction.START, target, now)

    def await_scores(self) -> None:
        """IN_PROGRESS -> AWAITING_SCORES: play is over but nobody has reported yet"""
        target = self._check(MatchAction.AWAIT_SCORES)
        self._apply(MatchAction.AWAIT_SCORES, target, utcnow())

    def record_result(
        self,
        winner_id: Optional[str],
        score_a=None,
        score_b=None,
        proof_a: Optional[str] = None,
        proof_b: Optional[str] = None
    ) -> None:
        """
        Record a reported result, pending confirmation.

        Args:
            winner_id: Winning participant, or None when only scores are reported
            score_a: Score of the participant in slot 1
            score_b: Score of the participant in slot 2
            proof_a: Proof URL for slot 1, kept as is when not supplied
            proof_b: Proof URL for slot 2, kept as is when not supplied

        Raises:
            InvalidStateTransitionError: Unless IN_PROGRESS or AWAITING_SCORES
            InvalidParticipantError: If winner_id is not seated in this match
        """
        target = self._check(MatchAction.RECORD_RESULT)
        if winner_id is not None and not self.has_participant(winner_id):
            raise InvalidParticipantError(winner_id, self.id)
        score_a = _coerce_score(score_a, 'participant1_score')
        score_b = _coerce_score(score_b, 'participant2_score')

        now = utcnow()
        self.winner_id = winner_id
        self.winner_type = self.participant_type_for(winner_id)
        self.participant1_score = score_a
        self.participant2_score = score_b
        if proof_a:
            self.result_proof_url_p1 = proof_a
        if proof_b:
            self.result_proof_url_p2 = proof_b
        self.actual_end_time = now
        self.is_confirmed = False
        self._apply(MatchAction.RECORD_RESULT, target, now)

    def confirm_result(self, confirmer_id: Optional[str] = None) -> None:
        """
        Accept the reported (or disputed) result as final.

        Whether confirmer_id may confirm is decided by the caller.
        """
        target = self._check(MatchAction.CONFIRM_RESULT)
        now = utcnow()
        self.is_confirmed = True
        if confirmer_id is not None:
            self._set_metadata('confirmed_by', confirmer_id)
        self._apply(MatchAction.CONFIRM_RESULT, target, now)

    def dispute_result(self, reporter_id: Optional[str], reason: Optional[str]) -> None:
        target = self._check(MatchAction.DISPUTE_RESULT)
        missing = [name for name, value in (('reporter_id', reporter_id), ('reason', reason)) if not value]
        if missing:
            raise MissingArgumentError(*missing)

        now = utcnow()
        self.is_confirmed = False
        self._set_metadata('dispute', {
            'reporter_id': reporter_id,
            'reason': reason,
            'reported_at': now.isoformat(),
        })
        self._apply(MatchAction.DISPUTE_RESULT, target, now)

    def resolve_dispute(
        self,
        resolved_winner_id: Optional[str],
        admin_notes: Optional[str],
        target_status: MatchStatus = MatchStatus.COMPLETED,
        participant1_score=None,
        participant2_score=None
    ) -> None:
        """
        Settle a dispute.

        target_status is COMPLETED, CANCELED (void) or SCHEDULED (replay).
        A None winner is only allowed for void and replay outcomes. Scores are
        only overwritten when supplied.
        """
        if self.status != MatchStatus.DISPUTED:
            raise InvalidStateTransitionError(MatchAction.RESOLVE_DISPUTE.value, self.status)
        target_status = _coerce_enum(MatchStatus, target_status, 'resolution status')
        if target_status not in MATCH_TRANSITIONS[MatchAction.RESOLVE_DISPUTE][MatchStatus.DISPUTED]:
            raise InvalidArgumentError(
                f"Dispute resolution status must be completed, canceled or scheduled, got {target_status.value}"
            )
        target = self._check(MatchAction.RESOLVE_DISPUTE, target_status)
        if resolved_winner_id is None and target == MatchStatus.COMPLETED:
            raise MissingArgumentError('resolved_winner_id')
        if resolved_winner_id is not None and not self.has_participant(resolved_winner_id):
            raise InvalidParticipantError(resolved_winner_id, self.id)
        score_a = _coerce_score(participant1_score, 'participant1_score')
        score_b = _coerce_score(participant2_score, 'participant2_score')

        now = utcnow()
        self.winner_id = resolved_winner_id
        self.winner_type = self.participant_type_for(resolved_winner_id)
        if score_a is not None:
            self.participant1_score = score_a
        if score_b is not None:
            self.participant2_score = score_b
        self.is_confirmed = True
        self.moderator_notes = admin_notes
        self._apply(MatchAction.RESOLVE_DISPUTE, target, now)

    def set_participants(self, p1_id, p1_type, p2_id, p2_type) -> None:
        """
        Assign both slots and derive the follow-up state.

        Exactly one participant makes the match a BYE; none makes it
        PENDING; two make it SCHEDULED (an opponent materialized after an
        earlier bye, or both feeders resolved).
        """
        self._check(MatchAction.SET_PARTICIPANTS, self.status)
        p1_type = _coerce_enum(ParticipantType, p1_type, 'participant1_type')
        p2_type = _coerce_enum(ParticipantType, p2_type, 'participant2_type')

        now = utcnow()
        self.participant1_id = p1_id
        self.participant1_type = p1_type if p1_id is not None else None
        self.participant2_id = p2_id
        self.participant2_type = p2_type if p2_id is not None else None

        if (p1_id is None) != (p2_id is None):
            seated = p1_id if p1_id is not None else p2_id
            self.set_as_bye(seated, p1_type if p1_id is not None else p2_type)
            return

        # Winner of an earlier bye no longer stands once slots change
        self.winner_id = None
        self.winner_type = None
        self.is_confirmed = False

        if p1_id is None:
            target = MatchStatus.PENDING
        else:
            target = MatchStatus.SCHEDULED
            self.actual_start_time = None
            self.actual_end_time = None
        self._apply(MatchAction.SET_PARTICIPANTS, self._check(MatchAction.SET_PARTICIPANTS, target), now)

    def seat_participant(self, slot: int, participant_id: str, participant_type) -> None:
        """
        Place one participant into a slot without deriving a new state.

        Used for progression while the other feeder is still undecided: a
        half-filled downstream match is waiting, not a bye.
        """
        target = self._check(MatchAction.SEAT_PARTICIPANT)
        if not participant_id:
            raise MissingArgumentError('participant_id')
        participant_type = _coerce_enum(ParticipantType, participant_type, 'participant_type')

        now = utcnow()
        if slot == MatchConstants.SLOT_ONE:
            self.participant1_id = participant_id
            self.participant1_type = participant_type
        elif slot == MatchConstants.SLOT_TWO:
            self.participant2_id = participant_id
            self.participant2_type = participant_type
        else:
            raise InvalidArgumentError(f"Slot must be 1 or 2, got {slot!r}")
        self._apply(MatchAction.SEAT_PARTICIPANT, target, now)

    def unseat_participant(self, slot: int) -> None:
        """
        Empty one slot again, e.g. when the result that filled it is withdrawn.

        A match left with nobody seated goes back to PENDING.
        """
        if slot == MatchConstants.SLOT_ONE:
            remaining = self.participant2_id
        elif slot == MatchConstants.SLOT_TWO:
            remaining = self.participant1_id
        else:
            raise InvalidArgumentError(f"Slot must be 1 or 2, got {slot!r}")
        target = self._check(
            MatchAction.UNSEAT_PARTICIPANT,
            self.status if remaining is not None else MatchStatus.PENDING
        )

        now = utcnow()
        if slot == MatchConstants.SLOT_ONE:
            self.participant1_id = None
            self.participant1_type = None
        else:
            self.participant2_id = None
            self.participant2_type = None
        self._apply(MatchAction.UNSEAT_PARTICIPANT, target, now)

    def set_as_bye(self, winner_id: Optional[str], winner_type=None) -> None:
        """
        Award the match to its sole participant.

        A winner already seated keeps its slot; otherwise it takes slot 1.
        The other slot is cleared.
        """
        target = self._check(MatchAction.SET_AS_BYE)
        if not winner_id:
            raise MissingArgumentError('winner_id')
        winner_type = _coerce_enum(ParticipantType, winner_type, 'winner_type')

        now = utcnow()
        if self.participant1_id == winner_id:
            self.participant1_type = winner_type or self.participant1_type
            self.participant2_id = None
            self.participant2_type = None
        elif self.participant2_id == winner_id:
            self.participant2_type = winner_type or self.participant2_type
            self.participant1_id = None
            self.participant1_type = None
        else:
            self.participant1_id = winner_id
            self.participant1_type = winner_type
            self.participant2_id = None
            self.participant2_type = None

        self.winner_id = winner_id
        self.winner_type = self.participant_type_for(winner_id)
        self.is_confirmed = True
        self.actual_start_time = self.actual_start_time or now
        self.actual_end_time = self.actual_end_time or now
        self._apply(MatchAction.SET_AS_BYE, target, now)

    def cancel_match(self, reason: str = MatchConstants.DEFAULT_CANCEL_REASON) -> None:
        target = self._check(MatchAction.CANCEL)
        now = utcnow()
        note = f"{MatchConstants.CANCEL_NOTE_PREFIX}: {reason or MatchConstants.DEFAULT_CANCEL_REASON}"
        self.moderator_notes = f"{self.moderator_notes}\n{note}" if self.moderator_notes else note
        self._apply(MatchAction.CANCEL, target, now)

    def update_scheduled_time(self, new_time) -> None:
        """Move a SCHEDULED or PENDING match; new_time must be strictly in the future"""
        target = self._check(MatchAction.RESCHEDULE)
        new_time = _coerce_datetime(new_time)
        if new_time is None:
            raise MissingArgumentError('new_time')
        now = utcnow()
        if new_time <= now:
            raise InvalidScheduleError(new_time.isoformat())
        self.scheduled_time = new_time
        self._apply(MatchAction.RESCHEDULE, target, now)

    def to_dict(self) -> Dict[str, Any]:
        """Plain snapshot of the match"""
        def enum_value(value):
            return value.value if value is not None else None

        def iso(value):
            return value.isoformat() if value is not None else None

        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'round_number': self.round_number,
            'match_number_in_round': self.match_number_in_round,
            'participant1_id': self.participant1_id,
            'participant1_type': enum_value(self.participant1_type),
            'participant2_id': self.participant2_id,
            'participant2_type': enum_value(self.participant2_type),
            'status': enum_value(self.status),
            'scheduled_time': iso(self.scheduled_time),
            'actual_start_time': iso(self.actual_start_time),
            'actual_end_time': iso(self.actual_end_time),
            'winner_id': self.winner_id,
            'winner_type': enum_value(self.winner_type),
            'participant1_score': self.participant1_score,
            'participant2_score': self.participant2_score,
            'result_proof_url_p1': self.result_proof_url_p1,
            'result_proof_url_p2': self.result_proof_url_p2,
            'is_confirmed': self.is_confirmed,
            'next_match_id': self.next_match_id,
            'next_match_loser_id': self.next_match_loser_id,
            'moderator_notes': self.moderator_notes,
            'metadata': dict(self.match_metadata or {}),
            'version': self.version,
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at),
        }

    def __repr__(self):
        return (
            f"<Match(id={self.id}, round={self.round_number}, slot={self.match_number_in_round}, "
            f"status={self.status.value if self.status else None})>"
        )


class Tournament(Base):
    __tablename__ = 'tournaments'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text)

    # Tournament configuration
    status = Column(SQLEnum(TournamentStatus), nullable=False, default=TournamentStatus.PENDING)
    bracket_type = Column(SQLEnum(BracketType), nullable=False, default=BracketType.SINGLE_ELIMINATION)
    is_single_match = Column(Boolean, nullable=False, default=False)
    entry_fee = Column(Integer, nullable=False, default=0)
    max_participants = Column(Integer)

    # Scheduling
    start_date = Column(UTCDateTime())

    # Metadata
    created_at = Column(UTCDateTime(), default=utcnow)
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow)

    # Relationships
    participants = relationship("TournamentParticipant", back_populates="tournament", cascade="all, delete-orphan")
    matches = relationship("Match", back_populates="tournament", cascade="all, delete-orphan")

    @property
    def is_awaiting_decision(self) -> bool:
        return self.status == TournamentStatus.AWAITING_DECISION

    def update_status(self, new_status) -> None:
        """Set the status, accepting an enum member, value or name"""
        self.status = _coerce_enum(TournamentStatus, new_status, 'tournament status')
        self.updated_at = utcnow()

    def cancel_tournament(self, reason: str = "Tournament canceled.") -> None:
        if self.status in (TournamentStatus.COMPLETED, TournamentStatus.CANCELED):
            raise InvalidStateError(
                f"Tournament is already {self.status.value} and cannot be canceled."
            )
        self.update_status(TournamentStatus.CANCELED)
        note = f"Canceled: {reason}"
        self.description = f"{self.description}\n{note}" if self.description else note

    def __repr__(self):
        return f"<Tournament(name='{self.name}', status={self.status.value if self.status else None})>"

class TournamentParticipant(Base):
    """
    A registration of a user or team in a tournament.

    Registration order (registered_at, then id) is the implicit seed
    order when no explicit seed is set.
    """
    __tablename__ = 'tournament_participants'

    id = Column(Integer, primary_key=True)
    tournament_id = Column(String(36), ForeignKey('tournaments.id'), nullable=False, index=True)
    participant_id = Column(String(36), nullable=False, index=True)
    participant_type = Column(SQLEnum(ParticipantType), nullable=False, default=ParticipantType.USER)
    seed = Column(Integer, nullable=True)

    registered_at = Column(UTCDateTime(), default=utcnow)

    tournament = relationship("Tournament", back_populates="participants")

    # Constraints - prevent duplicate registrations
    __table_args__ = (
        UniqueConstraint('tournament_id', 'participant_id', name='unique_participant_per_tournament'),
    )

    def __repr__(self):
        return f"<TournamentParticipant(tournament_id={self.tournament_id}, participant_id={self.participant_id}, seed={self.seed})>"

class Player(Base):
    __tablename__ = 'players'

    id = Column(String(36), primary_key=True, default=new_id)
    username = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(100))
    role = Column(SQLEnum(PlayerRole), nullable=False, default=PlayerRole.PLAYER)

    # Wallet balance (cache of TicketLedger)
    tickets = Column(Integer, nullable=False, default=0)

    registered_at = Column(UTCDateTime(), default=utcnow)

    ticket_history = relationship("TicketLedger", back_populates="player", cascade="all, delete-orphan")

    def has_role(self, *role_names: str) -> bool:
        if self.role is None:
            return False
        wanted = {name.lower() for name in role_names}
        return self.role.value in wanted or self.role.name.lower() in wanted

    def __repr__(self):
        return f"<Player(id={self.id}, username='{self.username}', role={self.role.value if self.role else None})>"

class TicketLedger(Base):
    """
    Append-only wallet ledger.

    Each transaction records the change amount, reason, and balance after transaction.
    """
    __tablename__ = 'ticket_ledger'

    id = Column(Integer, primary_key=True)
    player_id = Column(String(36), ForeignKey('players.id'), nullable=False, index=True)

    change_amount = Column(Integer, nullable=False)  # Positive for credits, negative for debits
    reason = Column(String(255), nullable=False)     # e.g., "TOURNAMENT_REFUND", "ENTRY_FEE"
    balance_after = Column(Integer, nullable=False)

    related_tournament_id = Column(String(36), ForeignKey('tournaments.id'), nullable=True)

    timestamp = Column(UTCDateTime(), default=utcnow)

    player = relationship("Player", back_populates="ticket_history")

    def __repr__(self):
        return f"<TicketLedger(player_id={self.player_id}, amount={self.change_amount}, balance_after={self.balance_after}, reason='{self.reason}')>"
