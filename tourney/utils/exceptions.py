"""
Custom exceptions for the tournament core with user-friendly error messages.

Every error is synchronous and local to the call that raised it. Mapping
to transport status codes belongs to the presentation layer.
"""

class TournamentError(Exception):
    """Base exception for tournament core errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message

class InvalidArgumentError(TournamentError):
    """Raised for malformed input such as too few participants or an unknown decision."""
    pass

class InvalidStateError(TournamentError):
    """Raised when an entity is not in a state that allows the requested operation."""
    pass

class InvalidStateTransitionError(InvalidStateError):
    """Raised when a match state machine method is called from an incompatible state."""
    def __init__(self, action: str, current_state, detail: str = None):
        state_name = getattr(current_state, 'value', current_state)
        message = f"Cannot {action} a match with status: {state_name}."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message, f"❌ This match cannot {action} while it is {state_name}.")
        self.action = action
        self.current_state = current_state

class InvalidParticipantError(TournamentError):
    """Raised when a winner or participant does not belong to the match."""
    def __init__(self, participant_id, match_id=None):
        where = f" in match {match_id}" if match_id else ""
        super().__init__(
            f"Participant {participant_id} is not a participant{where}",
            "❌ That participant is not part of this match!"
        )
        self.participant_id = participant_id

class MissingArgumentError(TournamentError):
    """Raised when a required value such as a dispute reason is absent."""
    def __init__(self, *names: str):
        joined = " and ".join(names)
        super().__init__(
            f"{joined} required",
            f"❌ Please provide: {', '.join(names)}."
        )
        self.names = names

class PermissionDeniedError(TournamentError):
    """Raised when the acting user lacks the required capability."""
    def __init__(self, message: str):
        super().__init__(message, "❌ You do not have permission to do that.")

class NotFoundError(TournamentError):
    """Raised by repositories when a requested row does not exist."""
    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity} {entity_id} not found",
            f"❌ {entity} not found."
        )
        self.entity = entity
        self.entity_id = entity_id

class InvalidScheduleError(TournamentError):
    """Raised when a reschedule time is not strictly in the future."""
    def __init__(self, requested_time):
        super().__init__(
            f"Scheduled time must be in the future (got {requested_time})",
            "❌ Scheduled time must be in the future."
        )
        self.requested_time = requested_time

class BracketNotImplementedError(TournamentError, NotImplementedError):
    """Raised when starting a bracket type that has no start path."""
    def __init__(self, bracket_type):
        type_name = getattr(bracket_type, 'value', bracket_type)
        super().__init__(
            f"Starting a {type_name} tournament is not yet implemented",
            "❌ Starting this type of tournament is not yet implemented."
        )
        self.bracket_type = bracket_type

class BracketIntegrityError(TournamentError):
    """Raised when a generated bracket fails its structural checks."""
    def __init__(self, problems):
        super().__init__(
            f"Bracket failed validation: {'; '.join(problems)}",
            "❌ Bracket generation failed. Please contact an admin."
        )
        self.problems = list(problems)

class ConcurrencyConflictError(TournamentError):
    """Raised when a per-match write loses an optimistic concurrency race."""
    def __init__(self, match_id, expected_version=None):
        detail = f" (expected version {expected_version})" if expected_version is not None else ""
        super().__init__(
            f"Match {match_id} was modified concurrently{detail}",
            "❌ This match was updated by someone else. Please reload and try again."
        )
        self.match_id = match_id
        self.expected_version = expected_version
