"""
Core-wide constants for the tournament backend.

This module contains the magic numbers and fixed strings used by the
bracket generator, the match state machine and the decision workflow.
"""

class BracketConstants:
    """Constants related to bracket generation."""
    
    # A bracket needs at least a final
    MIN_PARTICIPANTS = 2
    
    # Round numbering starts here; round 1 holds the most matches
    FIRST_ROUND = 1
    
    # Slots per match
    SLOTS_PER_MATCH = 2

class MatchConstants:
    """Constants for the match lifecycle."""
    
    DEFAULT_CANCEL_REASON = "Match canceled."
    
    # Prefix written into moderator notes on cancellation
    CANCEL_NOTE_PREFIX = "Canceled"
    
    # Participant slots
    SLOT_ONE = 1
    SLOT_TWO = 2

class TournamentConstants:
    """Constants for tournament decisions."""
    
    MANAGER_CANCEL_REASON = "Canceled by tournament manager."
    
    START_MESSAGE = "Tournament started successfully."
    CANCEL_MESSAGE = "Tournament canceled successfully."
