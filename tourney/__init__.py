"""
Tournament core: single-elimination bracket generation, the match
lifecycle state machine, and the tournament start/cancel decision.
"""

__version__ = "0.1.0"
