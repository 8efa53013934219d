"""
Operations Layer

Business logic that composes the repositories and the Match state machine
into workflows. Operations handle multi-step transactions, validation and
business rules; repositories stay pure data access.

Each operations module focuses on one concern:
- BracketGenerator: single-elimination bracket construction (pure)
- ProgressionService: moving winners into the next round
- MatchActionService: per-match use cases under the version guard
- SingleMatchStarter: start path for single-match tournaments
- RefundOperations: entry-fee refunds on cancellation
- TournamentDecisionOperation: the start/cancel decision
"""
