import pytest
from sqlalchemy import select

from tourney.database.models import (
    BracketType, MatchStatus, Player, PlayerRole, TicketLedger, TournamentStatus
)
from tourney.operations.refund_operations import RefundOperations
from tourney.operations.tournament_decision import TournamentDecision, TournamentDecisionOperation
from tourney.utils.exceptions import (
    BracketNotImplementedError, InvalidArgumentError, InvalidStateError,
    NotFoundError, PermissionDeniedError
)


class ExplodingRefunds(RefundOperations):
    """Issues the refunds, then fails before the status change"""

    async def execute(self, tournament, session):
        await super().execute(tournament, session)
        raise RuntimeError("wallet service unavailable")


@pytest.fixture
def decisions(db, tournament_repo):
    return TournamentDecisionOperation(db, tournament_repository=tournament_repo)


@pytest.fixture
def setup(add_player, add_tournament):
    async def _setup(**tournament_kwargs):
        manager = await add_player('manager', role=PlayerRole.TOURNAMENT_MANAGER)
        players = [await add_player(f'player{i}', tickets=10) for i in range(3)]
        tournament_kwargs.setdefault('is_single_match', True)
        tournament = await add_tournament(participants=[p.id for p in players], **tournament_kwargs)
        return manager, players, tournament
    return _setup


async def tickets_of(db, player_id):
    async with db.get_session() as session:
        return (await session.execute(select(Player.tickets).where(Player.id == player_id))).scalar_one()


@pytest.mark.asyncio
async def test_start_single_match(decisions, setup, match_repo, tournament_repo):
    manager, players, tournament = await setup()

    result = await decisions.execute(tournament.id, manager.id, 'start')

    assert result['message'] == 'Tournament started successfully.'
    assert (await tournament_repo.get_by_id(tournament.id)).status == TournamentStatus.ONGOING
    match, = await match_repo.find_by_tournament(tournament.id)
    assert (match.participant1_id, match.participant2_id) == (players[0].id, players[1].id)
    assert match.status == MatchStatus.SCHEDULED
    assert match.next_match_id is None


@pytest.mark.asyncio
async def test_admin_may_decide(decisions, setup, add_player, tournament_repo):
    _, _, tournament = await setup()
    admin = await add_player('admin', role=PlayerRole.ADMIN)

    await decisions.execute(tournament.id, admin.id, TournamentDecision.START)
    assert (await tournament_repo.get_by_id(tournament.id)).status == TournamentStatus.ONGOING


@pytest.mark.asyncio
async def test_cancel_refunds_entry_fees(db, decisions, setup, tournament_repo):
    manager, players, tournament = await setup(entry_fee=25)

    result = await decisions.execute(tournament.id, manager.id, 'cancel')

    assert result['status'] == 'canceled'
    stored = await tournament_repo.get_by_id(tournament.id)
    assert stored.status == TournamentStatus.CANCELED
    assert 'Canceled: Canceled by tournament manager.' in stored.description
    for player in players:
        assert await tickets_of(db, player.id) == 35

    async with db.get_session() as session:
        ledger = (await session.execute(select(TicketLedger))).scalars().all()
    assert len(ledger) == 3
    assert all(entry.reason == 'TOURNAMENT_REFUND' and entry.change_amount == 25 for entry in ledger)
    assert all(entry.related_tournament_id == tournament.id for entry in ledger)


@pytest.mark.asyncio
async def test_cancel_without_fee(db, decisions, setup, tournament_repo):
    manager, players, tournament = await setup()

    await decisions.execute(tournament.id, manager.id, 'cancel')
    assert (await tournament_repo.get_by_id(tournament.id)).status == TournamentStatus.CANCELED
    assert await tickets_of(db, players[0].id) == 10


@pytest.mark.asyncio
@pytest.mark.parametrize("decision", ['start', 'cancel'])
async def test_not_awaiting_decision(decisions, setup, match_repo, tournament_repo, decision):
    manager, _, tournament = await setup(status=TournamentStatus.REGISTRATION_OPEN, entry_fee=5)

    with pytest.raises(InvalidStateError):
        await decisions.execute(tournament.id, manager.id, decision)

    assert (await tournament_repo.get_by_id(tournament.id)).status == TournamentStatus.REGISTRATION_OPEN
    assert await match_repo.find_by_tournament(tournament.id) == []


@pytest.mark.asyncio
async def test_requires_manager(decisions, setup, tournament_repo):
    _, players, tournament = await setup()

    with pytest.raises(PermissionDeniedError):
        await decisions.execute(tournament.id, players[0].id, 'start')
    with pytest.raises(PermissionDeniedError):
        await decisions.execute(tournament.id, 'nobody', 'start')
    assert (await tournament_repo.get_by_id(tournament.id)).status == TournamentStatus.AWAITING_DECISION


@pytest.mark.asyncio
async def test_permission_checked_before_existence(decisions, setup):
    _, players, _ = await setup()
    with pytest.raises(PermissionDeniedError):
        await decisions.execute('missing', players[0].id, 'start')


@pytest.mark.asyncio
async def test_unknown_tournament(decisions, setup):
    manager, _, _ = await setup()
    with pytest.raises(NotFoundError):
        await decisions.execute('missing', manager.id, 'start')


@pytest.mark.asyncio
async def test_bracket_start_not_implemented(decisions, setup, match_repo, tournament_repo):
    manager, _, tournament = await setup(is_single_match=False, bracket_type=BracketType.SINGLE_ELIMINATION)

    with pytest.raises(BracketNotImplementedError):
        await decisions.execute(tournament.id, manager.id, 'start')
    with pytest.raises(NotImplementedError):
        await decisions.execute(tournament.id, manager.id, 'start')

    assert (await tournament_repo.get_by_id(tournament.id)).status == TournamentStatus.AWAITING_DECISION
    assert await match_repo.find_by_tournament(tournament.id) == []


@pytest.mark.asyncio
async def test_invalid_decision(decisions, setup, tournament_repo):
    manager, _, tournament = await setup()

    with pytest.raises(InvalidArgumentError):
        await decisions.execute(tournament.id, manager.id, 'postpone')
    assert (await tournament_repo.get_by_id(tournament.id)).status == TournamentStatus.AWAITING_DECISION


@pytest.mark.asyncio
async def test_single_match_needs_two_participants(decisions, add_player, add_tournament, match_repo, tournament_repo):
    manager = await add_player('manager', role=PlayerRole.TOURNAMENT_MANAGER)
    solo = await add_player('solo')
    tournament = await add_tournament(participants=[solo.id], is_single_match=True)

    with pytest.raises(InvalidArgumentError):
        await decisions.execute(tournament.id, manager.id, 'start')
    assert (await tournament_repo.get_by_id(tournament.id)).status == TournamentStatus.AWAITING_DECISION
    assert await match_repo.find_by_tournament(tournament.id) == []


@pytest.mark.asyncio
async def test_failed_cancel_leaves_no_refunds(db, tournament_repo, setup):
    manager, players, tournament = await setup(entry_fee=25)
    decisions = TournamentDecisionOperation(
        db,
        tournament_repository=tournament_repo,
        refund_operations=ExplodingRefunds(db, tournament_repository=tournament_repo)
    )

    with pytest.raises(RuntimeError):
        await decisions.execute(tournament.id, manager.id, 'cancel')

    assert (await tournament_repo.get_by_id(tournament.id)).status == TournamentStatus.AWAITING_DECISION
    assert await tickets_of(db, players[0].id) == 10
    async with db.get_session() as session:
        assert (await session.execute(select(TicketLedger))).scalars().all() == []
