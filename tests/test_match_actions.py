import random
from datetime import datetime, timedelta, timezone

import pytest

from tourney.database.models import MatchStatus
from tourney.operations.bracket_generator import BracketGenerator
from tourney.operations.match_actions import MatchActionService
from tourney.operations.progression import advance_byes
from tourney.utils.exceptions import (
    ConcurrencyConflictError, InvalidArgumentError, InvalidStateTransitionError,
    NotFoundError, PermissionDeniedError
)


@pytest.fixture
def actions(db, match_repo):
    return MatchActionService(db, match_repo)


@pytest.fixture
def persisted_bracket(add_tournament, match_repo):
    async def _create(n):
        tournament = await add_tournament()
        matches = BracketGenerator(rng=random.Random(0)).generate(
            tournament.id, [{'id': f'p{i}', 'seed': i} for i in range(1, n + 1)], shuffle=False
        )
        advance_byes(matches)
        await match_repo.create_bulk(matches)
        return tournament, {(m.round_number, m.match_number_in_round): m.id for m in matches}
    return _create


async def play(actions, match_id, submitter, winner):
    await actions.start_match(match_id)
    await actions.submit_result(match_id, submitter, winner, 2, 1, proof_url='https://proof/1')
    return await actions.confirm_result(match_id, submitter)


@pytest.mark.asyncio
async def test_winners_progress_to_final(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(4)

    await play(actions, ids[(1, 1)], 'p1', 'p1')
    final = await match_repo.get_by_id(ids[(2, 1)])
    assert (final.participant1_id, final.participant2_id) == ('p1', None)
    assert final.status == MatchStatus.SCHEDULED

    await play(actions, ids[(1, 2)], 'p3', 'p3')
    final = await match_repo.get_by_id(ids[(2, 1)])
    assert (final.participant1_id, final.participant2_id) == ('p1', 'p3')
    assert final.status == MatchStatus.SCHEDULED

    await play(actions, ids[(2, 1)], 'p3', 'p1')
    final = await match_repo.get_by_id(ids[(2, 1)])
    assert final.status == MatchStatus.COMPLETED
    assert final.winner_id == 'p1'


@pytest.mark.asyncio
async def test_bye_winner_meets_play_in_winner(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(5)

    await play(actions, ids[(1, 4)], 'p4', 'p5')
    downstream = await match_repo.get_by_id(ids[(2, 2)])
    assert (downstream.participant1_id, downstream.participant2_id) == ('p3', 'p5')


@pytest.mark.asyncio
async def test_submit_result_stores_proof_for_submitter_slot(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(4)
    match_id = ids[(1, 1)]
    await actions.start_match(match_id)

    match = await actions.submit_result(match_id, 'p4', 'p4', 0, 2, proof_url='https://proof/p4')
    assert match.status == MatchStatus.AWAITING_CONFIRMATION
    assert match.result_proof_url_p1 is None
    assert match.result_proof_url_p2 == 'https://proof/p4'


@pytest.mark.asyncio
async def test_submit_result_by_outsider(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(4)
    match_id = ids[(1, 1)]
    await actions.start_match(match_id)

    with pytest.raises(PermissionDeniedError):
        await actions.submit_result(match_id, 'p2', 'p1', 1, 0)
    assert (await match_repo.get_by_id(match_id)).status == MatchStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_submit_result_for_other_tournament(actions, persisted_bracket):
    _, ids = await persisted_bracket(2)
    await actions.start_match(ids[(1, 1)])
    with pytest.raises(InvalidArgumentError):
        await actions.submit_result(ids[(1, 1)], 'p1', 'p1', tournament_id='another')


@pytest.mark.asyncio
async def test_dispute_and_resolution(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(4)
    match_id = ids[(1, 1)]
    await actions.start_match(match_id)
    await actions.submit_result(match_id, 'p1', 'p1', 3, 0)

    disputed = await actions.dispute_result(match_id, 'p4', 'Score was 0-3')
    assert disputed.status == MatchStatus.DISPUTED

    resolved = await actions.resolve_dispute(
        match_id, 'p4', 'Screenshot confirms p4', participant1_score=0, participant2_score=3
    )
    assert resolved.status == MatchStatus.COMPLETED
    assert resolved.winner_id == 'p4'

    final = await match_repo.get_by_id(ids[(2, 1)])
    assert final.participant1_id == 'p4'


@pytest.mark.asyncio
async def test_illegal_action_rolls_back(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(4)
    match_id = ids[(1, 1)]

    with pytest.raises(InvalidStateTransitionError):
        await actions.confirm_result(match_id, 'p1')
    stored = await match_repo.get_by_id(match_id)
    assert stored.status == MatchStatus.SCHEDULED
    assert stored.version == 1


@pytest.mark.asyncio
async def test_stale_expected_version(actions, persisted_bracket):
    _, ids = await persisted_bracket(4)
    match_id = ids[(1, 1)]
    started = await actions.start_match(match_id, expected_version=1)
    assert started.version == 2

    with pytest.raises(ConcurrencyConflictError):
        await actions.cancel_match(match_id, 'No show', expected_version=1)


@pytest.mark.asyncio
async def test_missing_match(actions, db):
    with pytest.raises(NotFoundError):
        await actions.start_match('missing')


@pytest.mark.asyncio
async def test_cancel_gives_waiting_opponent_a_walkover(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(4)
    await play(actions, ids[(1, 1)], 'p1', 'p1')

    canceled = await actions.cancel_match(ids[(1, 2)], 'Both players absent')
    assert canceled.status == MatchStatus.CANCELED

    final = await match_repo.get_by_id(ids[(2, 1)])
    assert final.status == MatchStatus.BYE
    assert final.winner_id == 'p1'


@pytest.mark.asyncio
async def test_bye_cascades_through_rounds(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(8)
    await actions.cancel_match(ids[(1, 2)], 'Forfeit')
    await play(actions, ids[(1, 1)], 'p1', 'p1')

    semi = await match_repo.get_by_id(ids[(2, 1)])
    assert semi.status == MatchStatus.BYE
    final = await match_repo.get_by_id(ids[(3, 1)])
    assert final.participant1_id == 'p1'
    assert final.status == MatchStatus.SCHEDULED


@pytest.mark.asyncio
async def test_reschedule(actions, persisted_bracket):
    _, ids = await persisted_bracket(4)
    new_time = datetime.now(timezone.utc) + timedelta(days=2)

    match = await actions.reschedule_match(ids[(2, 1)], new_time)
    assert match.scheduled_time == new_time


@pytest.mark.asyncio
async def test_write_losing_a_race_raises_conflict(actions, match_repo, persisted_bracket, monkeypatch):
    _, ids = await persisted_bracket(4)
    match_id = ids[(1, 1)]
    load = match_repo.get_by_id

    async def load_then_get_overtaken(mid, session=None):
        match = await load(mid, session=session)
        # Another writer commits between our read and our write
        await match_repo.update_by_id(mid, {'moderator_notes': 'Moved to stream'})
        return match

    monkeypatch.setattr(match_repo, 'get_by_id', load_then_get_overtaken)
    with pytest.raises(ConcurrencyConflictError) as exc_info:
        await actions.start_match(match_id)
    monkeypatch.undo()

    assert exc_info.value.match_id == match_id
    stored = await match_repo.get_by_id(match_id)
    assert stored.status == MatchStatus.SCHEDULED
    assert stored.moderator_notes == 'Moved to stream'
    assert stored.version == 2


async def dispute_after_confirmation(actions, match_id, winner, reporter):
    await play(actions, match_id, winner, winner)
    return await actions.dispute_result(match_id, reporter, 'Wrong player reported')


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", [MatchStatus.CANCELED, MatchStatus.SCHEDULED])
async def test_void_or_replay_withdraws_advanced_winner(actions, match_repo, persisted_bracket, outcome):
    _, ids = await persisted_bracket(4)
    await dispute_after_confirmation(actions, ids[(1, 1)], 'p1', 'p4')
    assert (await match_repo.get_by_id(ids[(2, 1)])).participant1_id == 'p1'

    resolved = await actions.resolve_dispute(ids[(1, 1)], None, 'Result voided', outcome)
    assert resolved.status == outcome

    final = await match_repo.get_by_id(ids[(2, 1)])
    assert final.participant1_id is None
    assert final.participant2_id is None
    assert final.status == MatchStatus.PENDING


@pytest.mark.asyncio
async def test_replay_keeps_waiting_opponent_seated(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(4)
    await play(actions, ids[(1, 2)], 'p3', 'p3')
    await dispute_after_confirmation(actions, ids[(1, 1)], 'p1', 'p4')

    await actions.resolve_dispute(ids[(1, 1)], None, 'Replay ordered', MatchStatus.SCHEDULED)

    final = await match_repo.get_by_id(ids[(2, 1)])
    assert (final.participant1_id, final.participant2_id) == (None, 'p3')
    assert final.status == MatchStatus.SCHEDULED

    await play(actions, ids[(1, 1)], 'p4', 'p4')
    final = await match_repo.get_by_id(ids[(2, 1)])
    assert (final.participant1_id, final.participant2_id) == ('p4', 'p3')


@pytest.mark.asyncio
async def test_void_gives_waiting_opponent_a_walkover(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(4)
    await play(actions, ids[(1, 2)], 'p3', 'p3')
    await dispute_after_confirmation(actions, ids[(1, 1)], 'p1', 'p4')

    await actions.resolve_dispute(ids[(1, 1)], None, 'Both disqualified', MatchStatus.CANCELED)

    final = await match_repo.get_by_id(ids[(2, 1)])
    assert final.status == MatchStatus.BYE
    assert final.winner_id == 'p3'
    assert final.participant1_id is None


@pytest.mark.asyncio
async def test_withdrawn_winner_stays_in_match_already_underway(actions, match_repo, persisted_bracket, caplog):
    _, ids = await persisted_bracket(4)
    await play(actions, ids[(1, 2)], 'p3', 'p3')
    await dispute_after_confirmation(actions, ids[(1, 1)], 'p1', 'p4')
    await actions.start_match(ids[(2, 1)])

    await actions.resolve_dispute(ids[(1, 1)], None, 'Replay ordered', MatchStatus.SCHEDULED)

    final = await match_repo.get_by_id(ids[(2, 1)])
    assert final.status == MatchStatus.IN_PROGRESS
    assert final.participant1_id == 'p1'
    assert any(
        record.levelname == 'WARNING' and 'p1 stays in match' in record.getMessage()
        for record in caplog.records
    )


@pytest.mark.asyncio
async def test_resolution_to_other_winner_replaces_advanced_winner(actions, match_repo, persisted_bracket):
    _, ids = await persisted_bracket(4)
    await dispute_after_confirmation(actions, ids[(1, 1)], 'p1', 'p4')

    await actions.resolve_dispute(ids[(1, 1)], 'p4', 'Footage shows p4 won')

    final = await match_repo.get_by_id(ids[(2, 1)])
    assert final.participant1_id == 'p4'
    assert final.status == MatchStatus.SCHEDULED
