"""
Shared fixtures: a temporary file-backed SQLite database per test and
small builders for players, tournaments and matches.
"""

import os

os.environ.setdefault('LOG_TO_FILE', 'False')

import pytest
import pytest_asyncio

from tourney.database.database import Database
from tourney.database.match_repository import MatchRepository
from tourney.database.models import (
    Match, Player, PlayerRole, ParticipantType, TournamentStatus
)
from tourney.database.tournament_repository import TournamentRepository


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def match_repo(db):
    return MatchRepository(db)


@pytest.fixture
def tournament_repo(db):
    return TournamentRepository(db)


@pytest.fixture
def add_player(db):
    async def _add(username, role=PlayerRole.PLAYER, tickets=0):
        async with db.transaction() as session:
            player = Player(username=username, display_name=username, role=role, tickets=tickets)
            session.add(player)
        return player
    return _add


@pytest.fixture
def add_tournament(tournament_repo):
    async def _add(name="Weekly Cup", status=TournamentStatus.AWAITING_DECISION, participants=(), **kwargs):
        tournament = await tournament_repo.create(name, status=status, **kwargs)
        for participant_id in participants:
            await tournament_repo.add_participant(tournament.id, participant_id)
        return tournament
    return _add


@pytest.fixture
def make_match():
    def _make(**overrides):
        fields = dict(
            tournament_id='t-1',
            round_number=1,
            match_number_in_round=1,
            participant1_id='alice',
            participant1_type=ParticipantType.USER,
            participant2_id='bob',
            participant2_type=ParticipantType.USER,
        )
        fields.update(overrides)
        return Match(**fields)
    return _make
