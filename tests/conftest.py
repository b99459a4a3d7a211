"""Shared pytest fixtures for scorebook tests. Everything runs against MemoryStore."""
from types import SimpleNamespace

import pytest

from scorebook.identity import StaticIdentity
from scorebook.lifecycle import MatchLifecycle
from scorebook.models import Player, Team
from scorebook.scoring import InningsLocks, ScoringEngine
from scorebook.store import MemoryStore

USER_ID = "user-1"


@pytest.fixture
def store():
    return MemoryStore(timeout=2)


@pytest.fixture
def identity():
    return StaticIdentity(USER_ID)


@pytest.fixture
def locks():
    # Fresh per test, the module-level registry outlives the event loop
    return InningsLocks()


@pytest.fixture
def lifecycle(store, identity, locks):
    return MatchLifecycle(store, identity, locks=locks)


@pytest.fixture
def engine(store, identity, locks):
    return ScoringEngine(store, identity, locks=locks)


async def create_team(store, name, user_id=USER_ID, squad_size=11):
    team_id = await store.insert("teams", Team(user_id=user_id, name=name).to_row())
    players = []
    for i in range(1, squad_size + 1):
        player = Player(user_id=user_id, team_id=team_id, name=f"{name} {i}")
        players.append(await store.insert("players", player.to_row()))
    return team_id, players


@pytest.fixture
def seed(store, lifecycle, locks):
    """
    Returns a coroutine that sets up Lions v Tigers, Lions win the toss and
    bat. With `players=True` (default) openers and a bowler are selected.
    """
    async def _seed(overs=20, decision="bat", toss=True, players=True):
        lions, lion_ids = await create_team(store, "Lions")
        tigers, tiger_ids = await create_team(store, "Tigers")
        match = await lifecycle.create_match(lions, tigers, "Custom", overs=overs)
        ctx = SimpleNamespace(
            match=match, team1=lions, team2=tigers,
            team1_players=lion_ids, team2_players=tiger_ids, innings=None,
        )
        if not toss:
            return ctx

        ctx.innings = await lifecycle.resolve_toss(match.id, lions, decision)
        batting = lion_ids if ctx.innings.batting_team_id == lions else tiger_ids
        bowling = tiger_ids if batting is lion_ids else lion_ids
        ctx.batters, ctx.bowlers = batting, bowling
        if players:
            ctx.innings = await ScoringEngine(store, lifecycle.identity, locks=locks).select_players(
                ctx.innings.id, striker_id=batting[0], non_striker_id=batting[1], bowler_id=bowling[0],
            )
        return ctx

    return _seed
