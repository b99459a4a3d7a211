"""
Match lifecycle: toss, innings break and the result.

The toss decides the batting order once. Nothing afterwards (a second
innings, a repeated toss call) may rewrite that assignment.
"""
from datetime import date

import pytest

from scorebook.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from scorebook.identity import StaticIdentity
from scorebook.lifecycle import MatchLifecycle, batting_order_from_toss, decide_result, is_innings_over
from scorebook.locks import InningsLocks
from scorebook.models import COMPLETED, IN_PROGRESS, NOT_STARTED, Innings, Match


def innings_row(innings_number=1, batting=1, bowling=2, runs=0, wickets=0, balls=0, target=None):
    return Innings(
        user_id="u", match_id=1, innings_number=innings_number,
        batting_team_id=batting, bowling_team_id=bowling,
        total_runs=runs, total_wickets=wickets, legal_balls=balls, target=target,
    )


class TestCreateMatch:
    @pytest.mark.asyncio
    async def test_defaults(self, seed, lifecycle):
        ctx = await seed(toss=False)
        match = await lifecycle.create_match(ctx.team1, ctx.team2)
        assert match.id is not None
        assert match.status == NOT_STARTED
        assert match.overs == 20
        assert match.match_date == date.today()

    @pytest.mark.asyncio
    async def test_one_day_defaults_to_fifty_overs(self, seed, lifecycle):
        ctx = await seed(toss=False)
        match = await lifecycle.create_match(ctx.team1, ctx.team2, "One-day")
        assert match.overs == 50

    @pytest.mark.asyncio
    @pytest.mark.parametrize("match_type,overs", [("Custom", None), ("T20", 0), ("T20", -5), ("", 20)])
    async def test_invalid_format_rejected(self, seed, lifecycle, match_type, overs):
        ctx = await seed(toss=False)
        with pytest.raises(ValidationError):
            await lifecycle.create_match(ctx.team1, ctx.team2, match_type, overs=overs)

    @pytest.mark.asyncio
    async def test_team_cannot_play_itself(self, seed, lifecycle):
        ctx = await seed(toss=False)
        with pytest.raises(ValidationError):
            await lifecycle.create_match(ctx.team1, ctx.team1)

    @pytest.mark.asyncio
    async def test_unknown_team(self, seed, lifecycle):
        ctx = await seed(toss=False)
        with pytest.raises(NotFoundError):
            await lifecycle.create_match(ctx.team1, 404)

    @pytest.mark.asyncio
    async def test_requires_identity(self, store):
        with pytest.raises(AuthenticationError):
            await MatchLifecycle(store, StaticIdentity(None)).create_match(1, 2)

    @pytest.mark.asyncio
    async def test_list_and_delete(self, seed, lifecycle, engine, store, locks):
        ctx = await seed()
        await engine.record_delivery(ctx.innings.id, runs=1)

        matches = await lifecycle.list_matches()
        assert [m.id for m in matches] == [ctx.match.id]

        assert ctx.innings.id in locks
        await lifecycle.delete_match(ctx.match.id)
        assert ctx.innings.id not in locks
        assert await lifecycle.list_matches() == []
        for table in ("innings", "deliveries", "batting_figures", "bowling_figures"):
            assert await store.query(table, {"match_id": ctx.match.id}) == []


class TestToss:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("decision,bats_first", [("bat", "team1"), ("bowl", "team2"), ("BOWL ", "team2")])
    async def test_toss_sets_batting_order(self, seed, lifecycle, store, decision, bats_first):
        ctx = await seed(toss=False)
        innings = await lifecycle.resolve_toss(ctx.match.id, ctx.team1, decision)

        batting = getattr(ctx, bats_first)
        assert innings.innings_number == 1
        assert innings.batting_team_id == batting
        assert innings.bowling_team_id == (ctx.team2 if batting == ctx.team1 else ctx.team1)

        match = Match(**await store.get("matches", {"id": ctx.match.id}))
        assert match.status == IN_PROGRESS
        assert match.toss_winner_id == ctx.team1
        assert match.toss_decision == decision.strip().lower()
        assert match.batting_team_id == batting

    @pytest.mark.asyncio
    async def test_second_toss_is_rejected_and_changes_nothing(self, seed, lifecycle, store):
        ctx = await seed()
        before = await store.get("matches", {"id": ctx.match.id})

        with pytest.raises(ConflictError):
            await lifecycle.resolve_toss(ctx.match.id, ctx.team2, "bat")

        assert await store.get("matches", {"id": ctx.match.id}) == before
        assert len(await store.query("innings", {"match_id": ctx.match.id})) == 1

    @pytest.mark.asyncio
    async def test_bad_decision_and_winner(self, seed, lifecycle):
        ctx = await seed(toss=False)
        with pytest.raises(ValidationError):
            await lifecycle.resolve_toss(ctx.match.id, ctx.team1, "field")
        with pytest.raises(ValidationError):
            await lifecycle.resolve_toss(ctx.match.id, 999, "bat")

    def test_batting_order_from_toss(self):
        match = Match(user_id="u", team1_id=10, team2_id=20)
        assert batting_order_from_toss(match, 10, "bat") == (10, 20)
        assert batting_order_from_toss(match, 20, "bat") == (20, 10)
        assert batting_order_from_toss(match, 20, "bowl") == (10, 20)


class TestSecondInnings:
    @pytest.mark.asyncio
    async def test_teams_swap_and_target_is_set(self, seed, lifecycle, engine, store):
        ctx = await seed()
        await engine.record_delivery(ctx.innings.id, runs=4)
        await engine.record_delivery(ctx.innings.id, runs=6)

        second = await lifecycle.start_second_innings(ctx.match.id)
        assert second.innings_number == 2
        assert second.batting_team_id == ctx.innings.bowling_team_id
        assert second.bowling_team_id == ctx.innings.batting_team_id
        assert second.target == 11

        # The toss-derived assignment on the match is untouched
        match = Match(**await store.get("matches", {"id": ctx.match.id}))
        assert match.batting_team_id == ctx.team1
        assert match.toss_winner_id == ctx.team1
        assert match.current_innings == 2

    @pytest.mark.asyncio
    async def test_only_once(self, seed, lifecycle):
        ctx = await seed()
        await lifecycle.start_second_innings(ctx.match.id)
        with pytest.raises(ValidationError):
            await lifecycle.start_second_innings(ctx.match.id)

    @pytest.mark.asyncio
    async def test_not_before_toss(self, seed, lifecycle):
        ctx = await seed(toss=False)
        with pytest.raises(ValidationError):
            await lifecycle.start_second_innings(ctx.match.id)


class TestResult:
    def setup_method(self):
        self.match = Match(user_id="u", team1_id=1, team2_id=2, overs=20)
        self.names = {1: "Lions", 2: "Tigers"}

    def test_chasing_side_wins_by_wickets(self):
        inn = innings_row(innings_number=2, batting=2, bowling=1, runs=150, wickets=3, balls=100, target=150)
        assert decide_result(self.match, inn, self.names) == (2, "Tigers won by 7 wickets")

    def test_one_wicket_is_singular(self):
        inn = innings_row(innings_number=2, batting=2, bowling=1, runs=150, wickets=9, balls=100, target=150)
        assert decide_result(self.match, inn, self.names) == (2, "Tigers won by 1 wicket")

    def test_defending_side_wins_by_runs(self):
        inn = innings_row(innings_number=2, batting=2, bowling=1, runs=120, wickets=10, balls=90, target=150)
        assert decide_result(self.match, inn, self.names) == (1, "Lions won by 29 runs")

    def test_tie(self):
        inn = innings_row(innings_number=2, batting=2, bowling=1, runs=149, wickets=4, balls=120, target=150)
        assert decide_result(self.match, inn, self.names) == (None, "Match Tied")

    def test_unfinished_chase_ended_manually(self):
        inn = innings_row(innings_number=2, batting=2, bowling=1, runs=80, wickets=2, balls=60, target=150)
        assert decide_result(self.match, inn, self.names) == (None, "Match Ended Manually")

    def test_first_innings_never_decides(self):
        inn = innings_row(innings_number=1, batting=1, bowling=2, runs=200, wickets=10, balls=120)
        assert decide_result(self.match, inn, self.names) == (None, "Match Ended Manually")

    def test_is_innings_over(self):
        assert not is_innings_over(self.match, innings_row(balls=119, wickets=9))
        assert is_innings_over(self.match, innings_row(balls=120))
        assert is_innings_over(self.match, innings_row(wickets=10))
        assert is_innings_over(self.match, innings_row(innings_number=2, runs=151, target=151))


class TestCompleteMatch:
    @pytest.mark.asyncio
    async def test_chase_completed(self, seed, lifecycle, engine):
        ctx = await seed(overs=2)
        await engine.record_delivery(ctx.innings.id, runs=4)
        second = await lifecycle.start_second_innings(ctx.match.id)
        await engine.select_players(
            second.id, striker_id=ctx.bowlers[0], non_striker_id=ctx.bowlers[1], bowler_id=ctx.batters[0],
        )
        await engine.record_delivery(second.id, runs=6)

        match = await lifecycle.complete_match(ctx.match.id)
        assert match.status == COMPLETED
        assert match.winner_id == ctx.team2
        assert match.result_message == "Tigers won by 10 wickets"

    @pytest.mark.asyncio
    async def test_forced_winner(self, seed, lifecycle):
        ctx = await seed()
        match = await lifecycle.complete_match(ctx.match.id, forced_winner_id=ctx.team2)
        assert match.winner_id == ctx.team2
        assert match.result_message == "Match Awarded Manually"

    @pytest.mark.asyncio
    async def test_forced_winner_must_be_playing(self, seed, lifecycle):
        ctx = await seed()
        with pytest.raises(ValidationError):
            await lifecycle.complete_match(ctx.match.id, forced_winner_id=999)

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, seed, lifecycle):
        ctx = await seed()
        await lifecycle.complete_match(ctx.match.id)
        with pytest.raises(ValidationError):
            await lifecycle.complete_match(ctx.match.id)
        with pytest.raises(ValidationError):
            await lifecycle.start_second_innings(ctx.match.id)
        with pytest.raises(ConflictError):
            await lifecycle.resolve_toss(ctx.match.id, ctx.team1, "bat")

    @pytest.mark.asyncio
    async def test_completion_forgets_innings_locks(self, seed, lifecycle, engine, locks):
        ctx = await seed()
        await engine.record_delivery(ctx.innings.id, runs=1)
        second = await lifecycle.start_second_innings(ctx.match.id)
        await engine.select_players(
            second.id, striker_id=ctx.bowlers[0], non_striker_id=ctx.bowlers[1], bowler_id=ctx.batters[0],
        )
        assert ctx.innings.id in locks and second.id in locks

        await lifecycle.complete_match(ctx.match.id)
        assert ctx.innings.id not in locks
        assert second.id not in locks


class TestInningsLocks:
    @pytest.mark.asyncio
    async def test_discard_keeps_a_held_lock(self):
        locks = InningsLocks()
        async with locks.hold(1):
            async with locks.hold(2):
                pass
            locks.discard([1, 2])
            assert 1 in locks
            assert 2 not in locks
        locks.discard([1])
        assert 1 not in locks
