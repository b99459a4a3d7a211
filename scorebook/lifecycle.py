"""
Match and innings lifecycle.

    Not Started --toss--> In Progress --complete--> Completed

The toss decides once who bats first. Innings rows carry their own batting
and bowling sides, so the match's toss-derived assignment is never rewritten,
not even when the second innings starts.
"""
import logging
from datetime import date
from typing import List, Optional

from scorebook.common import (
    fetch_all_innings, fetch_innings_by_number, fetch_match, fetch_team,
)
from scorebook.errors import ConflictError, ValidationError
from scorebook.identity import IdentityProvider
from scorebook.locks import InningsLocks, innings_locks
from scorebook.models import (
    COMPLETED, FORMAT_OVERS, IN_PROGRESS, NOT_STARTED, TOSS_DECISIONS,
    Innings, Match,
)
from scorebook.settings import BALLS_PER_OVER, MAX_WICKETS
from scorebook.store import EntityStore

logger = logging.getLogger("uvicorn.error")


def is_innings_over(match: Match, innings: Innings) -> bool:
    if innings.total_wickets >= MAX_WICKETS:
        return True
    if innings.legal_balls >= match.overs * BALLS_PER_OVER:
        return True
    return bool(innings.target) and innings.total_runs >= innings.target


def batting_order_from_toss(match: Match, winner_id: int, decision: str):
    """(batting_team_id, bowling_team_id) for the first innings."""
    loser_id = match.other_team(winner_id)
    if decision == "bat":
        return winner_id, loser_id
    return loser_id, winner_id


def decide_result(match: Match, innings: Innings, team_names: dict):
    """
    Referee logic on the current innings. Returns (winner_id, message).
    Only a second innings with a target can produce a winner on its own.
    """
    if innings.innings_number < 2 or not innings.target:
        return None, "Match Ended Manually"

    target = innings.target
    runs, wickets = innings.total_runs, innings.total_wickets
    finished = innings.total_wickets >= MAX_WICKETS or innings.legal_balls >= match.overs * BALLS_PER_OVER

    if runs >= target:
        margin = MAX_WICKETS - wickets
        unit = "wicket" if margin == 1 else "wickets"
        return innings.batting_team_id, f"{team_names[innings.batting_team_id]} won by {margin} {unit}"
    if finished and runs < target - 1:
        margin = target - 1 - runs
        unit = "run" if margin == 1 else "runs"
        return innings.bowling_team_id, f"{team_names[innings.bowling_team_id]} won by {margin} {unit}"
    if finished and runs == target - 1:
        return None, "Match Tied"
    return None, "Match Ended Manually"


class MatchLifecycle:
    def __init__(self, store: EntityStore, identity: IdentityProvider, locks: InningsLocks = None):
        self.store = store
        self.identity = identity
        self.locks = locks or innings_locks

    async def create_match(self, team1_id: int, team2_id: int, match_type: str = "T20",
                           overs: Optional[int] = None, venue: Optional[str] = None,
                           match_date: Optional[date] = None) -> Match:
        user_id = self.identity.require_user()

        match_type = (match_type or "").strip()
        if not match_type:
            raise ValidationError("Match type is required")
        if overs is None:
            overs = FORMAT_OVERS.get(match_type)
            if overs is None:
                raise ValidationError(f"Overs per innings is required for a '{match_type}' match")
        if overs <= 0:
            raise ValidationError("Overs per innings must be greater than 0")
        if team1_id == team2_id:
            raise ValidationError("A team cannot play itself")

        await fetch_team(self.store, user_id, team1_id)
        await fetch_team(self.store, user_id, team2_id)

        match = Match(
            user_id=user_id, team1_id=team1_id, team2_id=team2_id,
            match_type=match_type, overs=overs, venue=venue or None,
            match_date=match_date or date.today(),
        )
        match_id = await self.store.insert("matches", match.to_row())
        logger.info(f"Match {match_id} created ({match_type}, {overs} overs)")
        return match.model_copy(update={"id": match_id})

    async def list_matches(self) -> List[Match]:
        user_id = self.identity.require_user()
        rows = await self.store.query("matches", {"user_id": user_id}, order_by=["match_date", "id"], descending=True)
        return [Match(**r) for r in rows]

    async def delete_match(self, match_id: int):
        user_id = self.identity.require_user()
        async with self.store.transaction():
            await fetch_match(self.store, user_id, match_id)
            scope = {"match_id": match_id, "user_id": user_id}
            finished = [inn.id for inn in await fetch_all_innings(self.store, user_id, match_id)]
            for table in ("deliveries", "batting_figures", "bowling_figures", "innings"):
                await self.store.delete(table, scope)
            await self.store.delete("matches", {"id": match_id, "user_id": user_id})
        self.locks.discard(finished)
        logger.info(f"Match {match_id} deleted")

    async def resolve_toss(self, match_id: int, winner_id: int, decision: str) -> Innings:
        """Not Started -> In Progress. Creates innings #1."""
        user_id = self.identity.require_user()
        decision = (decision or "").strip().lower()
        if decision not in TOSS_DECISIONS:
            raise ValidationError("Toss decision must be 'bat' or 'bowl'")

        async with self.store.transaction():
            match = await fetch_match(self.store, user_id, match_id)
            if match.status != NOT_STARTED:
                raise ConflictError("Toss has already been decided")
            if winner_id not in (match.team1_id, match.team2_id):
                raise ValidationError("Toss winner must be one of the two teams")

            batting_id, bowling_id = batting_order_from_toss(match, winner_id, decision)

            updated = await self.store.update("matches", {
                "toss_winner_id": winner_id,
                "toss_decision": decision,
                "status": IN_PROGRESS,
                "current_innings": 1,
                "batting_team_id": batting_id,
                "bowling_team_id": bowling_id,
            }, {"id": match_id, "user_id": user_id, "status": NOT_STARTED})
            if updated == 0:
                raise ConflictError("Toss was recorded by someone else")

            innings = Innings(
                user_id=user_id, match_id=match_id, innings_number=1,
                batting_team_id=batting_id, bowling_team_id=bowling_id,
            )
            innings_id = await self.store.insert("innings", innings.to_row())

        logger.info(f"Match {match_id}: toss to team {winner_id}, elected to {decision}")
        return innings.model_copy(update={"id": innings_id})

    async def start_second_innings(self, match_id: int) -> Innings:
        user_id = self.identity.require_user()
        async with self.store.transaction():
            match = await fetch_match(self.store, user_id, match_id)
            if match.status != IN_PROGRESS:
                raise ValidationError(f"Match is {match.status}")
            if match.current_innings != 1:
                raise ValidationError("Second innings already started")

            first = await fetch_innings_by_number(self.store, user_id, match_id, 1)
            second = Innings(
                user_id=user_id, match_id=match_id, innings_number=2,
                batting_team_id=first.bowling_team_id,
                bowling_team_id=first.batting_team_id,
                target=first.total_runs + 1,
            )

            updated = await self.store.update(
                "matches", {"current_innings": 2},
                {"id": match_id, "user_id": user_id, "current_innings": 1, "status": IN_PROGRESS},
            )
            if updated == 0:
                raise ConflictError("Innings changed concurrently")
            innings_id = await self.store.insert("innings", second.to_row())

        logger.info(f"Match {match_id}: innings break, target {second.target}")
        return second.model_copy(update={"id": innings_id})

    async def complete_match(self, match_id: int, forced_winner_id: Optional[int] = None) -> Match:
        """In Progress -> Completed. Terminal."""
        user_id = self.identity.require_user()
        async with self.store.transaction():
            match = await fetch_match(self.store, user_id, match_id)
            if match.status != IN_PROGRESS:
                raise ValidationError(f"Only a match in progress can be completed (status: {match.status})")

            innings = await fetch_innings_by_number(self.store, user_id, match_id, match.current_innings)
            names = {
                match.team1_id: (await fetch_team(self.store, user_id, match.team1_id)).name,
                match.team2_id: (await fetch_team(self.store, user_id, match.team2_id)).name,
            }
            winner_id, message = decide_result(match, innings, names)

            if forced_winner_id is not None:
                if forced_winner_id not in names:
                    raise ValidationError("Winner must be one of the two teams")
                winner_id, message = forced_winner_id, "Match Awarded Manually"

            updated = await self.store.update(
                "matches", {"status": COMPLETED, "winner_id": winner_id, "result_message": message},
                {"id": match_id, "user_id": user_id, "status": IN_PROGRESS},
            )
            if updated == 0:
                raise ConflictError("Match was completed concurrently")
            finished = [inn.id for inn in await fetch_all_innings(self.store, user_id, match_id)]

        # No more deliveries or undos for these innings
        self.locks.discard(finished)
        logger.info(f"Match {match_id} completed: {message}")
        return match.model_copy(update={"status": COMPLETED, "winner_id": winner_id, "result_message": message})

    async def innings_for(self, match_id: int) -> List[Innings]:
        user_id = self.identity.require_user()
        await fetch_match(self.store, user_id, match_id)
        return await fetch_all_innings(self.store, user_id, match_id)
