"""
Ball-by-ball scoring: record a delivery, undo the last one.

Each delivery touches four rows: the ball event, the innings totals, the
striker's batting figure and the bowler's bowling figure. They are written in
one store transaction. The innings update is conditional on the innings'
`last_sequence` still being what we read, so a second scorer on another device
gets a ConflictError instead of silently losing an update.
"""
import logging
from typing import Optional

from pydantic import BaseModel

from scorebook.common import fetch_innings, fetch_match, fetch_player
from scorebook.errors import ConflictError, ValidationError
from scorebook.identity import IdentityProvider
from scorebook.lifecycle import is_innings_over
from scorebook.locks import InningsLocks, innings_locks
from scorebook.models import (
    COMPLETED, FIGURE_KEYS, IN_PROGRESS,
    BattingFigure, BowlingFigure, Delivery, Innings, Match,
)
from scorebook.store import EntityStore
from scorebook.utils.match_helpers import (
    apply_to_batting, apply_to_bowling, apply_to_innings, classify_delivery,
    new_batting_figure, new_bowling_figure, next_batters, recompute_innings,
)

logger = logging.getLogger("uvicorn.error")

PLAYER_SLOTS = ("striker_id", "non_striker_id", "bowler_id")


class DeliveryOutcome(BaseModel):
    status: str
    delivery: Delivery
    innings: Innings
    batting: BattingFigure
    bowling: BowlingFigure
    striker_id: Optional[int] = None
    non_striker_id: Optional[int] = None
    bowler_id: Optional[int] = None
    over_complete: bool = False
    innings_over: bool = False


class UndoOutcome(BaseModel):
    undone: Delivery
    innings: Innings


def _innings_values(innings: Innings) -> dict:
    return {
        "total_runs": innings.total_runs,
        "total_wickets": innings.total_wickets,
        "legal_balls": innings.legal_balls,
        "last_sequence": innings.last_sequence,
        "striker_id": innings.striker_id,
        "non_striker_id": innings.non_striker_id,
        "bowler_id": innings.bowler_id,
    }


class ScoringEngine:
    def __init__(self, store: EntityStore, identity: IdentityProvider, locks: InningsLocks = None):
        self.store = store
        self.identity = identity
        self.locks = locks or innings_locks

    # ======================================================
    # Record
    # ======================================================

    async def record_delivery(self, innings_id: int, runs: int = 0, extras_type: Optional[str] = None,
                              is_wicket: bool = False, striker_id: Optional[int] = None,
                              non_striker_id: Optional[int] = None, bowler_id: Optional[int] = None,
                              dismissal_type: Optional[str] = None) -> DeliveryOutcome:
        user_id = self.identity.require_user()

        async with self.locks.hold(innings_id):
            async with self.store.transaction():
                innings = await fetch_innings(self.store, user_id, innings_id)
                match = await fetch_match(self.store, user_id, innings.match_id)
                self._check_can_score(match, innings)

                striker_id = striker_id if striker_id is not None else innings.striker_id
                non_striker_id = non_striker_id if non_striker_id is not None else innings.non_striker_id
                bowler_id = bowler_id if bowler_id is not None else innings.bowler_id
                await self._check_players(user_id, innings, striker_id, non_striker_id, bowler_id)

                clock = innings.clock
                classified = classify_delivery(runs, extras_type, is_wicket, clock.balls)

                # --- nothing written above this line ---

                sequence = innings.last_sequence + 1
                next_striker, next_non_striker = next_batters(striker_id, non_striker_id, classified)
                updated = apply_to_innings(innings, classified, sequence).model_copy(update={
                    "striker_id": next_striker,
                    "non_striker_id": next_non_striker,
                    # New over, new bowler (checked in _check_players)
                    "bowler_id": None if classified.ends_over else bowler_id,
                })

                changed = await self.store.update(
                    "innings", _innings_values(updated),
                    {"id": innings.id, "user_id": user_id, "last_sequence": innings.last_sequence},
                )
                if changed == 0:
                    logger.warning(f"Innings {innings.id}: sequence {innings.last_sequence} is stale, rejecting delivery")
                    raise ConflictError("Innings was updated by another scorer, reload and retry")

                delivery = Delivery(
                    user_id=user_id, match_id=innings.match_id, innings_id=innings.id,
                    sequence_number=sequence,
                    over_number=clock.completed_overs,
                    ball_number=clock.balls + 1,
                    striker_id=striker_id, non_striker_id=non_striker_id, bowler_id=bowler_id,
                    runs=runs, extras_type=classified.extras_type, extras_runs=classified.extras_runs,
                    is_wicket=classified.is_wicket,
                    dismissal_type=(dismissal_type or "Out") if classified.is_wicket else None,
                )
                delivery_id = await self.store.insert("deliveries", delivery.to_row())

                batting = await self._batting_figure(innings, striker_id)
                batting = apply_to_batting(batting, classified, delivery.dismissal_type)
                batting_id = await self.store.upsert("batting_figures", batting.to_row(), FIGURE_KEYS)

                bowling = await self._bowling_figure(innings, bowler_id)
                bowling = apply_to_bowling(bowling, classified, delivery.dismissal_type)
                bowling_id = await self.store.upsert("bowling_figures", bowling.to_row(), FIGURE_KEYS)

        over_complete = classified.ends_over
        innings_over = is_innings_over(match, updated)
        if innings_over:
            status = "innings_over"
        elif classified.is_wicket:
            status = "wicket_fall"
        elif over_complete:
            status = "over_complete"
        else:
            status = "success"

        logger.info(
            f"Innings {innings.id} #{sequence}: {updated.total_runs}/{updated.total_wickets} "
            f"({updated.total_overs}) {status}"
        )
        return DeliveryOutcome(
            status=status,
            delivery=delivery.model_copy(update={"id": delivery_id}),
            innings=updated,
            batting=batting.model_copy(update={"id": batting_id}),
            bowling=bowling.model_copy(update={"id": bowling_id}),
            striker_id=updated.striker_id,
            non_striker_id=updated.non_striker_id,
            bowler_id=updated.bowler_id,
            over_complete=over_complete,
            innings_over=innings_over,
        )

    def _check_can_score(self, match: Match, innings: Innings):
        if match.status != IN_PROGRESS:
            raise ValidationError(f"Cannot score a match that is {match.status}")
        if innings.innings_number != match.current_innings:
            raise ValidationError(f"Innings {innings.innings_number} is not the current innings")
        if is_innings_over(match, innings):
            raise ValidationError("Innings is over")

    def _check_can_amend(self, match: Match, innings: Innings):
        # Later innings were built on this one's totals (the target)
        if match.status == COMPLETED:
            raise ValidationError("Match is completed")
        if innings.innings_number != match.current_innings:
            raise ValidationError(f"Innings {innings.innings_number} is not the current innings")

    async def _dismissed(self, innings: Innings) -> set:
        rows = await self.store.query("batting_figures", {"innings_id": innings.id, "is_out": True})
        return {r["player_id"] for r in rows}

    async def _previous_over_bowler(self, innings: Innings) -> Optional[int]:
        """Who bowled the over that just ended, or None when an over is under way."""
        clock = innings.clock
        if clock.balls != 0 or clock.completed_overs == 0:
            return None
        rows = await self.store.query(
            "deliveries", {"innings_id": innings.id, "over_number": clock.completed_overs - 1},
            order_by="sequence_number", descending=True, limit=1,
        )
        return rows[0]["bowler_id"] if rows else None

    async def _check_batter(self, user_id, innings: Innings, player_id: int, dismissed: set):
        player = await fetch_player(self.store, user_id, player_id)
        if player.team_id != innings.batting_team_id:
            raise ValidationError(f"{player.name} is not in the batting side")
        if player_id in dismissed:
            raise ValidationError(f"{player.name} is already out")

    async def _check_bowler(self, user_id, innings: Innings, bowler_id: int):
        bowler = await fetch_player(self.store, user_id, bowler_id)
        if bowler.team_id != innings.bowling_team_id:
            raise ValidationError(f"{bowler.name} is not in the bowling side")
        if bowler_id == await self._previous_over_bowler(innings):
            raise ValidationError(f"{bowler.name} bowled the previous over")

    async def _check_players(self, user_id, innings: Innings, striker_id, non_striker_id, bowler_id):
        if striker_id is None or non_striker_id is None or bowler_id is None:
            raise ValidationError("Select striker, non-striker and bowler first")
        if striker_id == non_striker_id:
            raise ValidationError("Striker and non-striker must be different players")
        if bowler_id in (striker_id, non_striker_id):
            raise ValidationError("Bowler cannot also be batting")

        dismissed = await self._dismissed(innings)
        for player_id in (striker_id, non_striker_id):
            await self._check_batter(user_id, innings, player_id, dismissed)
        await self._check_bowler(user_id, innings, bowler_id)

    async def _batting_figure(self, innings: Innings, player_id: int) -> BattingFigure:
        rows = await self.store.query("batting_figures", {"innings_id": innings.id})
        for row in rows:
            if row["player_id"] == player_id:
                return BattingFigure(**row)
        # First appearance: next position in the order
        return new_batting_figure(innings, player_id, len(rows) + 1)

    async def _bowling_figure(self, innings: Innings, player_id: int) -> BowlingFigure:
        row = await self.store.get("bowling_figures", {"innings_id": innings.id, "player_id": player_id})
        return BowlingFigure(**row) if row else new_bowling_figure(innings, player_id)

    # ======================================================
    # Undo
    # ======================================================

    async def undo_last_delivery(self, innings_id: int) -> Optional[UndoOutcome]:
        """
        Deletes the latest delivery and rebuilds every aggregate from the log
        that remains. Returns None when there is nothing to undo.
        """
        user_id = self.identity.require_user()

        async with self.locks.hold(innings_id):
            async with self.store.transaction():
                innings = await fetch_innings(self.store, user_id, innings_id)
                match = await fetch_match(self.store, user_id, innings.match_id)
                self._check_can_amend(match, innings)

                rows = await self.store.query(
                    "deliveries", {"innings_id": innings.id, "user_id": user_id},
                    order_by="sequence_number", descending=True, limit=1,
                )
                if not rows:
                    return None
                last = Delivery(**rows[0])

                await self.store.delete("deliveries", {"id": last.id})
                # Put the players back where they were before that ball
                rebuilt = await self._rebuild(innings, {
                    "striker_id": last.striker_id,
                    "non_striker_id": last.non_striker_id,
                    "bowler_id": last.bowler_id,
                })

        logger.info(f"Innings {innings.id}: undid delivery #{last.sequence_number}")
        return UndoOutcome(undone=last, innings=rebuilt)

    async def rebuild_innings(self, innings_id: int) -> Innings:
        """Recomputes totals and figures from the ball log. Repairs drifted aggregates."""
        user_id = self.identity.require_user()
        async with self.locks.hold(innings_id):
            async with self.store.transaction():
                innings = await fetch_innings(self.store, user_id, innings_id)
                match = await fetch_match(self.store, user_id, innings.match_id)
                self._check_can_amend(match, innings)
                return await self._rebuild(innings)

    async def _rebuild(self, innings: Innings, players: Optional[dict] = None) -> Innings:
        rows = await self.store.query("deliveries", {"innings_id": innings.id}, order_by="sequence_number")
        totals, batting, bowling = recompute_innings(innings, [Delivery(**r) for r in rows])
        if players:
            totals = totals.model_copy(update=players)

        changed = await self.store.update(
            "innings", _innings_values(totals),
            {"id": innings.id, "last_sequence": innings.last_sequence},
        )
        if changed == 0:
            raise ConflictError("Innings was updated by another scorer, reload and retry")

        await self._sync_figures("batting_figures", innings.id, batting)
        await self._sync_figures("bowling_figures", innings.id, bowling)
        return totals

    async def _sync_figures(self, table: str, innings_id: int, figures: dict):
        """Makes the stored figures equal `figures`: drop, update or add rows as needed."""
        existing = {r["player_id"]: r for r in await self.store.query(table, {"innings_id": innings_id})}

        for player_id, row in existing.items():
            if player_id not in figures:
                await self.store.delete(table, {"id": row["id"]})

        for player_id, figure in figures.items():
            row = figure.to_row()
            current = existing.get(player_id)
            if current and all(current.get(k) == v for k, v in row.items()):
                continue
            await self.store.upsert(table, row, FIGURE_KEYS)

    # ======================================================
    # Who is in the middle
    # ======================================================

    async def select_players(self, innings_id: int, **slots) -> Innings:
        """Sets any of striker_id / non_striker_id / bowler_id. None clears a slot."""
        user_id = self.identity.require_user()
        unknown = set(slots) - set(PLAYER_SLOTS)
        if unknown:
            raise ValidationError(f"Unknown player slot(s): {', '.join(sorted(unknown))}")

        async with self.locks.hold(innings_id):
            async with self.store.transaction():
                innings = await fetch_innings(self.store, user_id, innings_id)
                match = await fetch_match(self.store, user_id, innings.match_id)
                if match.status == COMPLETED:
                    raise ValidationError("Match is completed")

                dismissed = await self._dismissed(innings)
                for slot in ("striker_id", "non_striker_id"):
                    if slots.get(slot) is not None:
                        await self._check_batter(user_id, innings, slots[slot], dismissed)
                if slots.get("bowler_id") is not None:
                    await self._check_bowler(user_id, innings, slots["bowler_id"])

                updated = innings.model_copy(update=slots)
                if updated.striker_id is not None and updated.striker_id == updated.non_striker_id:
                    raise ValidationError("Striker and non-striker must be different players")

                if slots:
                    await self.store.update("innings", dict(slots), {"id": innings.id})
        return updated

    async def swap_strike(self, innings_id: int) -> Innings:
        user_id = self.identity.require_user()
        async with self.locks.hold(innings_id):
            async with self.store.transaction():
                innings = await fetch_innings(self.store, user_id, innings_id)
                updated = innings.model_copy(update={
                    "striker_id": innings.non_striker_id,
                    "non_striker_id": innings.striker_id,
                })
                await self.store.update("innings", {
                    "striker_id": updated.striker_id,
                    "non_striker_id": updated.non_striker_id,
                }, {"id": innings.id})
        return updated
