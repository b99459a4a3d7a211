"""
HTTP endpoint tests. The app runs against a fresh MemoryStore per test and
the caller is identified by the X-User-Id header.
"""
import pytest
from fastapi.testclient import TestClient

from scorebook import database
from scorebook.main import app
from scorebook.store import MemoryStore

HEADERS = {"X-User-Id": "user-1"}


@pytest.fixture
def client():
    store = MemoryStore()
    app.dependency_overrides[database.get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def post(client, url, json=None, headers=HEADERS):
    return client.post(f"/api{url}", json=json, headers=headers)


def get(client, url, headers=HEADERS):
    return client.get(f"/api{url}", headers=headers)


def make_team(client, name, squad=3):
    team = post(client, "/teams", {"name": name}).json()
    players = [post(client, "/players", {"team_id": team["id"], "name": f"{name} {i}"}).json()["id"]
               for i in range(1, squad + 1)]
    return team["id"], players


@pytest.fixture
def live_match(client):
    """Lions bat first in a two-over match, openers and bowler selected."""
    lions, lion_players = make_team(client, "Lions")
    tigers, tiger_players = make_team(client, "Tigers")
    match = post(client, "/matches", {"team1_id": lions, "team2_id": tigers, "match_type": "Custom", "overs": 2}).json()
    innings = post(client, f"/matches/{match['match_id']}/toss", {"winner_id": lions, "decision": "bat"}).json()["innings"]
    post(client, f"/innings/{innings['id']}/players", {
        "striker_id": lion_players[0], "non_striker_id": lion_players[1], "bowler_id": tiger_players[0],
    })
    return {
        "match_id": match["match_id"], "innings_id": innings["id"],
        "lions": lions, "tigers": tigers, "batters": lion_players, "bowlers": tiger_players,
    }


class TestErrors:
    def test_missing_identity_is_401(self, client):
        response = client.get("/api/matches")
        assert response.status_code == 401
        assert response.json()["status"] == "error"

    def test_unknown_match_is_404(self, client):
        response = get(client, "/matches/12345")
        assert response.status_code == 404
        assert response.json() == {"status": "error", "message": "Match 12345 not found"}

    def test_other_users_match_is_404(self, client, live_match):
        response = get(client, f"/matches/{live_match['match_id']}", headers={"X-User-Id": "user-2"})
        assert response.status_code == 404

    def test_validation_is_400(self, client, live_match):
        response = post(client, f"/innings/{live_match['innings_id']}/deliveries", {"runs": 12})
        assert response.status_code == 400

    def test_second_toss_is_409(self, client, live_match):
        response = post(client, f"/matches/{live_match['match_id']}/toss",
                        {"winner_id": live_match["tigers"], "decision": "bat"})
        assert response.status_code == 409

    def test_blank_team_name_is_400(self, client):
        assert post(client, "/teams", {"name": "  "}).status_code == 400


class TestScoringFlow:
    def test_record_and_read_back(self, client, live_match):
        innings_id = live_match["innings_id"]
        first = post(client, f"/innings/{innings_id}/deliveries", {"runs": 1}).json()
        assert first["status"] == "success"
        assert first["innings"]["total_runs"] == 1
        assert first["innings"]["total_overs"] == "0.1"
        assert first["striker_id"] == live_match["batters"][1]

        wide = post(client, f"/innings/{innings_id}/deliveries", {"runs": 0, "extras_type": "wd"}).json()
        assert wide["innings"]["total_runs"] == 2
        assert wide["innings"]["total_overs"] == "0.1"

        state = get(client, f"/matches/{live_match['match_id']}").json()
        assert state["status"] == "In Progress"
        inn = state["innings"][0]
        assert inn["score"]["runs"] == 2
        assert inn["score"]["overs"] == "0.1"
        assert inn["extras"]["w"] == 1
        assert [b["label"] for b in inn["recent_balls"]] == ["1wd", "1"]
        assert inn["batting"][0]["name"] == "Lions 1"
        assert inn["striker"]["name"] == "Lions 2"

        scorecard = get(client, f"/matches/{live_match['match_id']}/scorecard").json()
        assert scorecard["inning1"]["score"]["runs"] == 2

    def test_undo(self, client, live_match):
        innings_id = live_match["innings_id"]
        assert post(client, f"/innings/{innings_id}/undo_last_ball").json()["status"] == "noop"

        post(client, f"/innings/{innings_id}/deliveries", {"runs": 4})
        undo = post(client, f"/innings/{innings_id}/undo_last_ball").json()
        assert undo["status"] == "success"
        assert undo["undone"]["runs"] == 4
        assert undo["innings"]["total_runs"] == 0

    def test_swap_strike_and_rebuild(self, client, live_match):
        innings_id = live_match["innings_id"]
        swapped = post(client, f"/innings/{innings_id}/rotate_strike").json()["innings"]
        assert swapped["striker_id"] == live_match["batters"][1]

        post(client, f"/innings/{innings_id}/deliveries", {"runs": 2})
        rebuilt = post(client, f"/innings/{innings_id}/rebuild").json()["innings"]
        assert rebuilt["total_runs"] == 2

    def test_partial_player_selection_keeps_other_slots(self, client, live_match):
        innings_id = live_match["innings_id"]
        innings = post(client, f"/innings/{innings_id}/players", {"bowler_id": live_match["bowlers"][1]}).json()["innings"]
        assert innings["bowler_id"] == live_match["bowlers"][1]
        assert innings["striker_id"] == live_match["batters"][0]

    def test_full_match(self, client, live_match):
        match_id, innings_id = live_match["match_id"], live_match["innings_id"]
        post(client, f"/innings/{innings_id}/deliveries", {"runs": 6})

        brk = post(client, f"/matches/{match_id}/end_inning").json()
        assert brk["status"] == "inning_break"
        assert brk["target"] == 7

        second_id = brk["innings"]["id"]
        post(client, f"/innings/{second_id}/players", {
            "striker_id": live_match["bowlers"][0], "non_striker_id": live_match["bowlers"][1],
            "bowler_id": live_match["batters"][0],
        })
        chase = post(client, f"/innings/{second_id}/deliveries", {"runs": 7}).json()
        assert chase["status"] == "innings_over"

        result = post(client, f"/matches/{match_id}/end_match").json()
        assert result["winner_id"] == live_match["tigers"]
        assert result["result"] == "Tigers won by 10 wickets"

        # Completed is terminal
        assert post(client, f"/innings/{second_id}/deliveries", {"runs": 1}).status_code == 400

        stats = get(client, "/statistics").json()
        assert stats["top_batsmen"][0]["runs"] == 7
        assert stats["top_batsmen"][0]["player_name"] == "Tigers 1"

        player = get(client, f"/players/{live_match['batters'][0]}").json()
        assert player["batting"]["runs"] == 6
        assert player["bowling"]["runs_conceded"] == 7


class TestMatchesAndTeams:
    def test_list_and_delete_match(self, client, live_match):
        matches = get(client, "/matches").json()["matches"]
        assert [m["id"] for m in matches] == [live_match["match_id"]]

        assert client.delete(f"/api/matches/{live_match['match_id']}", headers=HEADERS).status_code == 200
        assert get(client, "/matches").json()["matches"] == []

    def test_teams_and_squads(self, client):
        lions, players = make_team(client, "Lions", squad=2)
        teams = get(client, "/teams").json()["teams"]
        assert [t["name"] for t in teams] == ["Lions"]

        squad = get(client, f"/teams/{lions}/players").json()["players"]
        assert sorted(p["id"] for p in squad) == sorted(players)

        assert client.delete(f"/api/teams/{lions}", headers=HEADERS).status_code == 200
        assert get(client, "/teams").json()["teams"] == []

    def test_player_for_unknown_team(self, client):
        assert post(client, "/players", {"team_id": 99, "name": "Nobody"}).status_code == 404

    def test_stream_requires_owned_match(self, client):
        assert get(client, "/stream/99").status_code == 404


def test_health_and_memory(client):
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/memory").json()["ram_used_mb"] > 0
