"""Tests for the Flask endpoints."""

from dataclasses import replace

import pytest

import web_game
from game import MAX_ATTEMPTS, GameController
from helpers import make_record
from player_data import ConfigurationError, LookupFailure


@pytest.fixture
def secret():
    return replace(
        make_record(),
        source_urls=("https://www.rebas.tw/player/A001", "not a url"),
    )


@pytest.fixture
def lookups():
    return {"江坤宇": make_record(name="江坤宇", team="中信兄弟")}


@pytest.fixture
def client(tmp_path, monkeypatch, secret, lookups):
    def fetch_specific(name, year):
        return lookups.get(name) or LookupFailure("無此球員", "NOT_FOUND")

    monkeypatch.setitem(web_game.GLOBAL, "controllers", {})
    monkeypatch.setitem(web_game.GLOBAL, "output_dir", str(tmp_path))
    monkeypatch.setitem(
        web_game.GLOBAL,
        "controller_factory",
        lambda: GameController(fetch_random=lambda: secret, fetch_specific=fetch_specific),
    )
    web_game.app.config["TESTING"] = True
    with web_game.app.test_client() as test_client:
        yield test_client


def _guess(client, text):
    return client.post("/guess", json={"guess": text}).get_json()


class TestPages:
    def test_index(self, client) -> None:
        response = client.get("/")

        assert response.status_code == 200
        assert "Guess The Player" in response.get_data(as_text=True)

    def test_state_before_first_round(self, client) -> None:
        state = client.get("/state").get_json()

        assert state["status"] == "loading"
        assert state["stats"] == []


class TestRound:
    def test_new_game_hides_answer(self, client) -> None:
        state = client.post("/new").get_json()

        assert state["status"] == "playing"
        assert state["year"] == "2025"
        assert state["type"] == "batter"
        assert [s["label"] for s in state["stats"]][:2] == ["wOBA", "AVG"]
        assert state["player_name"] is None
        assert state["team"] is None
        assert state["attempts_left"] == 5
        assert state["sources"] == [{"url": "https://www.rebas.tw/player/A001", "host": "www.rebas.tw"}]

    def test_wrong_guess_reveals_team(self, client) -> None:
        client.post("/new")

        state = _guess(client, "林立")

        assert state["show_team"] is True
        assert state["team"] == "統一7-ELEVEn獅"
        assert state["show_advanced"] is False
        assert state["attempts_left"] == 4
        assert state["guesses"][0]["correct"] is False

    def test_correct_guess_wins(self, client) -> None:
        client.post("/new")

        state = _guess(client, "陳 傑憲")

        assert state["status"] == "won"
        assert state["player_name"] == "陳傑憲"

    def test_blank_guess_is_ignored(self, client) -> None:
        client.post("/new")

        state = _guess(client, "   ")

        assert state["guesses"] == []

    def test_null_guess_is_ignored(self, client) -> None:
        client.post("/new")

        state = _guess(client, None)

        assert state["guesses"] == []
        assert state["attempts_left"] == MAX_ATTEMPTS

    def test_oldest_browser_is_dropped_past_the_cap(self, client, monkeypatch) -> None:
        monkeypatch.setitem(web_game.GLOBAL, "max_controllers", 2)
        client.post("/new")
        _guess(client, "林立")

        for _ in range(2):
            with web_game.app.test_client() as other:
                other.get("/state")
        state = client.get("/state").get_json()

        assert len(web_game.GLOBAL["controllers"]) == 2
        assert state["status"] == "loading"
        assert state["guesses"] == []

    def test_recent_browser_survives_the_cap(self, client, monkeypatch) -> None:
        monkeypatch.setitem(web_game.GLOBAL, "max_controllers", 2)
        client.post("/new")
        _guess(client, "林立")

        second = web_game.app.test_client()
        third = web_game.app.test_client()
        second.get("/state")
        client.get("/state")
        third.get("/state")
        state = client.get("/state").get_json()
        evicted = second.get("/state").get_json()

        assert [g["text"] for g in state["guesses"]] == ["林立"]
        assert evicted["status"] == "loading"

    def test_browsers_get_separate_rounds(self, client) -> None:
        client.post("/new")
        _guess(client, "林立")

        with web_game.app.test_client() as other:
            state = other.get("/state").get_json()

        assert state["status"] == "loading"
        assert state["guesses"] == []

    def test_error_state(self, client, monkeypatch) -> None:
        def fetch_random():
            raise ConfigurationError("no key")

        monkeypatch.setitem(web_game.GLOBAL, "controllers", {})
        monkeypatch.setitem(
            web_game.GLOBAL, "controller_factory",
            lambda: GameController(fetch_random=fetch_random),
        )

        state = client.post("/new").get_json()

        assert state["status"] == "error"
        assert state["error_message"]


class TestCompare:
    def test_compare_adds_rows(self, client) -> None:
        client.post("/new")
        _guess(client, "江坤宇")

        state = client.post("/compare", json={"index": 0}).get_json()

        rows = state["guesses"][0]["comparison"]
        assert rows[0]["label"] == "wOBA"
        assert rows[0]["pr_diff"] == 0
        assert state["guesses"][0]["error"] is None

    def test_compare_unknown_player(self, client) -> None:
        client.post("/new")
        _guess(client, "路人甲")

        state = client.post("/compare", json={"index": 0}).get_json()

        assert state["guesses"][0]["error"] == "無此球員"
        assert state["guesses"][0]["comparison"] is None
        assert state["status"] == "playing"

    def test_compare_requires_index(self, client) -> None:
        response = client.post("/compare", json={})

        assert response.status_code == 400


class TestCharts:
    def test_secret_chart(self, client) -> None:
        client.post("/new")

        response = client.get("/chart/secret.png")

        assert response.status_code == 200
        assert response.mimetype == "image/png"

    def test_secret_chart_needs_a_round(self, client) -> None:
        assert client.get("/chart/secret.png").status_code == 404

    def test_advanced_chart_unlocks_after_third_miss(self, client) -> None:
        client.post("/new")
        for name in ("林立", "王威晨"):
            _guess(client, name)
        assert client.get("/chart/advanced.png").status_code == 404

        _guess(client, "魔鷹")

        assert client.get("/chart/advanced.png").status_code == 200

    def test_guess_chart_after_compare(self, client) -> None:
        client.post("/new")
        _guess(client, "江坤宇")
        assert client.get("/chart/guess/0.png").status_code == 404

        client.post("/compare", json={"index": 0})

        assert client.get("/chart/guess/0.png").status_code == 200
        assert client.get("/chart/guess/3.png").status_code == 404
