import random
import pytest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from api import create_app
from ledger.wagering import Outcome, WageringService
from race_game.lifecycle import RaceDirector

# --- Fixtures ---

@pytest.fixture
def service(ledger_db):
    return WageringService(house_cut=0.1, entrants=2, track_length_range=(100, 100), rng=random.Random(1))


@pytest.fixture
def client(service):
    return TestClient(create_app(wagering=service, run_loop=False))


# --- Race Endpoints ---

def test_open_race_when_none(client):
    response = client.get("/race/open")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "race": None, "entrants": [], "pools": {}}


def test_new_race_and_open(client):
    created = client.post("/race/new").json()
    assert created["ok"] and created["created"]

    again = client.post("/race/new").json()
    assert again["raceId"] == created["raceId"]
    assert not again["created"]

    body = client.get("/race/open").json()
    assert body["race"]["id"] == created["raceId"]
    assert body["race"]["trackLength"] == 100
    assert body["race"]["status"] == "open"
    assert [e["slot"] for e in body["entrants"]] == [0, 1]


def test_full_round_over_http(client):
    client.post("/race/new")
    assert client.post("/bet", json={"user": "A", "slot": 0, "amount": 100}).json() == {"ok": True, "balance": 900}
    assert client.post("/bet", json={"user": "B", "horse": 1, "amount": 100}).json() == {"ok": True, "balance": 900}
    assert client.get("/race/open").json()["pools"] == {"0": 100, "1": 100}

    started = client.post("/race/start").json()
    assert started["ok"]

    late = client.post("/bet", json={"user": "A", "slot": 0, "amount": 10})
    assert late.status_code == 400
    assert late.json() == {"ok": False, "error": "no_open_race"}

    finished = client.post("/race/finish", json={"winner": 0}).json()
    assert finished == {
        "ok": True,
        "raceId": started["raceId"],
        "result": {
            "totalPool": 200,
            "afterHouse": 180,
            "winnerPool": 100,
            "payouts": [{"name": "A", "amount": 180}],
        },
    }

    again = client.post("/race/finish", json={"winner": 0, "raceId": started["raceId"]})
    assert again.json() == {"ok": False, "error": "already_settled"}

    assert client.get("/balance", params={"user": "A"}).json() == {"ok": True, "name": "A", "balance": 1080}
    board = client.get("/leaderboard").json()
    assert board["players"][:2] == [{"name": "A", "balance": 1080}, {"name": "B", "balance": 900}]


# --- Validation ---

@pytest.mark.parametrize("body", [
    {"user": "A", "slot": 0, "amount": 0},
    {"user": "A", "slot": 0, "amount": -10},
    {"user": "A", "slot": 0, "amount": "100"},
    {"user": "A", "slot": 5, "amount": 10},
    {"user": "A", "amount": 10},
    {"slot": 0, "amount": 10},
])
def test_bad_bets(client, body):
    client.post("/race/new")
    response = client.post("/bet", json=body)
    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "bad_input"}


def test_bad_winner(client):
    client.post("/race/new")
    client.post("/race/start")
    for body in ({}, {"winner": "first"}, {"winner": 7}, {"winner": -1}):
        response = client.post("/race/finish", json=body)
        assert response.json() == {"ok": False, "error": "bad_winner"}


def test_start_and_finish_without_race(client):
    assert client.post("/race/start").json() == {"ok": False, "error": "no_open_race"}
    assert client.post("/race/finish", json={"winner": 0}).json() == {"ok": False, "error": "no_racing_race"}


def test_balance_requires_user(client):
    response = client.get("/balance")
    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "missing_user"}


def test_balance_creates_player(client):
    assert client.get("/balance", params={"user": "Newcomer"}).json()["balance"] == 1000


# --- Infrastructure ---

def test_ledger_unavailable_is_503():
    wagering = MagicMock()
    wagering.leaderboard.return_value = Outcome.failure("ledger_unavailable")
    client = TestClient(create_app(wagering=wagering, run_loop=False))

    response = client.get("/leaderboard")
    assert response.status_code == 503
    assert response.json() == {"ok": False, "error": "ledger_unavailable"}


def test_snapshot_and_health(service):
    client = TestClient(create_app(wagering=service, run_loop=False))
    assert client.get("/race/snapshot").status_code == 404
    assert client.get("/health").json() == {"ok": True, "stage": None}

    director = RaceDirector(service)
    client = TestClient(create_app(wagering=service, director=director, run_loop=False))
    snapshot = client.get("/race/snapshot").json()["snapshot"]
    assert snapshot["stage"] == "loading"
    assert snapshot["raceId"] is None
    assert client.get("/health").json() == {"ok": True, "stage": "loading"}
