import random

import pytest
from fastapi.testclient import TestClient

from database import MemoryStorage
from main import app, get_service
from services import CryptoPetService

USER = {"X-User-Id": "u1"}


@pytest.fixture
def client(clock):
    service = CryptoPetService(MemoryStorage(), clock=clock, rng=random.Random(7))
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def adopt(client):
    return client.post("/pet", json={"name": "Buddy", "type": "dog"}, headers=USER)


def test_root(client):
    assert client.get("/").json() == {"message": "CryptoPet Backend Running"}
    assert client.get("/test").json()["backend"] == "✅ Running"


def test_create_and_get_pet(client):
    response = adopt(client)
    assert response.status_code == 201
    pet = response.json()["pet"]
    assert pet["name"] == "Buddy"
    assert pet["mood"] == "happy"

    again = adopt(client)
    assert again.status_code == 409
    assert again.json()["detail"]["reason"] == "pet_exists"

    assert client.get("/pet", headers=USER).json()["pet"]["id"] == pet["id"]


def test_user_header_required(client):
    assert client.get("/pet").status_code == 422


def test_unknown_pet_is_404(client):
    assert client.get("/pet", headers={"X-User-Id": "ghost"}).status_code == 404


def test_bad_pet_type_is_422(client):
    response = client.post("/pet", json={"name": "Buddy", "type": "unicorn"}, headers=USER)
    assert response.status_code == 422


def test_pet_actions(client, clock):
    adopt(client)
    clock.advance(hours=10)
    fed = client.post("/pet/feed", headers=USER)
    assert fed.status_code == 200
    assert fed.json()["pet"]["hunger"] == 75.0

    assert client.post("/pet/dance", headers=USER).status_code == 404

    clock.advance(hours=20)
    tired = client.post("/pet/play", headers=USER)
    assert tired.status_code == 409
    assert tired.json()["detail"]["reason"] == "insufficient_energy"


def test_revive_and_equip(client, clock):
    adopt(client)
    refused = client.post("/pet/revive", json={}, headers=USER)
    assert refused.json()["detail"]["reason"] == "pet_alive"

    clock.advance(hours=120)
    revived = client.post("/pet/revive", json={"use_free_revival": True}, headers=USER)
    assert revived.status_code == 200
    assert revived.json()["revival_type"] == "free"
    assert revived.json()["pet"]["health"] == 50.0

    equipped = client.post("/pet/equip", json={"item_id": "skin-space", "item_type": "skin"}, headers=USER)
    assert equipped.json()["pet"]["equipped_skin"] == "skin-space"


def test_module_catalog(client):
    modules = client.get("/missions/modules").json()["modules"]
    assert [m["id"] for m in modules] == ["wallet-basics", "first-transaction", "defi-intro"]
    assert modules[0]["lessons_count"] == 3
    assert "lessons" not in modules[0]

    detail = client.get("/missions/modules/wallet-basics").json()["module"]
    assert len(detail["lessons"]) == 3
    assert all("correct_index" not in q for q in detail["quiz"]["questions"])

    assert client.get("/missions/modules/nope").status_code == 404


def test_learning_flow(client):
    adopt(client)
    locked = client.post("/missions/submit-quiz", json={"module_id": "wallet-basics", "answers": [0, 2, 2]},
                         headers=USER)
    assert locked.status_code == 409
    assert locked.json()["detail"]["reason"] == "quiz_locked"

    for lesson_id in ("wb-1", "wb-2", "wb-3"):
        done = client.post("/missions/complete-lesson", json={"module_id": "wallet-basics", "lesson_id": lesson_id},
                           headers=USER)
        assert done.json()["xp_gained"] == 20
        assert not done.json()["already_completed"]
    assert done.json()["quiz_unlocked"]

    quiz = client.post("/missions/submit-quiz", json={"module_id": "wallet-basics", "answers": [0, 2, 2]},
                       headers=USER).json()
    assert quiz["passed"]
    assert quiz["score"] == 100
    assert quiz["badge"]["tx"]["success"]

    progress = client.get("/missions/progress", headers=USER).json()["progress"]
    assert progress[0]["stage"] == "completed"

    badges = client.get("/rewards/badges", headers=USER).json()["badges"]
    assert [b["id"] for b in badges] == ["badge-wallet-master"]

    again = client.post("/rewards/mint-badge", json={"module_id": "wallet-basics"}, headers=USER)
    assert again.json()["detail"]["reason"] == "badge_already_minted"


def test_unknown_lesson_is_404(client):
    response = client.post("/missions/complete-lesson", json={"module_id": "wallet-basics", "lesson_id": "zz"},
                           headers=USER)
    assert response.status_code == 404


def test_wrong_answer_count_is_400(client):
    for lesson_id in ("wb-1", "wb-2", "wb-3"):
        client.post("/missions/complete-lesson", json={"module_id": "wallet-basics", "lesson_id": lesson_id},
                    headers=USER)
    response = client.post("/missions/submit-quiz", json={"module_id": "wallet-basics", "answers": [0]},
                           headers=USER)
    assert response.status_code == 400


def test_games(client):
    adopt(client)
    assert client.get("/games").json()["games"][0]["id"] == "crypto-quiz"

    start = client.post("/games/crypto-quiz/start", headers=USER).json()
    assert start["plays_today"] == 1
    assert start["max_plays"] == 3
    assert len(start["questions"]) == 10
    assert "correct_index" not in start["questions"][0]

    answers = [{"question_id": q["id"], "answer_index": 0, "time_left": 10} for q in start["questions"]]
    finished = client.post("/games/crypto-quiz/finish", json={"answers": answers}, headers=USER).json()
    assert finished["session"]["score"] == 2850
    assert finished["is_new_high"]

    stats = client.get("/games/stats", headers=USER).json()["stats"]
    assert stats["high_scores"] == {"crypto-quiz": 2850}

    client.post("/games/crypto-quiz/start", headers=USER)
    client.post("/games/crypto-quiz/start", headers=USER)
    limited = client.post("/games/crypto-quiz/start", headers=USER)
    assert limited.status_code == 409
    assert limited.json()["detail"]["reason"] == "daily_limit_reached"

    assert client.post("/games/trading-sim/start", headers=USER).status_code == 404


def test_finish_needs_a_started_game(client):
    adopt(client)
    answers = [{"question_id": "b1", "answer_index": 0, "time_left": 15}] * 10
    refused = client.post("/games/crypto-quiz/finish", json={"answers": answers}, headers=USER)
    assert refused.status_code == 409
    assert refused.json()["detail"]["reason"] == "no_active_session"
    assert client.get("/pet", headers=USER).json()["pet"]["xp"] == 0

    start = client.post("/games/crypto-quiz/start", headers=USER).json()
    wrong = [{"question_id": start["questions"][0]["id"], "answer_index": 0, "time_left": 15}] * 10
    mismatch = client.post("/games/crypto-quiz/finish", json={"answers": wrong}, headers=USER)
    assert mismatch.json()["detail"]["reason"] == "session_mismatch"


def test_claim_daily(client, clock):
    adopt(client)
    first = client.post("/rewards/claim-daily", headers=USER)
    assert first.status_code == 200
    assert first.json()["xp_gained"] == 10
    assert first.json()["streak"] == 1

    again = client.post("/rewards/claim-daily", headers=USER)
    assert again.status_code == 409
    assert again.json()["detail"]["reason"] == "already_claimed"

    clock.advance(days=1)
    assert client.post("/rewards/claim-daily", headers=USER).json()["streak"] == 2


def test_leaderboard(client):
    adopt(client)
    client.post("/missions/complete-lesson", json={"module_id": "wallet-basics", "lesson_id": "wb-1"},
                headers=USER)
    client.post("/pet", json={"name": "Rex", "type": "cat"}, headers={"X-User-Id": "u2"})

    board = client.get("/rewards/leaderboard").json()
    assert board["type"] == "xp"
    assert [(e["rank"], e["name"], e["value"]) for e in board["leaderboard"]] == [(1, "Buddy", 20), (2, "Rex", 0)]
    assert board["current_user"] is None

    mine = client.get("/rewards/leaderboard", params={"limit": 1}, headers={"X-User-Id": "u2"}).json()
    assert len(mine["leaderboard"]) == 1
    assert mine["current_user"]["rank"] == 2

    assert client.get("/rewards/leaderboard", params={"type": "badges"}).status_code == 422
