import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from catalog import MODULES, get_module
from database import DATABASE_NAME, DATABASE_URL, db, default_storage
from errors import AdapterFailure, NotFound, ValidationError
from schemas import ItemType, LeaderboardType, Outcome, PetType
from services import CryptoPetService

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="CryptoPet API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

service = CryptoPetService(default_storage())


def get_service() -> CryptoPetService:
    return service


# No real auth: the client names its user
def current_user(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    if not x_user_id.strip():
        raise HTTPException(400, "X-User-Id header is empty")
    return x_user_id.strip()


def check(outcome: Outcome):
    if not outcome.ok:
        raise HTTPException(409, {"reason": outcome.reason.value, "message": outcome.message})


@app.exception_handler(NotFound)
def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(AdapterFailure)
def adapter_handler(request: Request, exc: AdapterFailure):
    logger.error("Adapter failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "storage unavailable"})


@app.get("/")
def read_root():
    return {"message": "CryptoPet Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "⚠️  In-memory storage",
        "database_url": "✅ Set" if DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if DATABASE_NAME else "❌ Not Set",
        "collections": [],
    }
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# Pet
class PetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=20)
    type: PetType


class ReviveRequest(BaseModel):
    use_free_revival: bool = True


class EquipRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    item_type: ItemType


@app.get("/pet")
def get_pet(user_id: str = Depends(current_user), svc: CryptoPetService = Depends(get_service)):
    return {"pet": svc.get_pet(user_id)}


@app.post("/pet", status_code=201)
def create_pet(payload: PetCreate, user_id: str = Depends(current_user),
               svc: CryptoPetService = Depends(get_service)):
    outcome, pet = svc.create_pet(user_id, payload.name, payload.type)
    check(outcome)
    return {"success": True, "pet": pet}


@app.post("/pet/revive")
def revive_pet(payload: ReviveRequest, user_id: str = Depends(current_user),
               svc: CryptoPetService = Depends(get_service)):
    outcome, pet = svc.revive(user_id, payload.use_free_revival)
    check(outcome)
    return {"success": True, "pet": pet, "revival_type": "free" if payload.use_free_revival else "token"}


@app.post("/pet/equip")
def equip(payload: EquipRequest, user_id: str = Depends(current_user),
          svc: CryptoPetService = Depends(get_service)):
    outcome, pet = svc.equip(user_id, payload.item_id, payload.item_type)
    check(outcome)
    return {"success": True, "equipped": {"item_id": payload.item_id, "item_type": payload.item_type}, "pet": pet}


@app.post("/pet/{action}")
def pet_action(action: str, user_id: str = Depends(current_user), svc: CryptoPetService = Depends(get_service)):
    actions = {"feed": svc.feed, "play": svc.play, "rest": svc.rest, "heal": svc.heal}
    if action not in actions:
        raise HTTPException(404, f"Unknown action: {action}")
    outcome, pet = actions[action](user_id)
    check(outcome)
    return {"success": True, "pet": pet}


# Learning missions
class LessonComplete(BaseModel):
    module_id: str
    lesson_id: str


class QuizSubmit(BaseModel):
    module_id: str
    answers: List[int] = Field(..., description="Chosen option index per question, in order")


class PracticeComplete(BaseModel):
    module_id: str
    validated: bool = Field(..., description="Verdict of the transaction verifier")
    tx_hash: Optional[str] = None


class BadgeMint(BaseModel):
    module_id: str


@app.get("/missions/modules")
def list_modules():
    return {
        "modules": [
            {**m.model_dump(exclude={"lessons", "quiz", "practice_task"}), "lessons_count": len(m.lessons)}
            for m in sorted(MODULES, key=lambda m: m.order)
        ]
    }


@app.get("/missions/modules/{module_id}")
def module_detail(module_id: str):
    module = get_module(module_id)
    data = module.model_dump(exclude={"quiz"})
    # Answers stay on the server
    data["quiz"] = {"id": module.quiz.id, "questions": [
        q.model_dump(exclude={"correct_index", "explanation"}) for q in module.quiz.questions
    ]}
    return {"module": data}


@app.get("/missions/progress")
def get_progress(user_id: str = Depends(current_user), svc: CryptoPetService = Depends(get_service)):
    return {"progress": svc.overview(user_id)}


@app.post("/missions/complete-lesson")
def complete_lesson(payload: LessonComplete, user_id: str = Depends(current_user),
                    svc: CryptoPetService = Depends(get_service)):
    result = svc.complete_lesson(user_id, payload.module_id, payload.lesson_id)
    check(result.outcome)
    return {"success": True, **result.model_dump(exclude={"outcome"}), "already_completed": not result.outcome.changed}


@app.post("/missions/submit-quiz")
def submit_quiz(payload: QuizSubmit, user_id: str = Depends(current_user),
                svc: CryptoPetService = Depends(get_service)):
    result = svc.submit_quiz(user_id, payload.module_id, payload.answers)
    check(result.outcome)
    return {"success": True, **result.model_dump(exclude={"outcome"})}


@app.post("/missions/complete-practice")
def complete_practice(payload: PracticeComplete, user_id: str = Depends(current_user),
                      svc: CryptoPetService = Depends(get_service)):
    result = svc.complete_practice(user_id, payload.module_id, payload.validated, payload.tx_hash)
    check(result.outcome)
    return {"success": True, **result.model_dump(exclude={"outcome"})}


# Rewards
@app.post("/rewards/mint-badge")
def mint_badge(payload: BadgeMint, user_id: str = Depends(current_user),
               svc: CryptoPetService = Depends(get_service)):
    result = svc.mint_badge(user_id, payload.module_id)
    check(result.outcome)
    # A failed chain call is reported, the local badge stays earned
    return {"success": bool(result.tx and result.tx.success), "badge_id": result.badge_id, "tx": result.tx}


@app.get("/rewards/badges")
def list_badges(user_id: str = Depends(current_user), svc: CryptoPetService = Depends(get_service)):
    return {"badges": svc.badges(user_id)}


@app.post("/rewards/claim-daily")
def claim_daily(user_id: str = Depends(current_user), svc: CryptoPetService = Depends(get_service)):
    result = svc.claim_daily(user_id)
    check(result.outcome)
    return {"success": True, **result.model_dump(exclude={"outcome"})}


@app.get("/rewards/leaderboard")
def leaderboard(type: LeaderboardType = "xp", limit: int = Query(10, ge=1, le=100),
                x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
                svc: CryptoPetService = Depends(get_service)):
    board = svc.leaderboard(type, limit, user_id=(x_user_id or "").strip() or None)
    return {"type": board.type, "leaderboard": board.entries, "current_user": board.current_user}


# Minigames
class GameAnswer(BaseModel):
    question_id: str
    answer_index: Optional[int] = Field(None, description="None when the timer ran out")
    time_left: float = Field(0, ge=0)


class GameFinish(BaseModel):
    answers: List[GameAnswer] = Field(..., min_length=1)


@app.get("/games")
def list_games(svc: CryptoPetService = Depends(get_service)):
    return {"games": list(svc.games.values())}


@app.get("/games/stats")
def game_stats(user_id: str = Depends(current_user), svc: CryptoPetService = Depends(get_service)):
    return {"stats": svc.game_stats(user_id)}


@app.post("/games/{game_id}/start")
def start_game(game_id: str, user_id: str = Depends(current_user), svc: CryptoPetService = Depends(get_service)):
    result = svc.start_game(user_id, game_id)
    check(result.outcome)
    config = svc.games[game_id]
    return {
        "success": True,
        "plays_today": result.plays_today,
        "max_plays": config.max_plays,
        "time_per_question": config.time_per_question,
        "questions": [q.model_dump(exclude={"correct_index", "explanation"}) for q in result.questions],
    }


@app.post("/games/{game_id}/finish")
def finish_game(game_id: str, payload: GameFinish, user_id: str = Depends(current_user),
                svc: CryptoPetService = Depends(get_service)):
    result = svc.finish_game(
        user_id,
        game_id,
        [a.question_id for a in payload.answers],
        [(a.answer_index, a.time_left) for a in payload.answers],
    )
    check(result.outcome)
    return {"success": True, **result.model_dump(exclude={"outcome"})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
