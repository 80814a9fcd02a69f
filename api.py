import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt

import settings
from ledger.wagering import WageringService
from race_game.lifecycle import RaceDirector


class BetRequest(BaseModel):
    user: str
    # Older clients send the entrant index as "horse".
    slot: StrictInt = Field(validation_alias=AliasChoices("slot", "horse"))
    amount: StrictInt


class FinishRequest(BaseModel):
    winner: StrictInt
    race_id: Optional[StrictInt] = Field(default=None, alias="raceId")

    model_config = ConfigDict(populate_by_name=True)


def serialize_race(race: Optional[dict]):
    if race is None:
        return None
    return {
        "id": race["id"],
        "trackLength": race["track_length"],
        "status": race["status"],
        "winnerSlot": race.get("winner_slot"),
        "createdAt": race.get("created_at"),
        "startedAt": race.get("started_at"),
        "finishedAt": race.get("finished_at"),
    }


def failure(error: str) -> JSONResponse:
    status = 503 if error == "ledger_unavailable" else 400
    return JSONResponse(status_code=status, content={"ok": False, "error": error})


def create_app(wagering: WageringService = None, director: RaceDirector = None,
               run_loop: bool = None) -> FastAPI:
    """
    Builds the game API. With `run_loop` (default: DERBY_RUN_RACE_LOOP) the
    race director runs for the lifetime of the app.
    """
    wagering = wagering or WageringService()
    run_loop = settings.RUN_RACE_LOOP if run_loop is None else run_loop
    if director is None and run_loop:
        director = RaceDirector(wagering)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if director is not None and run_loop:
            logging.info("Starting the race director.")
            task = asyncio.create_task(director.run())
        yield
        if task is not None:
            director.stop()
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    app = FastAPI(title="Emoji Derby API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        error = "bad_winner" if request.url.path == "/race/finish" else "bad_input"
        return failure(error)

    @app.post("/race/new")
    def new_race():
        outcome = wagering.new_race()
        if not outcome.ok:
            return failure(outcome.error)
        return {"ok": True, "raceId": outcome.value["race"]["id"], "created": outcome.value["created"]}

    @app.get("/race/open")
    def open_race():
        outcome = wagering.open_race()
        if not outcome.ok:
            return failure(outcome.error)
        return {
            "ok": True,
            "race": serialize_race(outcome.value["race"]),
            "entrants": outcome.value["entrants"],
            "pools": outcome.value["pools"],
        }

    @app.post("/bet")
    def place_bet(payload: BetRequest):
        outcome = wagering.place_bet(payload.user, payload.slot, payload.amount)
        if not outcome.ok:
            return failure(outcome.error)
        return {"ok": True, "balance": outcome.value}

    @app.post("/race/start")
    def start_race():
        outcome = wagering.start_race()
        if not outcome.ok:
            return failure(outcome.error)
        return {"ok": True, "raceId": outcome.value}

    @app.post("/race/finish")
    def finish_race(payload: FinishRequest):
        outcome = wagering.settle(payload.winner, payload.race_id)
        if not outcome.ok:
            return failure(outcome.error)
        return {
            "ok": True,
            "raceId": outcome.value["race_id"],
            "result": outcome.value["summary"].to_dict(),
        }

    @app.get("/leaderboard")
    def leaderboard():
        outcome = wagering.leaderboard()
        if not outcome.ok:
            return failure(outcome.error)
        return {"ok": True, "players": outcome.value}

    @app.get("/balance")
    def balance(user: Optional[str] = Query(default=None)):
        outcome = wagering.balance(user)
        if not outcome.ok:
            return failure(outcome.error)
        return {"ok": True, "name": outcome.value["name"], "balance": outcome.value["balance"]}

    @app.get("/race/snapshot")
    def race_snapshot():
        if director is None:
            return JSONResponse(status_code=404, content={"ok": False, "error": "no_director"})
        return {"ok": True, "snapshot": director.snapshot.to_dict()}

    @app.get("/health")
    def health():
        return {"ok": True, "stage": director.stage.value if director is not None else None}

    return app


app = create_app()
