import logging
import re
import time
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import OperationalError
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware

from . import crud, leaderboard, sessions
from .clock import ms_to_iso, today_str
from .config import settings
from .deps import get_clock, get_player_id, get_session, require_player
from .errors import ApiError, ErrorKind, Outcome
from .logging_utils import get_logger, request_id_ctx, setup_logging


_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_USERNAME_RE = re.compile(r'^[a-zA-Z0-9_-]+$')

# Rate limiting - request times per (client IP, path)
_RATE_LIMIT_STORE: dict = {}


def check_rate_limit(request: Request, max_requests: int, window_seconds: int = 60) -> bool:
    """In-memory sliding window per client IP and path. Returns False when the caller is over the limit."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"{client_ip}:{request.url.path}"
    now = time.time()
    cutoff = now - window_seconds
    recent = [t for t in _RATE_LIMIT_STORE.get(key, []) if t > cutoff]
    if len(recent) >= max_requests:
        _RATE_LIMIT_STORE[key] = recent
        return False
    recent.append(now)
    _RATE_LIMIT_STORE[key] = recent
    return True


def rate_limit_dependency(max_requests: Optional[int] = None, window_seconds: int = 60):
    """Create a dependency function that raises HTTP 429 if rate limited"""
    def dependency(request: Request):
        limit = max_requests or settings.RATE_LIMIT_PER_MINUTE
        if not check_rate_limit(request, limit, window_seconds):
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds."
            )
    return dependency


setup_logging(getattr(logging, settings.LOG_LEVEL, logging.INFO))
logger = get_logger("dailyemoji")
app = FastAPI(title="Daily Emoji")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(rid)
        start = time.time()
        response = None
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        except Exception:
            logger.exception("request_error", extra={"path": str(request.url), "method": request.method})
            raise
        finally:
            logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": getattr(response, "status_code", 500),
                    "duration_ms": int((time.time() - start) * 1000),
                    "client": request.client.host if request.client else "-",
                    "user_agent": request.headers.get("user-agent", "-"),
                },
            )
            request_id_ctx.reset(token)


app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Accept", "Content-Type", "Authorization", "X-Requested-With", "X-Request-ID"],
)


def _error_response(error: ErrorKind, status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error.value, "detail": detail},
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return _error_response(exc.error, exc.status_code, exc.message)


@app.exception_handler(OperationalError)
async def store_error_handler(request: Request, exc: OperationalError):
    logger.warning("store_unavailable", extra={"path": request.url.path, "error": str(exc)})
    return _error_response(ErrorKind.STORE_UNAVAILABLE, 503, "session store unavailable, retry")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("validation_error", extra={"method": request.method, "url": str(request.url), "errors": exc.errors()})
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "message": "Input validation failed"},
    )


@app.on_event("startup")
def on_startup():
    from .init_db import init_db
    from .migrations import run_migrations

    if crud.engine is not None:
        return
    engine = init_db(settings.DATABASE_URL)
    try:
        run_migrations(engine)
    except Exception as e:
        logger.warning("migrations_failed", extra={"error": str(e)})
    crud.engine = engine


@app.get("/health", include_in_schema=False)
def health():
    return JSONResponse({"status": "ok"})


def _validate_date_param(date: Optional[str]) -> str:
    if not date:
        return today_str()
    if not _DATE_RE.match(date):
        raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD")
    return date


def _resolve_puzzle(session: Session, date: Optional[str]):
    actual_date = _validate_date_param(date)
    puzzle = crud.get_puzzle_by_date(session, actual_date)
    if puzzle is None:
        raise ApiError(ErrorKind.NOT_FOUND, f"no puzzle for {actual_date}")
    return puzzle


def _unwrap(outcome: Outcome):
    if not outcome.success:
        raise ApiError.from_outcome(outcome)
    return outcome.value


class PlayerCreate(BaseModel):
    username: Optional[str] = Field(None, max_length=24)

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if len(v) < 3:
            raise ValueError('Username must be at least 3 characters')
        if not _USERNAME_RE.match(v):
            raise ValueError('Username can only contain letters, numbers, underscore, and hyphen')
        return v


class DateRequest(BaseModel):
    date: Optional[str] = Field(None, pattern=r'^(\d{4}-\d{2}-\d{2})?$')


class GuessRequest(DateRequest):
    guess: str = Field(..., min_length=1, max_length=200)
    # shown by the client's optimistic timer; never used for scoring
    client_penalty_ms: Optional[int] = Field(None, ge=0)


@app.post("/api/player", status_code=201)
def create_player(
    body: PlayerCreate,
    response: Response,
    session: Session = Depends(get_session),
    _: None = Depends(rate_limit_dependency(max_requests=5, window_seconds=300)),
):
    p = crud.create_player(session, body.username)
    if not p or p.id is None:
        raise HTTPException(status_code=400, detail="username exists")
    token = crud.sign_player_token(session, p.id)
    response.set_cookie('player_token', token or '', httponly=True, samesite='lax')
    return {"id": p.id, "username": p.username, "player_token": token}


@app.get("/api/puzzle")
def get_puzzle(date: str = "", session: Session = Depends(get_session)):
    puzzle = _resolve_puzzle(session, date)
    return {
        "puzzle_id": puzzle.id,
        "date": puzzle.game_date,
        "emojis": crud.puzzle_emojis(puzzle),
        "hint_count": len(crud.puzzle_hints(puzzle)),
    }


def _state_payload(state: sessions.SessionState) -> dict:
    if isinstance(state, sessions.NoSession):
        return {"status": "idle"}
    payload = {
        "status": "solved" if isinstance(state, sessions.Solved) else "started",
        "start_ts": ms_to_iso(state.started_at_ms),
        "started_at_ms": state.started_at_ms,
        "hints_revealed": state.hints_revealed,
        "penalty_ms": state.penalty_ms,
    }
    if isinstance(state, sessions.Solved):
        payload.update({
            "duration_ms": state.duration_ms,
            "final_score_ms": state.final_score_ms,
            "solved_at": ms_to_iso(state.solved_at_ms),
        })
    return payload


@app.get("/api/session")
def get_current_session(
    date: str = "",
    session: Session = Depends(get_session),
    player_id: int = Depends(require_player),
):
    """Current session for the day, used by the client to resume its timer after a reload."""
    puzzle = _resolve_puzzle(session, date)
    view = _unwrap(sessions.get_state(session, player_id, puzzle.id))
    payload = {"success": True, "puzzle_id": puzzle.id, "date": puzzle.game_date}
    payload.update(_state_payload(view.state))
    payload["revealed_hints"] = view.revealed_hints
    payload["hint_count"] = view.hint_count
    return payload


@app.post("/api/start")
def start_session(
    body: DateRequest,
    session: Session = Depends(get_session),
    player_id: int = Depends(require_player),
    clock=Depends(get_clock),
    _: None = Depends(rate_limit_dependency()),
):
    puzzle = _resolve_puzzle(session, body.date)
    result = _unwrap(sessions.start(session, player_id, puzzle.id, clock=clock))
    return {
        "success": True,
        "puzzle_id": puzzle.id,
        "date": puzzle.game_date,
        "start_ts": ms_to_iso(result.started_at_ms),
        "started_at_ms": result.started_at_ms,
        "penalty_ms": result.penalty_ms,
        "hints_revealed": result.hints_revealed,
        "resumed": result.resumed,
    }


@app.post("/api/hint")
def reveal_hint(
    body: DateRequest,
    session: Session = Depends(get_session),
    player_id: int = Depends(require_player),
    _: None = Depends(rate_limit_dependency()),
):
    puzzle = _resolve_puzzle(session, body.date)
    result = _unwrap(sessions.reveal_hint(session, player_id, puzzle.id))
    return {
        "success": True,
        "hint": result.hint,
        "hints_revealed": result.hints_revealed,
        "cost_ms": result.cost_ms,
        "penalty_ms": result.penalty_ms,
    }


@app.post("/api/guess")
def submit_guess(
    body: GuessRequest,
    session: Session = Depends(get_session),
    player_id: int = Depends(require_player),
    clock=Depends(get_clock),
    _: None = Depends(rate_limit_dependency()),
):
    puzzle = _resolve_puzzle(session, body.date)
    result = _unwrap(sessions.submit_guess(
        session, player_id, puzzle.id, body.guess, body.client_penalty_ms, clock=clock,
    ))
    if not result.correct:
        return {"success": True, "correct": False, "penalty_ms": result.penalty_ms}
    return {
        "success": True,
        "correct": True,
        "duration_ms": result.duration_ms,
        "penalty_ms": result.penalty_ms,
        "final_score_ms": result.final_score_ms,
        "rank": leaderboard.rank_of(session, player_id, puzzle.id),
    }


@app.get("/api/leaderboard")
def get_leaderboard(
    date: str = "",
    limit: int = 10,
    session: Session = Depends(get_session),
    _: None = Depends(rate_limit_dependency()),
):
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="Limit must be between 1 and 100")
    puzzle = _resolve_puzzle(session, date)
    leaders = leaderboard.top_n(session, puzzle.id, limit)
    return {"date": puzzle.game_date, "puzzle_id": puzzle.id, "leaders": [e.to_dict() for e in leaders]}


@app.get("/api/rank")
def get_rank(
    date: str = "",
    session: Session = Depends(get_session),
    player_id: int = Depends(require_player),
):
    puzzle = _resolve_puzzle(session, date)
    return {"date": puzzle.game_date, "rank": leaderboard.rank_of(session, player_id, puzzle.id)}


@app.get("/api/stats")
def get_stats(date: str = "", session: Session = Depends(get_session)):
    puzzle = _resolve_puzzle(session, date)
    stats = leaderboard.aggregate_stats(session, puzzle.id)
    return {
        "date": puzzle.game_date,
        "count": stats.count,
        "average_score_ms": stats.average_score_ms,
        "best_score_ms": stats.best_score_ms,
    }


@app.get("/api/history")
def get_history(session: Session = Depends(get_session), player_id: int = Depends(require_player)):
    return leaderboard.player_history(session, player_id)


@app.get("/api/archive")
def get_archive(session: Session = Depends(get_session), player_id: Optional[int] = Depends(get_player_id)):
    return {"puzzles": leaderboard.archive(session, player_id, today_str())}
