"""Session lifecycle for a player's attempt at a daily puzzle.

    idle --start--> started --reveal_hint (<= 3)--> started --submit(correct)--> solved

An incorrect guess leaves a started session untouched. Every write is a
conditional statement against the play row, so duplicate or concurrent calls
observe whichever call won instead of overwriting it.
"""
import functools
from dataclasses import dataclass, field
from typing import List, Optional, Union

from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlmodel import Session

from . import crud, models, scoring
from .clock import default_clock
from .errors import ErrorKind, Outcome
from .logging_utils import get_logger

logger = get_logger("dailyemoji.sessions")

# attempts at a conditional write before giving up on a contended row
_WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class NoSession:
    pass


@dataclass(frozen=True)
class Started:
    play_id: str
    started_at_ms: int
    hints_revealed: int
    penalty_ms: int


@dataclass(frozen=True)
class Solved:
    play_id: str
    started_at_ms: int
    hints_revealed: int
    penalty_ms: int
    duration_ms: int
    final_score_ms: int
    solved_at_ms: int


SessionState = Union[NoSession, Started, Solved]


def state_of(play: Optional[models.Play]) -> SessionState:
    if play is None:
        return NoSession()
    if play.status == models.STATUS_SOLVED:
        return Solved(
            play_id=play.id,
            started_at_ms=play.started_at_ms,
            hints_revealed=play.hints_revealed,
            penalty_ms=play.penalty_ms,
            duration_ms=play.duration_ms or 0,
            final_score_ms=play.final_score_ms or 0,
            solved_at_ms=play.solved_at_ms or 0,
        )
    return Started(
        play_id=play.id,
        started_at_ms=play.started_at_ms,
        hints_revealed=play.hints_revealed,
        penalty_ms=play.penalty_ms,
    )


@dataclass(frozen=True)
class StartResult:
    started_at_ms: int
    penalty_ms: int
    hints_revealed: int
    resumed: bool


@dataclass(frozen=True)
class HintResult:
    penalty_ms: int
    hints_revealed: int
    cost_ms: int
    hint: str


@dataclass(frozen=True)
class SubmitResult:
    correct: bool
    penalty_ms: int
    duration_ms: Optional[int] = None
    final_score_ms: Optional[int] = None


@dataclass(frozen=True)
class SessionView:
    state: SessionState
    revealed_hints: List[str] = field(default_factory=list)
    hint_count: int = 0


def _store_guard(fn):
    """Turn database outages into a StoreUnavailable outcome."""

    @functools.wraps(fn)
    def wrapper(db: Session, player_id: int, puzzle_id: int, *args, **kwargs):
        try:
            return fn(db, player_id, puzzle_id, *args, **kwargs)
        except (OperationalError, PoolTimeoutError) as exc:
            db.rollback()
            logger.warning(
                "store_unavailable",
                extra={"player_id": player_id, "puzzle_id": puzzle_id, "error": str(exc)},
            )
            return Outcome.fail(ErrorKind.STORE_UNAVAILABLE, "session store unavailable, retry")

    return wrapper


@_store_guard
def start(db: Session, player_id: int, puzzle_id: int, clock=default_clock) -> Outcome:
    """Start the player's session, or resume the running one unchanged."""
    if crud.get_puzzle(db, puzzle_id) is None:
        return Outcome.fail(ErrorKind.NOT_FOUND, "puzzle not found")

    try:
        play, created = crud.insert_play_if_absent(db, player_id, puzzle_id, clock.now_ms())
    except IntegrityError as exc:
        # not the (player, puzzle) conflict, e.g. a player row that no longer exists
        db.rollback()
        logger.warning(
            "play_insert_rejected",
            extra={"player_id": player_id, "puzzle_id": puzzle_id, "error": str(exc)},
        )
        return Outcome.fail(ErrorKind.NOT_FOUND, "player not found")
    state = state_of(play)
    if isinstance(state, Solved):
        return Outcome.fail(ErrorKind.ALREADY_SOLVED, "already played")

    logger.info(
        "play_started" if created else "play_resumed",
        extra={"player_id": player_id, "puzzle_id": puzzle_id, "play_id": state.play_id},
    )
    return Outcome.ok(StartResult(
        started_at_ms=state.started_at_ms,
        penalty_ms=state.penalty_ms,
        hints_revealed=state.hints_revealed,
        resumed=not created,
    ))


@_store_guard
def reveal_hint(db: Session, player_id: int, puzzle_id: int) -> Outcome:
    """Reveal the next hint and charge its fixed cost to the session."""
    puzzle = crud.get_puzzle(db, puzzle_id)
    if puzzle is None:
        return Outcome.fail(ErrorKind.NOT_FOUND, "puzzle not found")
    hints = crud.puzzle_hints(puzzle)
    cap = min(scoring.MAX_HINTS, len(hints))

    for _ in range(_WRITE_ATTEMPTS):
        state = state_of(crud.get_play(db, player_id, puzzle_id))
        if isinstance(state, NoSession):
            return Outcome.fail(ErrorKind.INVALID_STATE, "no started session")
        if isinstance(state, Solved):
            return Outcome.fail(ErrorKind.ALREADY_SOLVED, "already played")
        if state.hints_revealed >= cap:
            return Outcome.fail(ErrorKind.INVALID_STATE, "no hints left")

        cost = scoring.hint_cost(state.hints_revealed)
        if crud.increment_hint(db, state.play_id, state.hints_revealed, cost):
            result = HintResult(
                penalty_ms=state.penalty_ms + cost,
                hints_revealed=state.hints_revealed + 1,
                cost_ms=cost,
                hint=hints[state.hints_revealed],
            )
            logger.info(
                "hint_revealed",
                extra={
                    "player_id": player_id,
                    "puzzle_id": puzzle_id,
                    "play_id": state.play_id,
                    "hints_revealed": result.hints_revealed,
                    "penalty_ms": result.penalty_ms,
                },
            )
            return Outcome.ok(result)

    return Outcome.fail(ErrorKind.STORE_UNAVAILABLE, "session is busy, retry")


@_store_guard
def submit(db: Session, player_id: int, puzzle_id: int, guess_is_correct: bool,
           client_penalty_ms: Optional[int] = None, clock=default_clock) -> Outcome:
    """Finalize the session on a correct guess.

    The score is always computed from the stored start instant and the stored
    penalty. `client_penalty_ms` is only recorded and compared.
    """
    for _ in range(_WRITE_ATTEMPTS):
        play = crud.get_play(db, player_id, puzzle_id)
        state = state_of(play)
        if isinstance(state, NoSession):
            return Outcome.fail(ErrorKind.INVALID_STATE, "no started session")
        if isinstance(state, Solved):
            return Outcome.fail(ErrorKind.ALREADY_SOLVED, "already played")
        if not guess_is_correct:
            return Outcome.ok(SubmitResult(correct=False, penalty_ms=state.penalty_ms))

        now = clock.now_ms()
        duration = scoring.elapsed_ms(state.started_at_ms, now)
        score = scoring.compute_score(state.started_at_ms, now, state.penalty_ms)
        if client_penalty_ms is not None and client_penalty_ms != state.penalty_ms:
            logger.warning(
                "client_penalty_mismatch",
                extra={
                    "player_id": player_id,
                    "puzzle_id": puzzle_id,
                    "play_id": state.play_id,
                    "penalty_ms": state.penalty_ms,
                    "client_penalty_ms": client_penalty_ms,
                },
            )
        if crud.finalize_play(db, play, now, duration, score, client_penalty_ms):
            logger.info(
                "play_solved",
                extra={
                    "player_id": player_id,
                    "puzzle_id": puzzle_id,
                    "play_id": state.play_id,
                    "score_ms": score,
                    "penalty_ms": state.penalty_ms,
                },
            )
            return Outcome.ok(SubmitResult(
                correct=True,
                penalty_ms=state.penalty_ms,
                duration_ms=duration,
                final_score_ms=score,
            ))
        # lost to a concurrent submit or hint; the next read tells which

    return Outcome.fail(ErrorKind.STORE_UNAVAILABLE, "session is busy, retry")


@_store_guard
def submit_guess(db: Session, player_id: int, puzzle_id: int, guess: str,
                 client_penalty_ms: Optional[int] = None, clock=default_clock) -> Outcome:
    puzzle = crud.get_puzzle(db, puzzle_id)
    if puzzle is None:
        return Outcome.fail(ErrorKind.NOT_FOUND, "puzzle not found")
    correct = scoring.is_correct_guess(guess, puzzle.solution_name)
    return submit(db, player_id, puzzle_id, correct, client_penalty_ms, clock=clock)


@_store_guard
def get_state(db: Session, player_id: int, puzzle_id: int) -> Outcome:
    """Current session state plus the hints already paid for, for resuming a page."""
    puzzle = crud.get_puzzle(db, puzzle_id)
    if puzzle is None:
        return Outcome.fail(ErrorKind.NOT_FOUND, "puzzle not found")
    hints = crud.puzzle_hints(puzzle)
    state = state_of(crud.get_play(db, player_id, puzzle_id))
    revealed = 0 if isinstance(state, NoSession) else state.hints_revealed
    return Outcome.ok(SessionView(state=state, revealed_hints=hints[:revealed], hint_count=len(hints)))
