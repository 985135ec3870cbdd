import hashlib
import hmac
import json
import uuid
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select as sa_select, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select as sqlmodel_select

from . import models
from .cache import invalidate_puzzle_views
from .config import settings
from .scoring import normalize_guess

engine = None


def _sign(value: str) -> str:
    return hmac.new(settings.SESSION_SECRET.encode(), value.encode(), hashlib.sha256).hexdigest()


def sign_player_token(db_session: Session, pid: Optional[int]) -> Optional[str]:
    """Sign a player id into a "pid.sig" token; None if the player doesn't exist."""
    if pid is None or db_session.get(models.Player, pid) is None:
        return None
    val = str(pid)
    return f"{val}.{_sign(val)}"


def verify_player_token(db_session: Session, token: Optional[str]) -> Optional[int]:
    if not token or '.' not in token:
        return None
    pid_s, sig = token.rsplit('.', 1)
    if not hmac.compare_digest(_sign(pid_s), sig):
        return None
    try:
        pid = int(pid_s)
    except ValueError:
        return None
    if db_session.get(models.Player, pid) is None:
        return None
    return pid


def create_player(session: Session, username: Optional[str] = None) -> Optional[models.Player]:
    """Create a player; anonymous when no username is given. None if the name is taken."""
    uname = username or f"anon-{uuid.uuid4().hex[:8]}"
    if get_player_by_username(session, uname):
        return None
    p = models.Player(username=uname)
    session.add(p)
    session.commit()
    session.refresh(p)
    return p


def get_player_by_username(session: Session, username: str) -> Optional[models.Player]:
    return session.exec(sqlmodel_select(models.Player).where(models.Player.username == username)).first()


# --- puzzles (read-only for the engine; create_puzzle is for seeding) ---

def create_puzzle(session: Session, game_date: str, solution_name: str,
                  emojis: Sequence[str], hints: Sequence[str] = ()) -> Optional[models.Puzzle]:
    """Seed a puzzle. None if the date is taken or the solution has no letters or digits to match on."""
    if not normalize_guess(solution_name):
        return None
    if get_puzzle_by_date(session, game_date):
        return None
    kept_hints = [h.strip() for h in hints if h and h.strip()][:3]
    pz = models.Puzzle(
        game_date=game_date,
        solution_name=solution_name,
        emojis_json=json.dumps([e.strip() for e in emojis], ensure_ascii=False),
        hints_json=json.dumps(kept_hints, ensure_ascii=False),
    )
    session.add(pz)
    session.commit()
    session.refresh(pz)
    return pz


def get_puzzle(session: Session, puzzle_id: int) -> Optional[models.Puzzle]:
    return session.get(models.Puzzle, puzzle_id)


def get_puzzle_by_date(session: Session, game_date: str) -> Optional[models.Puzzle]:
    return session.exec(sqlmodel_select(models.Puzzle).where(models.Puzzle.game_date == game_date)).first()


def puzzle_emojis(puzzle: models.Puzzle) -> List[str]:
    return json.loads(puzzle.emojis_json or "[]")


def puzzle_hints(puzzle: models.Puzzle) -> List[str]:
    return json.loads(puzzle.hints_json or "[]")


def list_puzzles_before(session: Session, game_date: str) -> List[models.Puzzle]:
    return list(session.exec(
        sqlmodel_select(models.Puzzle)
        .where(models.Puzzle.game_date < game_date)
        .order_by(col(models.Puzzle.game_date).desc())
    ).all())


# --- plays ---

def get_play(session: Session, player_id: int, puzzle_id: int) -> Optional[models.Play]:
    return session.exec(
        sqlmodel_select(models.Play)
        .where(models.Play.player_id == player_id)
        .where(models.Play.puzzle_id == puzzle_id)
    ).first()


def insert_play_if_absent(session: Session, player_id: int, puzzle_id: int,
                          started_at_ms: int) -> Tuple[models.Play, bool]:
    """Create the play for (player, puzzle) unless one exists.

    Returns (play, created). A concurrent insert that loses on the unique
    constraint gets the winner's row back with created=False.
    """
    existing = get_play(session, player_id, puzzle_id)
    if existing:
        return existing, False
    play = models.Play(
        id=str(uuid.uuid4()),
        player_id=player_id,
        puzzle_id=puzzle_id,
        status=models.STATUS_STARTED,
        started_at_ms=started_at_ms,
        hints_revealed=0,
        penalty_ms=0,
    )
    session.add(play)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        winner = get_play(session, player_id, puzzle_id)
        if winner is None:
            raise
        return winner, False
    session.refresh(play)
    return play, True


def increment_hint(session: Session, play_id: str, expected_revealed: int, cost_ms: int) -> bool:
    """Charge one hint iff the play is still started with `expected_revealed` hints used."""
    stmt = (
        update(models.Play)
        .where(col(models.Play.id) == play_id)
        .where(col(models.Play.status) == models.STATUS_STARTED)
        .where(col(models.Play.hints_revealed) == expected_revealed)
        .values(
            hints_revealed=expected_revealed + 1,
            penalty_ms=models.Play.penalty_ms + cost_ms,
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    session.commit()
    return result.rowcount == 1


def finalize_play(session: Session, play: models.Play, solved_at_ms: int, duration_ms: int,
                  final_score_ms: int, client_penalty_ms: Optional[int] = None) -> bool:
    """Mark the play solved iff it is still started with the penalty the score was computed from."""
    stmt = (
        update(models.Play)
        .where(col(models.Play.id) == play.id)
        .where(col(models.Play.status) == models.STATUS_STARTED)
        .where(col(models.Play.penalty_ms) == play.penalty_ms)
        .values(
            status=models.STATUS_SOLVED,
            duration_ms=duration_ms,
            final_score_ms=final_score_ms,
            solved_at_ms=solved_at_ms,
            client_penalty_ms=client_penalty_ms,
        )
        .execution_options(synchronize_session=False)
    )
    puzzle_id = play.puzzle_id
    result = session.execute(stmt)
    session.commit()
    if result.rowcount != 1:
        return False
    invalidate_puzzle_views(puzzle_id)
    return True


def list_solved_plays(session: Session, puzzle_id: int) -> List[Tuple[models.Play, str]]:
    """All solved plays for a puzzle with usernames, best score first, earliest finish on ties."""
    rows = session.exec(
        sqlmodel_select(models.Play, models.Player.username)
        .join(models.Player, col(models.Player.id) == col(models.Play.player_id))
        .where(models.Play.puzzle_id == puzzle_id)
        .where(models.Play.status == models.STATUS_SOLVED)
        .order_by(
            col(models.Play.final_score_ms),
            col(models.Play.solved_at_ms),
            col(models.Play.id),
        )
    ).all()
    return [(play, username) for play, username in rows]


def solved_score_stats(session: Session, puzzle_id: int) -> Tuple[int, Optional[float], Optional[int]]:
    """(count, average, best) of final scores over solved plays for a puzzle."""
    count, avg, best = session.execute(
        sa_select(
            func.count(models.Play.id),
            func.avg(models.Play.final_score_ms),
            func.min(models.Play.final_score_ms),
        )
        .where(models.Play.puzzle_id == puzzle_id)
        .where(models.Play.status == models.STATUS_SOLVED)
    ).one()
    return (
        int(count or 0),
        float(avg) if avg is not None else None,
        int(best) if best is not None else None,
    )


def list_player_solved_plays(session: Session, player_id: int) -> List[Tuple[models.Play, models.Puzzle]]:
    rows = session.exec(
        sqlmodel_select(models.Play, models.Puzzle)
        .join(models.Puzzle, col(models.Puzzle.id) == col(models.Play.puzzle_id))
        .where(models.Play.player_id == player_id)
        .where(models.Play.status == models.STATUS_SOLVED)
        .order_by(col(models.Puzzle.game_date).desc())
    ).all()
    return [(play, puzzle) for play, puzzle in rows]


def solved_puzzle_ids(session: Session, player_id: Optional[int]) -> set:
    if player_id is None:
        return set()
    rows = session.exec(
        sqlmodel_select(models.Play.puzzle_id)
        .where(models.Play.player_id == player_id)
        .where(models.Play.status == models.STATUS_SOLVED)
    ).all()
    return set(rows)
