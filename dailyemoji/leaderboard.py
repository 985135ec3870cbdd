"""Rankings derived from solved plays. Nothing here is stored; every view is
recomputed from the play table (and briefly cached until the next finalize)."""
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional, Tuple

from sqlmodel import Session

from . import crud, models
from .cache import (
    cache_leaderboard,
    cache_stats,
    get_cached_leaderboard,
    get_cached_stats,
    puzzle_generation,
)
from .clock import ms_to_iso


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    player_id: int
    username: str
    puzzle_id: int
    final_score_ms: int
    duration_ms: int
    penalty_ms: int
    solved_at_ms: int

    def to_dict(self) -> dict:
        d = asdict(self)
        d['solved_at'] = ms_to_iso(self.solved_at_ms)
        return d


@dataclass(frozen=True)
class PuzzleStats:
    count: int
    average_score_ms: Optional[float]
    best_score_ms: Optional[int]


def rank_plays(rows: Iterable[Tuple[models.Play, str]]) -> List[LeaderboardEntry]:
    """Assign dense 1-based ranks to plays already sorted by (score, solved_at).

    Only plays equal on both score and finish instant share a rank.
    """
    entries: List[LeaderboardEntry] = []
    rank = 0
    prev_key = None
    for play, username in rows:
        key = (play.final_score_ms, play.solved_at_ms)
        if key != prev_key:
            rank += 1
            prev_key = key
        entries.append(LeaderboardEntry(
            rank=rank,
            player_id=play.player_id,
            username=username,
            puzzle_id=play.puzzle_id,
            final_score_ms=play.final_score_ms or 0,
            duration_ms=play.duration_ms or 0,
            penalty_ms=play.penalty_ms,
            solved_at_ms=play.solved_at_ms or 0,
        ))
    return entries


def ranked_entries(db: Session, puzzle_id: int) -> List[LeaderboardEntry]:
    return rank_plays(crud.list_solved_plays(db, puzzle_id))


def top_n(db: Session, puzzle_id: int, n: int = 10) -> List[LeaderboardEntry]:
    cached = get_cached_leaderboard(puzzle_id, n)
    if cached is not None:
        return cached
    generation = puzzle_generation(puzzle_id)
    entries = ranked_entries(db, puzzle_id)[:max(0, n)]
    cache_leaderboard(puzzle_id, n, entries, generation)
    return entries


def rank_of(db: Session, player_id: int, puzzle_id: int) -> Optional[int]:
    for entry in ranked_entries(db, puzzle_id):
        if entry.player_id == player_id:
            return entry.rank
    return None


def aggregate_stats(db: Session, puzzle_id: int) -> PuzzleStats:
    """Count, mean and best final score. Mean and best are None with no solves."""
    cached = get_cached_stats(puzzle_id)
    if cached is not None:
        return cached
    generation = puzzle_generation(puzzle_id)
    count, avg, best = crud.solved_score_stats(db, puzzle_id)
    if count == 0:
        stats = PuzzleStats(count=0, average_score_ms=None, best_score_ms=None)
    else:
        stats = PuzzleStats(count=count, average_score_ms=avg, best_score_ms=best)
    cache_stats(puzzle_id, stats, generation)
    return stats


def player_history(db: Session, player_id: int) -> dict:
    """Every solved play of a player, newest puzzle first, with summary stats."""
    games = []
    for play, puzzle in crud.list_player_solved_plays(db, player_id):
        games.append({
            'puzzle_id': puzzle.id,
            'game_date': puzzle.game_date,
            'solution_name': puzzle.solution_name,
            'final_score_ms': play.final_score_ms,
            'duration_ms': play.duration_ms,
            'penalty_ms': play.penalty_ms,
            'hints_revealed': play.hints_revealed,
            'rank': rank_of(db, player_id, puzzle.id),
        })
    ranks = [g['rank'] for g in games if g['rank'] is not None]
    scores = [g['final_score_ms'] for g in games]
    return {
        'games': games,
        'total_games': len(games),
        'average_rank': round(sum(ranks) / len(ranks), 1) if ranks else None,
        'average_score_ms': sum(scores) / len(scores) if scores else None,
        'best_rank': min(ranks) if ranks else None,
    }


def archive(db: Session, player_id: Optional[int], before_date: str) -> List[dict]:
    """Past puzzles, newest first. Solutions are only shown for puzzles the player solved."""
    solved = crud.solved_puzzle_ids(db, player_id)
    items = []
    for pz in crud.list_puzzles_before(db, before_date):
        is_solved = pz.id in solved
        items.append({
            'puzzle_id': pz.id,
            'game_date': pz.game_date,
            'solved': is_solved,
            'solution_name': pz.solution_name if is_solved else None,
        })
    return items
