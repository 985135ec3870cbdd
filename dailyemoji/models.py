from typing import Optional
from sqlalchemy import BigInteger, Column, UniqueConstraint
from sqlmodel import SQLModel, Field


STATUS_STARTED = "started"
STATUS_SOLVED = "solved"


class Player(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)


class Puzzle(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    game_date: str = Field(index=True, unique=True)  # YYYY-MM-DD
    solution_name: str
    emojis_json: str = "[]"
    hints_json: str = "[]"


class Play(SQLModel, table=True):
    """One session per (player, puzzle). No row means the player is idle."""

    __table_args__ = (UniqueConstraint("player_id", "puzzle_id", name="uq_play_player_puzzle"),)

    id: Optional[str] = Field(default=None, primary_key=True)
    player_id: int = Field(foreign_key="player.id")
    puzzle_id: int = Field(foreign_key="puzzle.id")
    status: str = STATUS_STARTED
    started_at_ms: int = Field(sa_column=Column(BigInteger, nullable=False))
    hints_revealed: int = 0
    penalty_ms: int = 0
    duration_ms: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    final_score_ms: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    solved_at_ms: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    # untrusted, kept for audit only
    client_penalty_ms: Optional[int] = None
