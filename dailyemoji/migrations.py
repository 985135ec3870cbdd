"""
Tracked schema migrations for the play store.
Each migration runs once; applied names are recorded in the migration table.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, Session, SQLModel, select, text

from .config import settings

logger = logging.getLogger(__name__)


class Migration(SQLModel, table=True):
    """Track applied migrations"""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    applied_at: datetime


MIGRATIONS = [
    (
        "001_play_indexes",
        """
        -- leaderboard reads: solved plays of a puzzle ordered by score then finish time
        CREATE INDEX IF NOT EXISTS idx_play_puzzle_status_score ON play(puzzle_id, status, final_score_ms, solved_at_ms);
        -- history and archive reads
        CREATE INDEX IF NOT EXISTS idx_play_player_status ON play(player_id, status)
        """,
    ),
    (
        "002_play_unique_key",
        """
        -- databases created before the table constraint existed
        CREATE UNIQUE INDEX IF NOT EXISTS uq_play_player_puzzle_idx ON play(player_id, puzzle_id)
        """,
    ),
]


def get_engine():
    from .init_db import create_db_engine
    return create_db_engine(settings.DATABASE_URL)


def has_migration_been_applied(engine, migration_name: str) -> bool:
    Migration.metadata.create_all(engine, tables=[Migration.__table__])
    with Session(engine) as session:
        result = session.exec(select(Migration).where(Migration.name == migration_name)).first()
        return result is not None


def apply_migration(engine, migration_name: str, migration_sql: str) -> bool:
    """Apply a migration and record it. Returns False when it was already applied."""
    if has_migration_been_applied(engine, migration_name):
        logger.info(f"Migration {migration_name} already applied, skipping")
        return False

    logger.info(f"Applying migration: {migration_name}")
    with Session(engine) as session:
        try:
            for statement in migration_sql.strip().split(';'):
                lines = [ln for ln in statement.splitlines() if not ln.strip().startswith('--')]
                sql = "\n".join(lines).strip()
                if sql:
                    session.execute(text(sql))
            session.add(Migration(name=migration_name, applied_at=datetime.now(timezone.utc)))
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to apply migration {migration_name}: {e}")
            raise
    logger.info(f"Migration {migration_name} applied successfully")
    return True


def run_migrations(engine=None) -> int:
    """Run all pending migrations, return how many were applied"""
    engine = engine or get_engine()
    applied = sum(1 for name, sql in MIGRATIONS if apply_migration(engine, name, sql))
    logger.info("All migrations completed")
    return applied


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_migrations()
