from sqlalchemy import inspect
from sqlmodel import SQLModel, create_engine

from dailyemoji.migrations import MIGRATIONS, has_migration_been_applied, run_migrations


def test_migrations_apply_once(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'mig.db'}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)

    assert run_migrations(engine) == len(MIGRATIONS)
    assert run_migrations(engine) == 0
    for name, _ in MIGRATIONS:
        assert has_migration_been_applied(engine, name)

    index_names = {ix['name'] for ix in inspect(engine).get_indexes('play')}
    assert 'idx_play_puzzle_status_score' in index_names
    assert 'uq_play_player_puzzle_idx' in index_names
