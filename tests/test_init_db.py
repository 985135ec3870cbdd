from fastapi.testclient import TestClient
from sqlalchemy import inspect

from dailyemoji import crud
from dailyemoji.config import settings
from dailyemoji.init_db import init_db
from dailyemoji.main import app


def test_init_db_creates_tables(tmp_path):
    engine = init_db(f"sqlite:///{tmp_path / 'fresh.db'}")
    assert {'player', 'puzzle', 'play'} <= set(inspect(engine).get_table_names())


def test_startup_builds_engine_and_runs_migrations(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite:///{tmp_path / 'startup.db'}")
    monkeypatch.setattr(crud, "engine", None)
    with TestClient(app) as client:
        assert client.get('/health').status_code == 200
        assert crud.engine is not None
        tables = set(inspect(crud.engine).get_table_names())
    assert {'play', 'migration'} <= tables
