import sys
from pathlib import Path
import pytest
from sqlmodel import SQLModel, Session, create_engine

# Ensure project root is on sys.path so tests can import the `dailyemoji` package
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from dailyemoji import crud  # noqa: E402
from dailyemoji.cache import get_cache  # noqa: E402

T0 = 1_767_225_600_000  # 2026-01-01T00:00:00Z in ms


class FakeClock:
    """Settable clock; instants in milliseconds."""

    def __init__(self, now_ms: int = T0):
        self.now = now_ms

    def now_ms(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def reset_shared_state():
    # Clear in-memory rate limiter and view cache between tests
    import dailyemoji.main as app_main
    app_main._RATE_LIMIT_STORE.clear()
    get_cache().clear()
    yield
    app_main.app.dependency_overrides.clear()


@pytest.fixture
def engine(tmp_path):
    db = tmp_path / 'test.db'
    eng = create_engine(f'sqlite:///{db}', connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(eng)
    crud.engine = eng
    yield eng
    crud.engine = None
    eng.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def puzzle(db):
    pz = crud.create_puzzle(
        db,
        '2099-01-01',
        'The Legend of Zelda: Breath of the Wild',
        ['🗡️', '🛡️', '🌄', '🐴'],
        ['Open world', 'Released in 2017', 'Hero named Link'],
    )
    assert pz is not None and pz.id is not None
    return pz


@pytest.fixture
def player(db):
    p = crud.create_player(db, 'alice')
    assert p is not None and p.id is not None
    return p
