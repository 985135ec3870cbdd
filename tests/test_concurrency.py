import threading
from concurrent.futures import ThreadPoolExecutor

from sqlmodel import Session, select

from dailyemoji import crud, models, sessions
from dailyemoji.errors import ErrorKind


def _run_concurrently(engine, fn, workers=4):
    barrier = threading.Barrier(workers)

    def worker(_):
        with Session(engine) as s:
            barrier.wait()
            return fn(s)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(worker, range(workers)))


def _play_rows(engine):
    with Session(engine) as s:
        return s.exec(select(models.Play)).all()


def test_concurrent_start_creates_one_row(engine, db, puzzle, player, clock):
    pid, pzid = player.id, puzzle.id
    outcomes = _run_concurrently(engine, lambda s: sessions.start(s, pid, pzid, clock=clock))

    assert all(o.success for o in outcomes)
    assert len({o.value.started_at_ms for o in outcomes}) == 1
    assert sum(1 for o in outcomes if not o.value.resumed) == 1
    assert len(_play_rows(engine)) == 1


def test_losing_insert_returns_winner_row(engine, db, puzzle, player, clock, monkeypatch):
    pid, pzid = player.id, puzzle.id
    with Session(engine) as other:
        winner, created = crud.insert_play_if_absent(other, pid, pzid, 111)
        assert created

    # the losing request read "no row" just before the winner committed
    real_get_play = crud.get_play
    calls = {"n": 0}

    def stale_first_read(session, player_id, puzzle_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_get_play(session, player_id, puzzle_id)

    monkeypatch.setattr(crud, "get_play", stale_first_read)
    play, created = crud.insert_play_if_absent(db, pid, pzid, 999)
    assert created is False
    assert play.started_at_ms == 111
    assert len(_play_rows(engine)) == 1


def test_concurrent_submit_finalizes_once(engine, db, puzzle, player, clock):
    pid, pzid = player.id, puzzle.id
    sessions.start(db, pid, pzid, clock=clock)
    clock.advance(20_000)

    outcomes = _run_concurrently(engine, lambda s: sessions.submit(s, pid, pzid, True, clock=clock))

    winners = [o for o in outcomes if o.success]
    losers = [o for o in outcomes if not o.success]
    assert len(winners) == 1
    assert all(o.error == ErrorKind.ALREADY_SOLVED for o in losers)
    assert winners[0].value.final_score_ms == 20_000


def test_concurrent_hints_are_not_undercharged(engine, db, puzzle, player, clock):
    pid, pzid = player.id, puzzle.id
    sessions.start(db, pid, pzid, clock=clock)

    outcomes = _run_concurrently(engine, lambda s: sessions.reveal_hint(s, pid, pzid), workers=2)

    assert all(o.success for o in outcomes)
    assert sorted(o.value.cost_ms for o in outcomes) == [2000, 5000]
    play = _play_rows(engine)[0]
    assert play.hints_revealed == 2
    assert play.penalty_ms == 7000


def test_stale_conditional_writes_are_refused(db, puzzle, player, clock):
    sessions.start(db, player.id, puzzle.id, clock=clock)
    play = crud.get_play(db, player.id, puzzle.id)
    play_id = play.id

    assert crud.increment_hint(db, play_id, 0, 2000)
    # a second writer that still believes no hint was used
    assert not crud.increment_hint(db, play_id, 0, 2000)

    current = crud.get_play(db, player.id, puzzle.id)
    assert crud.finalize_play(db, current, clock.now_ms(), 0, 2000)
    assert not crud.finalize_play(db, crud.get_play(db, player.id, puzzle.id), clock.now_ms(), 0, 0)
    assert crud.get_play(db, player.id, puzzle.id).final_score_ms == 2000
