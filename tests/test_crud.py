from sqlmodel import SQLModel, create_engine, Session
from dailyemoji import crud


def setup_db(tmp_path):
    db = tmp_path / 'crud.db'
    engine = create_engine(f'sqlite:///{db}', connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    crud.engine = engine
    return engine


def test_player_token_sign_and_verify(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        p = crud.create_player(s, "bob")
        assert p is not None and p.id is not None
        pid = int(p.id)
        token = crud.sign_player_token(s, pid)
        assert token and token.startswith(f"{pid}.")
        assert crud.verify_player_token(s, token) == pid

        # Tamper token -> verify fails
        assert crud.verify_player_token(s, f"{pid}.deadbeef") is None
        assert crud.verify_player_token(s, "badformat") is None
        assert crud.verify_player_token(s, None) is None
        assert crud.sign_player_token(s, 999999) is None

        # duplicate usernames are refused, anonymous names are generated
        assert crud.create_player(s, "bob") is None
        anon = crud.create_player(s)
        assert anon is not None and anon.username.startswith("anon-")


def test_puzzle_storage(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        pz = crud.create_puzzle(s, '2099-03-03', 'Minecraft', [' ⛏️', '🧟 '], ['Blocks', '', 'Creeper', 'Extra'])
        assert pz is not None
        assert crud.puzzle_emojis(pz) == ['⛏️', '🧟']
        # blanks dropped, at most three kept
        assert crud.puzzle_hints(pz) == ['Blocks', 'Creeper', 'Extra']
        assert crud.create_puzzle(s, '2099-03-03', 'Other', ['x']) is None
        assert crud.get_puzzle_by_date(s, '2099-03-03').id == pz.id
        assert crud.get_puzzle_by_date(s, '2099-03-04') is None

        crud.create_puzzle(s, '2099-03-01', 'Doom', ['👹'])
        before = crud.list_puzzles_before(s, '2099-03-03')
        assert [p.game_date for p in before] == ['2099-03-01']


def test_puzzle_solution_must_survive_normalization(tmp_path):
    engine = setup_db(tmp_path)
    with Session(engine) as s:
        assert crud.create_puzzle(s, '2099-04-01', 'ファイナルファンタジー', ['⚔️']) is None
        assert crud.create_puzzle(s, '2099-04-01', '???', ['❓']) is None
        assert crud.get_puzzle_by_date(s, '2099-04-01') is None
        assert crud.create_puzzle(s, '2099-04-01', 'Final Fantasy VII', ['⚔️']) is not None
