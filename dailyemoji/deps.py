from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session

from . import crud
from .clock import default_clock
from .errors import ApiError, ErrorKind


def get_session():
    # simple dependency that yields a session
    with Session(crud.engine) as session:
        yield session


def get_clock():
    return default_clock


def _token_from_request(request: Request) -> Optional[str]:
    auth = request.headers.get('authorization')
    if auth and auth.lower().startswith('bearer '):
        return auth[7:].strip()
    return request.cookies.get('player_token')


def get_player_id(request: Request, session: Session = Depends(get_session)) -> Optional[int]:
    """Player id from a signed player token, or None for anonymous callers."""
    return crud.verify_player_token(session, _token_from_request(request))


def require_player(player_id: Optional[int] = Depends(get_player_id)) -> int:
    if player_id is None:
        raise ApiError(ErrorKind.NOT_AUTHENTICATED, "login required")
    return player_id
