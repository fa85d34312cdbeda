"""Request-scoped dependencies shared by the routers."""
import uuid
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException

from nextup import crud
from nextup.core.database import get_db
from nextup.services.read_cache import ReadCache
from nextup.services.trakt_client import TraktClient


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> uuid.UUID:
    """Authenticated user id, forwarded by the fronting proxy in X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")


def get_trakt_token(
    x_trakt_token: Optional[str] = Header(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db=Depends(get_db),
) -> Optional[str]:
    """Per-request Trakt token, falling back to the one stored for the user."""
    if x_trakt_token:
        return x_trakt_token
    user = crud.get_user(db, user_id)
    token = user.trakt_token if user is not None else None
    db.rollback()
    return token


def get_read_cache() -> ReadCache:
    return ReadCache()


def get_catalog_factory() -> Callable[[Optional[str]], TraktClient]:
    return lambda token: TraktClient(token=token)
