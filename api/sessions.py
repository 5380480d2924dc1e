# api/sessions.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core.errors import validation_error
from core.sessions import RefreshSessionStore, get_session_store

router = APIRouter(prefix="/sessions", tags=["sessions"])

_ERRORS = {400: {"description": "Username inválido"}, 500: {"description": "Error interno del servidor"}}


class ActiveCountResponse(BaseModel):
    username: str
    activeSessionsCount: int


@router.get("/active-count/{username}", response_model=ActiveCountResponse, responses=_ERRORS)
async def active_count(
    username: str,
    sessions: RefreshSessionStore = Depends(get_session_store),
) -> ActiveCountResponse:
    """Number of non-revoked refresh tokens (open sessions) held by `username`."""
    count = await sessions.count_active(username)
    return ActiveCountResponse(username=username, activeSessionsCount=count)


# Empty path segment would otherwise fall through to a routing 404
@router.get("/active-count/", include_in_schema=False)
async def active_count_without_username() -> ActiveCountResponse:
    raise validation_error("Username es requerido.")
