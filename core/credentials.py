# core/credentials.py
from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from passlib.context import CryptContext
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select
from starlette.concurrency import run_in_threadpool

from core.errors import data_access_error
from models.credential import Credential
from telemetry.logger import sanitize

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# Secret hashing (Argon2)
# -------------------------------------------------------------------
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

def hash_secret(secret: str) -> str:
    return pwd_context.hash(secret)

def verify_secret(plain_secret: str, secret_hash: str) -> bool:
    return pwd_context.verify(plain_secret, secret_hash)


_TRUE_STRINGS = {"true"}
_FALSE_STRINGS = {"false"}


class CredentialStore(Protocol):
    """
    External credential check. Answers "is this username/secret pair
    authorized?"; the canonical answer is a bool.
    """

    async def check(self, username: str, secret: str) -> Any: ...


def coerce_authorized(value: Any) -> bool:
    """
    Normalise a credential-store answer to a bool.

    Accepts bool, int (0 = no), "true"/"false" and numeric strings.
    None means no matching credential. Anything else is a broken store
    contract and raises a data-access ServiceError.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        try:
            return int(text) != 0
        except ValueError:
            pass
    raise data_access_error(
        TypeError(f"Unexpected credential store result of type {type(value).__name__}")
    )


class DatabaseCredentialStore:
    """Credential rows in the `credentials` table, argon2 hashes."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def _load(self, username: str) -> Optional[Credential]:
        async with self._session_factory() as session:
            result = await session.execute(select(Credential).where(Credential.username == username))
            return result.scalars().first()

    async def check(self, username: str, secret: str) -> bool:
        try:
            credential = await self._load(username)
        except SQLAlchemyError as exc:
            logger.error("Credential lookup failed for user %s", sanitize(username), exc_info=exc)
            raise data_access_error(exc) from exc

        if credential is None:
            return False
        try:
            return await run_in_threadpool(verify_secret, secret, credential.secret_hash)
        except ValueError as exc:
            # Stored hash is not something passlib recognises
            logger.error("Unreadable secret hash for user %s", sanitize(username), exc_info=exc)
            raise data_access_error(exc) from exc
