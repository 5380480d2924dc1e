# core/sessions.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fastapi import Depends, Request
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.auth_utils import hash_refresh_token, new_refresh_token_raw
from core.database import get_async_session
from core.errors import ServiceError, data_access_error, invalid_token, validation_error
from models.refresh_token import RefreshToken
from settings import Settings
from telemetry.logger import log_event, sanitize

logger = logging.getLogger(__name__)


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we write is UTC
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


class RefreshSessionStore:
    """
    Server-side record of issued refresh tokens, one row per login session.

    Every method is a single statement plus commit. Rows are never deleted.
    """

    def __init__(self, session: AsyncSession, settings: Settings):
        self.session = session
        self.settings = settings

    def _hash(self, raw: str) -> str:
        return hash_refresh_token(raw, self.settings.refresh_token_secret)

    async def _fail(self, operation: str, username: Optional[str], exc: SQLAlchemyError) -> ServiceError:
        await self.session.rollback()
        logger.error("%s failed for user %s", operation, sanitize(username), exc_info=exc)
        return data_access_error(exc)

    # -----------------------
    # Issue
    # -----------------------
    async def issue(
        self,
        username: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[str, RefreshToken]:
        if not (username or "").strip():
            raise validation_error("Username es requerido.")

        raw = new_refresh_token_raw()
        now = datetime.now(timezone.utc)
        rt = RefreshToken(
            username=username,
            token_hash=self._hash(raw),
            created_at=now,
            expires_at=now + timedelta(days=self.settings.refresh_token_days),
            revoked=False,
            created_by_ip=ip,
            user_agent=user_agent[:512] if user_agent else None,
        )
        try:
            self.session.add(rt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Refresh token insert", username, exc) from exc
        return raw, rt

    # -----------------------
    # Queries
    # -----------------------
    async def count_active(self, username: Optional[str]) -> int:
        if not (username or "").strip():
            raise validation_error("Username es requerido.")
        try:
            result = await self.session.execute(
                select(func.count(RefreshToken.id)).where(
                    RefreshToken.username == username,
                    RefreshToken.revoked.is_(False),
                )
            )
        except SQLAlchemyError as exc:
            raise await self._fail("Active session count", username, exc) from exc
        return int(result.scalar_one() or 0)

    async def find_by_raw(self, raw: str) -> Optional[RefreshToken]:
        try:
            # Bulk revokes bypass the identity map; always reload the row
            result = await self.session.execute(
                select(RefreshToken)
                .where(RefreshToken.token_hash == self._hash(raw))
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as exc:
            raise await self._fail("Refresh token lookup", None, exc) from exc
        return result.scalars().first()

    # -----------------------
    # Revocation
    # -----------------------
    async def revoke(self, token_id: int, replaced_by_hash: Optional[str] = None) -> bool:
        """Revoke one token. Returns False when it was already revoked or unknown."""
        try:
            result = await self.session.execute(
                update(RefreshToken)
                .where(RefreshToken.id == token_id, RefreshToken.revoked.is_(False))
                .values(
                    revoked=True,
                    revoked_at=datetime.now(timezone.utc),
                    replaced_by_hash=replaced_by_hash,
                )
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Refresh token revoke", None, exc) from exc
        return (result.rowcount or 0) > 0

    async def revoke_all(self, username: str) -> int:
        try:
            result = await self.session.execute(
                update(RefreshToken)
                .where(RefreshToken.username == username, RefreshToken.revoked.is_(False))
                .values(revoked=True, revoked_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("Refresh token revoke-all", username, exc) from exc
        return result.rowcount or 0

    # -----------------------
    # Rotation
    # -----------------------
    async def rotate(
        self,
        raw: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[str, str]:
        """
        Exchange a refresh token for a new one. Returns (username, new_raw).

        Presenting an already revoked token is treated as reuse: every
        session of that user is revoked.
        """
        if not (raw or "").strip():
            raise validation_error("refreshToken es requerido.")

        rt = await self.find_by_raw(raw)
        if rt is None:
            raise invalid_token("Refresh token inválido.")

        if rt.revoked:
            revoked = await self.revoke_all(rt.username)
            log_event("refresh_reuse_detected", {"revoked": revoked}, user=rt.username)
            raise invalid_token("Refresh token revocado. Se han revocado las sesiones.")

        if _aware(rt.expires_at) <= datetime.now(timezone.utc):
            raise invalid_token("Refresh token expirado.")

        username = rt.username
        new_raw, new_rt = await self.issue(username, ip=ip, user_agent=user_agent)
        if not await self.revoke(rt.id, replaced_by_hash=new_rt.token_hash):
            # Lost a race with another rotation of the same token
            await self.revoke(new_rt.id)
            raise invalid_token("Refresh token revocado.")
        return username, new_raw


def get_session_store(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
) -> RefreshSessionStore:
    return RefreshSessionStore(session, request.app.state.settings)
