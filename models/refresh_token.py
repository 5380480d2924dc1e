# models/refresh_token.py
from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Index

from core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(150), nullable=False, index=True)

    # Store ONLY the keyed hash of the refresh token (never the raw token)
    token_hash = Column(String(128), nullable=False, unique=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Rows are never deleted; revoke flips the flag and keeps the audit trail
    revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    replaced_by_hash = Column(String(128), nullable=True)

    created_by_ip = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

Index("ix_refresh_tokens_user_active", RefreshToken.username, RefreshToken.revoked)
