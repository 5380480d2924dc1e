# core/auth_utils.py
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError

from core.credentials import coerce_authorized
from core.errors import ServiceError, data_access_error, invalid_credentials, invalid_token, validation_error
from settings import Settings
from telemetry.logger import log_event, sanitize

logger = logging.getLogger(__name__)

# Tolerated clock drift when validating exp/nbf/iat
CLOCK_SKEW_SECONDS = 30

# -------------------------------------------------------------------
# Refresh token helpers (random + keyed hash)
# -------------------------------------------------------------------
def new_refresh_token_raw() -> str:
    # urlsafe, 64 random bytes. Store only the hash server-side.
    return secrets.token_urlsafe(64)

def hash_refresh_token(raw: str, secret: str) -> str:
    # Keyed with a server secret so a DB leak doesn't allow offline guessing.
    return hmac.new(secret.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()

# -------------------------------------------------------------------
# Access tokens
# -------------------------------------------------------------------
@dataclass(frozen=True)
class AccessToken:
    subject: str
    jti: str
    issued_at: datetime
    expires_at: datetime
    token: str

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())


def _require_text(value: Optional[str]) -> str:
    return (value or "").strip()


class TokenIssuer:
    """
    Checks credentials against a credential store and signs access tokens.

    Signing key, issuer and audience come from the immutable Settings
    handed in at startup.
    """

    def __init__(self, settings: Settings, credential_store):
        self.settings = settings
        self.credential_store = credential_store
        self.lifetime = timedelta(minutes=settings.access_token_minutes)

    async def authenticate(self, username: Optional[str], secret: Optional[str]) -> AccessToken:
        # Validate before touching the store
        if not _require_text(username) or not _require_text(secret):
            raise validation_error("Usuario y contraseña son requeridos.")

        try:
            answer = await self.credential_store.check(username, secret)
        except ServiceError:
            raise
        except Exception as exc:
            logger.error("Credential store failed for user %s", sanitize(username), exc_info=exc)
            raise data_access_error(exc) from exc

        try:
            authorized = coerce_authorized(answer)
        except ServiceError:
            logger.error(
                "Credential store answered %s for user %s; expected a bool",
                type(answer).__name__,
                sanitize(username),
            )
            raise

        if not authorized:
            log_event("login_rejected", {}, user=username)
            raise invalid_credentials()

        token = self.issue(username)
        log_event("login_succeeded", {"jti": token.jti}, user=username)
        return token

    def issue(self, subject: str) -> AccessToken:
        # Whole seconds so iat/exp in the JWT match issued_at/expires_at exactly
        now = datetime.now(timezone.utc).replace(microsecond=0)
        expires = now + self.lifetime
        jti = str(uuid.uuid4())

        payload = {
            "sub": subject,
            "jti": jti,
            "iat": int(now.timestamp()),
            "nbf": int(now.timestamp()),
            "exp": int(expires.timestamp()),
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
        }
        encoded = jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)
        return AccessToken(subject=subject, jti=jti, issued_at=now, expires_at=expires, token=encoded)

    def decode(self, token: str) -> Dict[str, Any]:
        if not _require_text(token):
            raise validation_error("Token no proporcionado.")
        try:
            claims = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
                audience=self.settings.jwt_audience,
                issuer=self.settings.jwt_issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iat", "sub", "jti"]},
            )
        except PyJWTError:
            raise invalid_token()
        if not claims.get("sub"):
            raise invalid_token()
        return claims

# -------------------------------------------------------------------
# FastAPI dependencies
# -------------------------------------------------------------------
bearer_scheme = HTTPBearer(auto_error=False)

def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer

def get_current_claims(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Dict[str, Any]:
    """
    Returns the validated claims of the bearer token.

    - No Authorization header -> 401
    - Not Bearer -> 401
    - Invalid/expired/wrong issuer or audience -> 401
    """
    if creds is None:
        raise invalid_token("Falta el encabezado Authorization.")
    if creds.scheme.lower() != "bearer":
        raise invalid_token("Esquema de autenticación inválido.")
    return issuer.decode(creds.credentials)

def get_current_username(claims: Dict[str, Any] = Depends(get_current_claims)) -> str:
    return str(claims["sub"])
