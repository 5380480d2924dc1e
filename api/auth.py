# api/auth.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import AliasChoices, BaseModel, Field

from core.auth_utils import AccessToken, TokenIssuer, get_token_issuer
from core.errors import validation_error
from core.rate_limit import client_key
from core.sessions import RefreshSessionStore, get_session_store
from telemetry.logger import log_event

router = APIRouter(tags=["auth"])

_ERRORS = {
    400: {"description": "Datos de entrada inválidos"},
    401: {"description": "Credenciales o token inválidos"},
    500: {"description": "Error interno del servidor"},
}


# -------------------------------
# Schemas
# -------------------------------
class LoginRequest(BaseModel):
    usuario: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("usuario", "username")
    )
    contrasena: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("contraseña", "contrasena", "password")
    )

class RefreshRequest(BaseModel):
    refreshToken: Optional[str] = None

class TokenValidateRequest(BaseModel):
    token: Optional[str] = None

class UserOut(BaseModel):
    username: str

class AuthResponse(BaseModel):
    token: str
    accessToken: str
    refreshToken: str
    expiresIn: int
    tokenType: str = "Bearer"
    user: UserOut

class ValidateResponse(BaseModel):
    valid: bool
    claims: Dict[str, Any]


def _client_meta(request: Request) -> Dict[str, Optional[str]]:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _auth_response(token: AccessToken, refresh_raw: str) -> AuthResponse:
    return AuthResponse(
        token=token.token,
        accessToken=token.token,
        refreshToken=refresh_raw,
        expiresIn=token.expires_in,
        user=UserOut(username=token.subject),
    )


# -------------------------------
# Login
# -------------------------------
@router.post("/login", response_model=AuthResponse, responses={**_ERRORS, 429: {"description": "Demasiados intentos"}})
async def login(
    req: LoginRequest,
    request: Request,
    issuer: TokenIssuer = Depends(get_token_issuer),
    sessions: RefreshSessionStore = Depends(get_session_store),
) -> AuthResponse:
    request.app.state.login_limiter.check(client_key(request, "login"))

    token = await issuer.authenticate(req.usuario, req.contrasena)
    refresh_raw, _ = await sessions.issue(token.subject, **_client_meta(request))
    return _auth_response(token, refresh_raw)


# -------------------------------
# Refresh (ROTATION)
# -------------------------------
@router.post("/refresh", response_model=AuthResponse, responses={**_ERRORS, 429: {"description": "Demasiados intentos"}})
async def refresh(
    req: RefreshRequest,
    request: Request,
    issuer: TokenIssuer = Depends(get_token_issuer),
    sessions: RefreshSessionStore = Depends(get_session_store),
) -> AuthResponse:
    request.app.state.refresh_limiter.check(client_key(request, "refresh"))

    username, new_refresh = await sessions.rotate(req.refreshToken, **_client_meta(request))
    token = issuer.issue(username)
    log_event("refresh_rotated", {"jti": token.jti}, user=username)
    return _auth_response(token, new_refresh)


# -------------------------------
# Logout (revoke refresh token)
# -------------------------------
@router.post("/logout", status_code=204, responses=_ERRORS)
async def logout(
    req: RefreshRequest,
    sessions: RefreshSessionStore = Depends(get_session_store),
) -> Response:
    if not (req.refreshToken or "").strip():
        raise validation_error("refreshToken es requerido.")

    rt = await sessions.find_by_raw(req.refreshToken)
    # Idempotent: unknown or already revoked tokens still answer 204
    if rt is not None and await sessions.revoke(rt.id):
        log_event("logout", {}, user=rt.username)
    return Response(status_code=204)


# -------------------------------
# Validate
# -------------------------------
@router.post("/token/validate", response_model=ValidateResponse, responses=_ERRORS)
async def validate_token(
    request: Request,
    req: Optional[TokenValidateRequest] = None,
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> ValidateResponse:
    token = (req.token if req else None) or ""
    if not token.strip():
        header = request.headers.get("authorization") or ""
        if header.lower().startswith("bearer "):
            token = header[len("bearer "):].strip()

    if not token.strip():
        raise validation_error("Token no proporcionado.")
    return ValidateResponse(valid=True, claims=issuer.decode(token))

