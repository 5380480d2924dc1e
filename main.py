#main.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware

from api.auth import router as auth_router
from api.notifications import router as notifications_router
from api.sessions import router as sessions_router
from core.auth_utils import TokenIssuer, get_current_claims
from core.credentials import CredentialStore, DatabaseCredentialStore
from core.database import build_engine, build_sessionmaker, create_tables
from core.errors import register_error_handlers
from core.notifier import ChangeNotifier, ListenerRegistry
from core.rate_limit import TokenBucketLimiter
from settings import Settings, load_settings
from telemetry.logger import configure_logging


def create_app(
    settings: Optional[Settings] = None,
    credential_store: Optional[CredentialStore] = None,
) -> FastAPI:
    """
    Build the application. Settings are read once here (fail fast when the
    JWT/refresh secrets are missing) and shared read-only through app.state.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    engine = build_engine(settings.database_url, settings.db_timeout_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await create_tables(engine)
        yield
        await engine.dispose()

    app = FastAPI(title="Advance API", lifespan=lifespan)

    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = build_sessionmaker(engine)
    app.state.token_issuer = TokenIssuer(
        settings, credential_store or DatabaseCredentialStore(app.state.sessionmaker)
    )
    app.state.notifier = ChangeNotifier(ListenerRegistry(), settings.notify_send_timeout_seconds)
    app.state.login_limiter = TokenBucketLimiter(rate=5, per_seconds=60, capacity=10)      # 5/min, burst 10
    app.state.refresh_limiter = TokenBucketLimiter(rate=10, per_seconds=60, capacity=20)   # 10/min, burst 20

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(auth_router)
    app.include_router(sessions_router)
    app.include_router(notifications_router)

    @app.get("/online")
    def online() -> bool:
        return True

    @app.get("/me")
    def get_me(claims: Dict[str, Any] = Depends(get_current_claims)):
        return {"username": claims["sub"], "tokenId": claims["jti"], "message": "Token is valid!"}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000)
