"""
OIDC demo identity provider. Mounts the authorization flow, the custom login page, the token,
userinfo, registration and discovery endpoints, and the one-shot /setup route.
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from oidc_provider.accounts import router as accounts_router
from oidc_provider.audit import router as audit_router
from oidc_provider.authorize import router as authorize_router
from oidc_provider.bootstrap import router as setup_router
from oidc_provider.bootstrap import seed_from_env
from oidc_provider.config import Settings
from oidc_provider.errors import InvalidClient, OIDCError, RateLimited
from oidc_provider.login import router as login_router
from oidc_provider.provider import Provider, build_provider
from oidc_provider.registration import router as registration_router
from oidc_provider.token_endpoint import router as token_router
from oidc_provider.userinfo import router as userinfo_router
from oidc_provider.well_known import router as well_known_router

logger = logging.getLogger(__name__)


async def _reap_periodically(provider: Provider, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(provider.sessions.reap_expired)
        except Exception:
            logger.exception("Session reaper run failed")


def oidc_error_handler(request: Request, exc: OIDCError) -> JSONResponse:
    """Every provider error becomes a structured OAuth error body; none reaches the client raw."""
    headers = {"Cache-Control": "no-store"}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
    if isinstance(exc, InvalidClient):
        headers["WWW-Authenticate"] = 'Basic realm="token"'
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)


def create_app(settings: Settings | None = None, provider: Provider | None = None) -> FastAPI:
    """
    Build the app. A given provider is used as is (tests); otherwise one is built from settings
    when the app starts and closed when it stops.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "provider", None) is None
        if owned:
            app.state.provider = build_provider(settings)
            seed_from_env(app.state.provider.credentials)
        current: Provider = app.state.provider
        reaper = None
        if current.settings.reaper_interval > 0:
            reaper = asyncio.create_task(_reap_periodically(current, current.settings.reaper_interval))
        logger.info("OIDC Provider running at %s", current.settings.issuer)
        logger.info("Visit %s to generate Client ID/Secret", current.settings.url("/setup"))
        logger.info("Discovery URL: %s", current.settings.url("/.well-known/openid-configuration"))
        yield
        if reaper is not None:
            reaper.cancel()
            with suppress(asyncio.CancelledError):
                await reaper
        if owned:
            current.close()
            app.state.provider = None

    app = FastAPI(title="OIDC Provider", version="0.1.0", lifespan=lifespan)
    if provider is not None:
        app.state.provider = provider
    app.add_exception_handler(OIDCError, oidc_error_handler)
    app.include_router(authorize_router, tags=["authorize"])
    app.include_router(login_router, tags=["login"])
    app.include_router(accounts_router, tags=["accounts"])
    app.include_router(token_router, tags=["token"])
    app.include_router(userinfo_router, tags=["userinfo"])
    app.include_router(registration_router, tags=["registration"])
    app.include_router(well_known_router, tags=["well-known"])
    app.include_router(setup_router)
    app.include_router(audit_router)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "oidc_provider"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "oidc_provider.main:app",
        host="127.0.0.1",
        port=4000,
        reload=True,
    )
