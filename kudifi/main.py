from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import PlainTextResponse
from fastapi.middleware.cors import CORSMiddleware

from kudifi.api.routes import router, GENERIC_FAILURE
from kudifi.api.admin_routes import router as admin_router
from kudifi.context import build_context
from kudifi.core.dispatcher import MenuDispatcher
from kudifi.observability.logging import log
from kudifi.settings import settings, validate_settings

# Refuse to start without engine and cache credentials
validate_settings(settings)

app = FastAPI(title=f"{settings.APP_NAME} USSD API")

origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.state.ctx = build_context(settings)
app.state.dispatcher = MenuDispatcher(app.state.ctx)

app.include_router(router)
app.include_router(admin_router)


# Anything that escapes a route still ends the USSD session cleanly.
@app.exception_handler(Exception)
async def universal_exception_handler(request: Request, exc: Exception):
    log(event="unhandled_exception", path=request.url.path, errorType=type(exc).__name__, error=str(exc)[:500])
    return PlainTextResponse(GENERIC_FAILURE, status_code=200)


log(
    event="boot",
    app=settings.APP_NAME,
    chainId=settings.CHAIN_ID,
    pinMaxAttempts=settings.PIN_MAX_ATTEMPTS,
    pinLockoutSec=settings.PIN_LOCKOUT_SEC,
)
