from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from kudifi.api.normalize import normalize_ussd_payload
from kudifi.api.schemas import HealthResponse, UssdRequest
from kudifi.core.menu import end
from kudifi.observability.logging import log

router = APIRouter()

GREETING = "Hello, World!"
GENERIC_FAILURE = end("Something went wrong. Please try again later.")


async def _read_payload(request: Request) -> dict:
    """Gateways post either JSON or a urlencoded form; accept both."""
    content_type = (request.headers.get("content-type") or "").lower()
    if "application/json" in content_type:
        payload = await request.json()
        return payload if isinstance(payload, dict) else {}
    form = await request.form()
    return dict(form)


@router.get("/", response_class=PlainTextResponse)
async def root():
    return GREETING


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse()


@router.post("/", response_class=PlainTextResponse)
async def ussd(request: Request):
    """
    Single USSD callback. Always 200 with a body starting CON or END: the
    gateway shows whatever we return, so a stack trace or hung session is never an option.
    """
    try:
        payload = await _read_payload(request)
        req = UssdRequest.model_validate(normalize_ussd_payload(payload))
        dispatcher = request.app.state.dispatcher
        return await run_in_threadpool(dispatcher.handle, req)
    except Exception as e:
        log(event="ussd_request_failed", errorType=type(e).__name__, error=str(e)[:500])
        return GENERIC_FAILURE
