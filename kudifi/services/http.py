import time
import random
from typing import Any, Optional

import httpx

from kudifi.core.errors import UpstreamError
from kudifi.observability.logging import log
from kudifi.settings import settings


def send_request(
    client: httpx.Client,
    service: str,
    method: str,
    url: str,
    *,
    retry: bool = True,
    max_retries: Optional[int] = None,
    **kwargs: Any,
) -> Any:
    """
    Send one request and return the decoded JSON body.

    Idempotent reads retry on timeouts and on transient status codes
    (HTTP_RETRY_STATUS_CODES) with a short jittered backoff. Calls that move
    money pass retry=False: a timeout there may still have enqueued the
    transaction, and sending again risks a double-send.
    """
    retries = int(settings.HTTP_MAX_RETRIES if max_retries is None else max_retries) if retry else 0
    attempt = 0
    last_err = None
    start = time.time()
    while True:
        attempt += 1
        try:
            resp = client.request(method, url, **kwargs)
            if resp.status_code in settings.HTTP_RETRY_STATUS_CODES and attempt <= retries:
                last_err = f"HTTP {resp.status_code}"
            else:
                resp.raise_for_status()
                return resp.json()
        except httpx.TimeoutException as e:
            last_err = e
            if attempt > retries:
                break
        except httpx.HTTPStatusError as e:
            last_err = f"HTTP {e.response.status_code}: {(e.response.text or '')[:200]}"
            break
        except (httpx.HTTPError, ValueError) as e:
            last_err = e
            break
        time.sleep(min(0.2 * attempt, 1.0) + random.uniform(0.0, 0.1))

    elapsed = round(time.time() - start, 3)
    log(
        event="upstream_call_failed",
        service=service,
        method=method,
        url=url,
        attempts=attempt,
        elapsedSec=elapsed,
        error=str(last_err)[:500],
    )
    raise UpstreamError(service, f"{method} {url} failed (attempts={attempt}, elapsed={elapsed}s): {last_err}")
