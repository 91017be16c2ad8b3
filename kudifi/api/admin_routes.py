from fastapi import APIRouter, Depends, Request

from kudifi.api.auth import require_admin_key
from kudifi.observability.metrics import get_metrics_snapshot

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin_key)])


@router.get("/metrics")
def admin_metrics(request: Request):
    """Counters and transfer latency percentiles."""
    return get_metrics_snapshot(request.app.state.ctx.redis)
