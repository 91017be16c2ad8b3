"""
Operational counters
--------------------
Lightweight Redis counters and a capped latency list for transfer execution,
read back by /admin/metrics. Writes are best-effort: a Redis hiccup while
counting must never turn a successful USSD reply into a failure.
"""
from __future__ import annotations
import time
from typing import List, Tuple

from kudifi.observability.logging import log

PREFIX = "metrics:"

REQUESTS = "requests"
TRANSFERS_SUBMITTED = "transfers:submitted"
TRANSFERS_FAILED = "transfers:failed"
DONATIONS = "donations"
PURCHASES = "purchases:recorded"
WALLETS_CREATED = "wallets:created"
PIN_FAILURES = "pin:failures"
LOCKOUTS = "pin:lockouts"

COUNTERS = (
    REQUESTS,
    TRANSFERS_SUBMITTED,
    TRANSFERS_FAILED,
    DONATIONS,
    PURCHASES,
    WALLETS_CREATED,
    PIN_FAILURES,
    LOCKOUTS,
)

K_TRANSFER_LAT = f"{PREFIX}transfers:latencies"  # LPUSH ms
_MAX_SAMPLES = 500


def _key(name: str) -> str:
    return f"{PREFIX}{name}"


def _percentile(data: List[float], p: float) -> float:
    """Deterministic percentile (nearest-rank on sorted data)."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])


def increment(r, name: str, amount: int = 1) -> None:
    try:
        r.incr(_key(name), amount)
    except Exception as e:
        log(event="metrics_write_failed", metric=name, error=str(e)[:200])


def record_transfer_latency(r, ms: int) -> None:
    try:
        r.lpush(K_TRANSFER_LAT, int(ms))
        r.ltrim(K_TRANSFER_LAT, 0, _MAX_SAMPLES - 1)
    except Exception as e:
        log(event="metrics_write_failed", metric="transfer_latency", error=str(e)[:200])


def _read_latencies(r) -> List[float]:
    out: List[float] = []
    for x in r.lrange(K_TRANSFER_LAT, 0, _MAX_SAMPLES - 1) or []:
        try:
            out.append(float(x) / 1000.0)
        except (TypeError, ValueError):
            continue
    return out


def _p50_p95(latencies_s: List[float]) -> Tuple[float, float]:
    if not latencies_s:
        return 0.0, 0.0
    return _percentile(latencies_s, 0.50), _percentile(latencies_s, 0.95)


def get_metrics_snapshot(r) -> dict:
    counters = {name: int(r.get(_key(name)) or 0) for name in COUNTERS}
    p50, p95 = _p50_p95(_read_latencies(r))
    return {
        "counters": counters,
        "p50_transfer_latency": round(p50, 3),
        "p95_transfer_latency": round(p95, 3),
        "snapshot_at": int(time.time()),
    }
