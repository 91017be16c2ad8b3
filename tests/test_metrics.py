from unittest.mock import MagicMock

from kudifi.observability import metrics


def test_increment_is_best_effort():
    r = MagicMock()
    r.incr.side_effect = RuntimeError("down")
    metrics.increment(r, metrics.REQUESTS)
    r.incr.assert_called_once_with("metrics:requests", 1)


def test_snapshot():
    r = MagicMock()
    r.get.side_effect = lambda k: {"metrics:requests": "7", "metrics:transfers:submitted": "2"}.get(k)
    r.lrange.return_value = ["1000", "2000", "3000", "bad"]

    snap = metrics.get_metrics_snapshot(r)
    assert snap["counters"]["requests"] == 7
    assert snap["counters"]["transfers:submitted"] == 2
    assert snap["counters"]["pin:lockouts"] == 0
    assert snap["p50_transfer_latency"] == 2.0
    assert snap["p95_transfer_latency"] == 3.0


def test_latency_list_is_capped():
    r = MagicMock()
    metrics.record_transfer_latency(r, 1234)
    r.lpush.assert_called_once_with(metrics.K_TRANSFER_LAT, 1234)
    r.ltrim.assert_called_once_with(metrics.K_TRANSFER_LAT, 0, 499)
