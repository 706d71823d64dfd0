import json
from unittest.mock import patch, MagicMock

from redis import RedisError

from paylite.observability.logging import log
from paylite.observability.metrics import Metrics, _percentile
from paylite.settings import settings


def test_log_redacts_phone(capsys):
    with patch.object(settings, "ENABLE_PII_REDACTION", True):
        log(event="transaction_created", transactionId="t1", userPhone="9876543210")
    line = json.loads(capsys.readouterr().out.strip())
    assert line["event"] == "transaction_created"
    assert line["transactionId"] == "t1"
    assert line["userPhone"] == "[REDACTED:10chars]"


def test_log_without_redaction(capsys):
    with patch.object(settings, "ENABLE_PII_REDACTION", False):
        log(event="transaction_created", userPhone="9876543210")
    line = json.loads(capsys.readouterr().out.strip())
    assert line["userPhone"] == "9876543210"


def test_memory_metrics_snapshot():
    m = Metrics()
    m.increment_created()
    m.increment_created()
    m.increment_confirmed()
    m.increment_outcome("success")
    for ms in (10, 20, 30, 40):
        m.record_lag(ms)

    snap = m.snapshot()
    assert snap["created"] == 2
    assert snap["confirmed"] == 1
    assert snap["outcomes"] == {"failed": 0, "pending": 0, "success": 1}
    assert snap["p50SchedulerLagMs"] == 20.0
    assert snap["p95SchedulerLagMs"] == 40.0


def test_redis_metrics_snapshot():
    mr = MagicMock()
    mr.get.side_effect = lambda k: {
        "metrics:txn:created": "12",
        "metrics:txn:confirmed": "10",
        "metrics:txn:outcome:success": "6",
    }.get(k)
    mr.lrange.return_value = ["100", "200", "300"]

    snap = Metrics(mr).snapshot()
    assert snap["created"] == 12
    assert snap["confirmed"] == 10
    assert snap["outcomes"]["success"] == 6
    assert snap["outcomes"]["failed"] == 0
    assert snap["p50SchedulerLagMs"] == 200.0


def test_redis_metrics_are_best_effort():
    mr = MagicMock()
    mr.incr.side_effect = RedisError("down")
    mr.lpush.side_effect = RedisError("down")
    m = Metrics(mr)
    m.increment_created()
    m.record_lag(5)


def test_percentile_nearest_rank():
    assert _percentile([], 0.5) == 0.0
    assert _percentile([5.0], 0.95) == 5.0
    assert _percentile([1.0, 2.0, 3.0, 4.0], 0.5) == 2.0
