import time
from datetime import datetime, timezone, timedelta

def now_ms() -> int:
    return int(time.time() * 1000)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)

def from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)

def after(dt: datetime, seconds: float = 0.0, ms: int = 0) -> datetime:
    return dt + timedelta(seconds=float(seconds), milliseconds=int(ms))

def to_iso(dt: datetime) -> str:
    """
    Render an aware datetime as ISO-8601 UTC with millisecond precision and a
    trailing 'Z', e.g. 2024-05-01T10:00:00.000Z.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"

def parse_iso(ts: str) -> datetime:
    """
    Parse an ISO-8601 string (trailing 'Z' supported) into an aware UTC datetime.
    Naive values are treated as UTC.
    """
    s = ts.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
