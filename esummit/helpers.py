import random
import re
import string
import time
import uuid
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def from_iso(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def format_scan_time(ts: float) -> str:
    # e.g. "03:05 PM", venue local time
    return datetime.fromtimestamp(ts, tz=IST).strftime("%I:%M %p")


def _base36(n: int) -> str:
    digits = string.digits + string.ascii_uppercase
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


def new_qr_secret() -> str:
    millis = int(now_ts() * 1000)
    rnd = _base36(random.SystemRandom().getrandbits(40))
    return f"TICKET_{millis}_{rnd}"


def pending_qr_secret(index: int) -> str:
    return f"pending_{int(now_ts() * 1000)}_{index}_{uuid.uuid4().hex[:6]}"
