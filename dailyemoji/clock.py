import datetime
import time
from typing import Optional


class SystemClock:
    """Wall clock used for every timing decision on the server.

    Instants are integer milliseconds since the epoch. No monotonicity is
    assumed across processes; callers clamp negative deltas.
    """

    def now_ms(self) -> int:
        return int(time.time() * 1000)


default_clock = SystemClock()


def today_str() -> str:
    return datetime.datetime.now(datetime.timezone.utc).date().isoformat()


def ms_to_iso(ms: Optional[int]) -> Optional[str]:
    if ms is None:
        return None
    dt = datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc)
    return dt.isoformat()
