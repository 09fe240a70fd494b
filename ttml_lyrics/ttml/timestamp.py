from __future__ import annotations

import re

# [[H:]M:]S[.fff][s]
_TS_RE = re.compile(r"^(?:(?:(\d+):)?(\d+):)?(\d+)(?:\.(\d+))?s?$")


class TimestampParseError(ValueError):
    pass


def parse_timespan(text: str) -> int:
    """
    Supported:
    - HH:MM:SS.mmm, MM:SS.mmm, SS.mmm (fraction optional)
    - a trailing "s" (TTML offset-time)

    The fraction is read left-aligned: ".5" -> 500ms, ".05" -> 50ms,
    digits past milliseconds are dropped.
    """
    m = _TS_RE.match(text.strip())
    if not m:
        raise TimestampParseError(f"Invalid timestamp: {text!r}")
    hours, minutes, seconds, frac = m.groups()
    h = int(hours) if hours else 0
    mi = int(minutes) if minutes else 0
    s = int(seconds)
    ms = int(frac.ljust(3, "0")[:3]) if frac else 0
    return ((h * 60 + mi) * 60 + s) * 1000 + ms


def format_timestamp(ms: int) -> str:
    ms = max(int(ms), 0)
    h, rem = divmod(ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms2 = divmod(rem, 1_000)
    return f"{h:02d}:{m:02d}:{s:02d}.{ms2:03d}"
