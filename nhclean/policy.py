# nhclean/policy.py
"""
policy.py - retention policy and humantime-style durations

- parse_duration("2d 3h") -> timedelta
- format_duration(timedelta) -> "2d 3h"
- RetentionPolicy(keep, keep_since): immutable, shared by the generation planner and the gcroot scanner
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Union

_UNITS: Dict[str, float] = {}
for _names, _seconds in (
    (("ns", "nsec"), 1e-9),
    (("us", "usec"), 1e-6),
    (("ms", "msec"), 1e-3),
    (("s", "sec", "secs", "second", "seconds"), 1),
    (("m", "min", "mins", "minute", "minutes"), 60),
    (("h", "hr", "hrs", "hour", "hours"), 3600),
    (("d", "day", "days"), 86400),
    (("w", "week", "weeks"), 7 * 86400),
    (("M", "month", "months"), 30.44 * 86400),
    (("y", "year", "years"), 365.25 * 86400),
):
    for _n in _names:
        _UNITS[_n] = _seconds

_TERM_RE = re.compile(r"\s*([0-9]+)\s*([A-Za-z]+)\s*", re.ASCII)


def _to_timedelta(seconds: float, text: Any) -> timedelta:
    try:
        return timedelta(seconds=seconds)
    except OverflowError:
        raise ValueError(f"duration {text!r} out of range")


def parse_duration(text: Union[str, int, timedelta]) -> timedelta:
    """Parse '1h', '2d 3h', '30min', '1w'. Raises ValueError on anything else."""
    if isinstance(text, timedelta):
        return text
    if isinstance(text, int) and not isinstance(text, bool):
        if text < 0:
            raise ValueError(f"negative duration: {text}")
        return _to_timedelta(text, text)
    s = str(text).strip()
    if s == "0":
        return timedelta(0)
    if not s:
        raise ValueError("empty duration")
    total = 0.0
    pos = 0
    while pos < len(s):
        m = _TERM_RE.match(s, pos)
        if not m or m.end() == pos:
            raise ValueError(f"invalid duration {text!r}")
        unit = m.group(2)
        # 'M' is months, every other unit is case-insensitive
        seconds = _UNITS.get(unit) if unit == "M" else _UNITS.get(unit.lower())
        if seconds is None:
            raise ValueError(f"unknown time unit {unit!r} in duration {text!r}")
        try:
            total += int(m.group(1)) * seconds
        except OverflowError:
            raise ValueError(f"duration {text!r} out of range")
        pos = m.end()
    return _to_timedelta(total, text)


def format_duration(td: timedelta) -> str:
    total = int(td.total_seconds())
    if total <= 0:
        return "0s"
    parts = []
    for suffix, size in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
        n, total = divmod(total, size)
        if n:
            parts.append(f"{n}{suffix}")
    return " ".join(parts)


@dataclass(frozen=True)
class RetentionPolicy:
    keep: int = 1
    keep_since: timedelta = timedelta(0)

    def __post_init__(self):
        if self.keep < 0:
            raise ValueError("keep must be >= 0")
        if self.keep_since < timedelta(0):
            raise ValueError("keep_since must be >= 0")

    @classmethod
    def from_values(cls, keep: Any, keep_since: Any) -> "RetentionPolicy":
        return cls(keep=int(keep), keep_since=parse_duration(keep_since))

    def is_recent(self, age_seconds: float) -> bool:
        """True when an entry of this age falls inside the keep_since window."""
        return 0 <= age_seconds <= self.keep_since.total_seconds()

    def describe(self) -> str:
        return f"keep={self.keep} keep_since={format_duration(self.keep_since)}"

    def to_dict(self) -> Dict[str, Any]:
        return {"keep": self.keep, "keep_since": format_duration(self.keep_since)}
