"""
HTTP Range header resolution for seekable video playback.

Only single byte ranges of the form ``bytes=<start>-<end>`` are supported,
with ``<end>`` optional. Anything else is treated as malformed and answered
with 416 rather than silently serving the whole file.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d+)\s*-\s*(\d*)\s*$", re.IGNORECASE)


class RangeKind(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    UNSATISFIABLE = "unsatisfiable"


@dataclass(frozen=True)
class RangeResult:
    """
    Outcome of resolving a Range header against a resource length.

    ``start``/``end`` are inclusive offsets and are only set for PARTIAL.
    """

    kind: RangeKind
    total_length: int
    start: Optional[int] = None
    end: Optional[int] = None

    @property
    def length(self) -> int:
        """Number of bytes the response body will carry."""
        if self.kind is RangeKind.PARTIAL:
            return self.end - self.start + 1
        if self.kind is RangeKind.FULL:
            return self.total_length
        return 0

    @property
    def content_range(self) -> Optional[str]:
        if self.kind is RangeKind.PARTIAL:
            return f"bytes {self.start}-{self.end}/{self.total_length}"
        if self.kind is RangeKind.UNSATISFIABLE:
            return f"bytes */{self.total_length}"
        return None

    @classmethod
    def full(cls, total_length: int) -> "RangeResult":
        return cls(RangeKind.FULL, total_length)

    @classmethod
    def unsatisfiable(cls, total_length: int) -> "RangeResult":
        return cls(RangeKind.UNSATISFIABLE, total_length)


def resolve_range(range_header: Optional[str], total_length: int) -> RangeResult:
    """
    Resolve a Range header against a resource of ``total_length`` bytes.

    Args:
        range_header: Raw header value, or None when absent
        total_length: Size of the resource in bytes

    Returns:
        FULL when no header was sent, PARTIAL with inclusive bounds for a
        valid range, UNSATISFIABLE for malformed or out-of-bounds ranges.
    """
    if total_length < 0:
        raise ValueError("total_length must be non-negative")

    if range_header is None or not range_header.strip():
        return RangeResult.full(total_length)

    match = _RANGE_RE.match(range_header)
    if not match:
        return RangeResult.unsatisfiable(total_length)

    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else total_length - 1

    if start >= total_length or end >= total_length or start > end:
        return RangeResult.unsatisfiable(total_length)

    return RangeResult(RangeKind.PARTIAL, total_length, start, end)
