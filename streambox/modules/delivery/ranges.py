import re
from dataclasses import dataclass
from typing import Optional

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


class RangeNotSatisfiable(Exception):
    def __init__(self, length: int):
        super().__init__(f"Range not satisfiable for length {length}")
        self.length = length


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int  # inclusive

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, total: int) -> str:
        return f"bytes {self.start}-{self.end}/{total}"


def parse_range(header: Optional[str], length: int) -> Optional[ByteRange]:
    """
    Resolve a Range header against a body of `length` bytes.

    Returns None when the whole body should be sent: no header, a malformed
    header, or a multi-range request. Raises RangeNotSatisfiable when the
    range cannot overlap the body.
    """
    if not header:
        return None
    match = _RANGE_RE.match(header)
    if not match:
        return None
    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        # Suffix range: the final N bytes
        suffix = int(last)
        if suffix == 0 or length == 0:
            raise RangeNotSatisfiable(length)
        return ByteRange(max(length - suffix, 0), length - 1)

    start = int(first)
    end = int(last) if last else length - 1
    if last and end < start:
        return None
    if start >= length:
        raise RangeNotSatisfiable(length)
    return ByteRange(start, min(end, length - 1))
