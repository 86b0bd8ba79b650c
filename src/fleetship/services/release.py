"""Release identifier generation."""

from datetime import datetime, timezone
from typing import Callable, Optional


class ReleaseIdGenerator:
    """Produces time-ordered release ids (UTC, microsecond resolution, 20 digits).

    Ids from one generator are strictly increasing even when the clock does
    not advance between calls.
    """

    FORMAT = "%Y%m%d%H%M%S%f"

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._last: Optional[str] = None

    def generate(self) -> str:
        candidate = self.clock().strftime(self.FORMAT)
        if self._last is not None and candidate <= self._last:
            candidate = str(int(self._last) + 1)
        self._last = candidate
        return candidate
