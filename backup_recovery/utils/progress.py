"""
Progress Reporting Utilities

Symbols that tell concurrent transfers apart in log output, and a heartbeat
that logs every N records during long restores.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

GLYPHS = "⚀∅⚁®⚂©⚃℗⚄❀☀☁☂♩❖♫★☆☉☘☢✪♔♕♖♗♘⚑"


def choose_symbol(index: int) -> str:
    """Symbol for the task at ``index``; cycles through the glyph set."""
    return GLYPHS[index % len(GLYPHS)]


class Heartbeat:
    """
    Log a progress line every ``interval`` records.

    Example:
        ```python
        heartbeat = Heartbeat("abc/def -> abc/qqq", interval=1000)
        for row in rows:
            await insert(row)
            heartbeat.tick()
        ```
    """

    def __init__(self, label: str, interval: int = 1000, log: Optional[logging.Logger] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.label = label
        self.interval = interval
        self.count = 0
        self.beats = 0
        self._logger = log or logger

    def tick(self, n: int = 1) -> None:
        """Record ``n`` processed records, logging on each interval boundary."""
        before = self.count // self.interval
        self.count += n
        after = self.count // self.interval
        if after > before:
            self.beats += after - before
            self._logger.info(f"{self.label}: {self.count} records processed")
