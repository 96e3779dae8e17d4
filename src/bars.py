# bars.py
"""Fold the raw trade stream into one-second OHLCV bars.

Only the newest bar is ever updated.  A tick whose second is older than the
current bar is dropped rather than patched into history: once the stream has
moved past a second that bar is final, and a second older than the retention
horizon no longer exists at all.
"""

from __future__ import annotations

from collections import deque
from itertools import islice
from typing import Deque, Iterator, Optional

from models import SecondBar, Tick
from utils import logger


class BarWindow:
    """Restartable view over the last ``n`` bars, oldest first.

    With ``closed_only`` the bar still being built is left out.  Nothing is
    copied: every iteration walks the aggregator's deque again, so the view
    always reflects the latest state.
    """

    def __init__(self, bars: Deque[SecondBar], n: int, closed_only: bool = False):
        self._bars = bars
        self._n = max(0, n)
        self._skip = 1 if closed_only else 0

    def _bounds(self) -> tuple[int, int]:
        end = max(0, len(self._bars) - self._skip)
        start = max(0, end - self._n)
        return start, end

    def __len__(self) -> int:
        start, end = self._bounds()
        return end - start

    def __iter__(self) -> Iterator[SecondBar]:
        start, end = self._bounds()
        return islice(self._bars, start, end)

    def __getitem__(self, idx: int) -> SecondBar:
        start, end = self._bounds()
        size = end - start
        if idx < 0:
            idx += size
        if not 0 <= idx < size:
            raise IndexError("bar window index out of range")
        return self._bars[start + idx]


class BarAggregator:
    def __init__(self, retention: int = 120):
        if retention < 1:
            raise ValueError("retention must be positive")
        self.retention = retention
        self._bars: Deque[SecondBar] = deque(maxlen=retention)
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._bars)

    @property
    def last(self) -> Optional[SecondBar]:
        return self._bars[-1] if self._bars else None

    def ingest(self, tick: Tick) -> bool:
        """Add ``tick`` to its bar.

        Returns ``True`` when the tick opened a new second, i.e. the previous
        bar just closed.
        """
        second = tick.timestamp // 1000
        last = self.last
        if last is None or second > last.second:
            # deque(maxlen) evicts the oldest bar on append
            self._bars.append(SecondBar.seed(second, tick))
            return last is not None
        if second == last.second:
            last.add(tick)
            return False

        self.dropped += 1
        logger.debug(
            "late tick dropped | second=%d current=%d oldest=%d",
            second,
            last.second,
            self._bars[0].second,
        )
        return False

    def window(self, n: int, closed_only: bool = False) -> BarWindow:
        return BarWindow(self._bars, n, closed_only=closed_only)
