"""Rolling z-score analytics for the calendar spread.

Keeps a bounded window of recent spreads and reports how many standard
deviations the latest value sits from the window mean, with a coarse
interpretation bucket. Below ``min_points`` observations, or with a flat
window, the z-score is 0 and the interpretation says why.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class SpreadZScore:
    z_score: float
    interpretation: str
    extreme_level: str
    data_points: int
    mean: float | None = None
    std_dev: float | None = None
    percentile: int | None = None


def interpret_z_score(z: float) -> str:
    a = abs(z)
    if a > 3:
        return "EXTREMELY_HIGH" if z > 0 else "EXTREMELY_LOW"
    if a > 2:
        return "VERY_HIGH" if z > 0 else "VERY_LOW"
    if a > 1.5:
        return "HIGH" if z > 0 else "LOW"
    if a > 1:
        return "MODERATELY_HIGH" if z > 0 else "MODERATELY_LOW"
    return "NORMAL"


def extreme_level(z: float) -> str:
    a = abs(z)
    if a > 2.5:
        return "EXTREME"
    if a > 2:
        return "VERY_UNUSUAL"
    if a > 1.5:
        return "UNUSUAL"
    if a > 1:
        return "NOTABLE"
    return "NORMAL"


class SpreadAnalyzer:
    """Bounded history of calendar spreads with z-score scoring."""

    def __init__(self, max_history: int = 100, min_points: int = 10) -> None:
        self._history: deque[float] = deque(maxlen=max_history)
        self.min_points = min_points

    def __len__(self) -> int:
        return len(self._history)

    def update(self, spread: float) -> SpreadZScore:
        """Append *spread* to the window and score it against the window."""
        self._history.append(spread)
        n = len(self._history)
        if n < self.min_points:
            return SpreadZScore(0.0, "INSUFFICIENT_DATA", "NORMAL", n)

        values = np.fromiter(self._history, dtype=float)
        mean = float(np.mean(values))
        std = float(np.std(values))
        if std == 0:
            return SpreadZScore(0.0, "NO_VOLATILITY", "NORMAL", n, mean, std)

        z = (spread - mean) / std
        percentile = int(round(np.count_nonzero(values <= spread) / n * 100))
        return SpreadZScore(
            z, interpret_z_score(z), extreme_level(z), n, mean, std, percentile
        )

    def reset(self) -> None:
        self._history.clear()
