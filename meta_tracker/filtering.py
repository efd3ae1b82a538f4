"""Outlier-rejecting rolling average over 3D samples."""

from __future__ import annotations

import numpy as np


class FilteredSample3:
    """Windowed mean that drops samples far from the window's own mean.

    Every ``add_sample`` call overwrites the oldest slot of a ring of
    ``sample_count`` vectors, then averages only the slots whose squared
    distance to the mean of the whole window is at most the average squared
    distance. One trimming pass, not a median. With ``sample_count=1`` the
    filter is a passthrough.
    """

    def __init__(self, x: float = 0.0, y: float = 0.0, z: float = 0.0, sample_count: int = 1):
        if sample_count < 1:
            raise ValueError("sample_count must be >= 1")
        initial = np.array([x, y, z], dtype=np.float64)
        self._idx = 0
        self._samples = np.tile(initial, (sample_count, 1))
        self._sq_dist = np.zeros(sample_count, dtype=np.float64)
        self._average = initial.copy()
        self._value = initial.copy()

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def value(self) -> np.ndarray:
        return self._value.copy()

    def add_sample(self, sample) -> np.ndarray:
        sample = np.asarray(sample, dtype=np.float64).reshape(3)
        n = len(self._samples)

        self._average = self._average + (sample - self._samples[self._idx]) / n
        self._samples[self._idx] = sample
        self._idx = (self._idx + 1) % n

        self._sq_dist = np.sum((self._samples - self._average) ** 2, axis=1)

        included = self._inclusion_mask(self._sq_dist)
        # equal deviations can all round above their own mean; keep the last output
        if np.any(included):
            self._value = self._samples[included].mean(axis=0)
        return self.value

    @staticmethod
    def _inclusion_mask(sq_dist: np.ndarray) -> np.ndarray:
        return sq_dist <= float(sq_dist.mean())
