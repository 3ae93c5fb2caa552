"""Seeded random noise used to perturb problem parameters."""

from __future__ import annotations

import math
import random
from typing import Sequence

import numpy as np


class NoiseSource:
    """A reproducible stream of uniform and Gaussian samples."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(seed)

    def rand_double(self) -> float:
        """Return a uniform sample in [0, 1]."""
        return self._rng.random()

    def rand_normal(self) -> float:
        """Return a standard normal sample using the polar method."""
        while True:
            x1 = 2.0 * self.rand_double() - 1.0
            x2 = 2.0 * self.rand_double() - 1.0
            w = x1 * x1 + x2 * x2
            if 0.0 < w < 1.0:
                break
        w = math.sqrt((-2.0 * math.log(w)) / w)
        return x1 * w

    def perturb_point3(self, sigma: float, point: Sequence[float]) -> np.ndarray:
        """Return ``point`` with Gaussian noise of deviation ``sigma`` added to each coordinate."""
        arr = np.asarray(point, dtype=float)
        if arr.shape != (3,):
            raise ValueError(f"point must have 3 elements, got shape {arr.shape}")
        return arr + np.array([self.rand_normal() * sigma for _ in range(3)])