"""Random number helpers used to perturb problem data."""

from __future__ import annotations

import math
import random
from typing import Optional


def rand_double(rng: Optional[random.Random] = None) -> float:
    """Return a uniformly distributed value in [0, 1)."""
    return (rng or random).random()


def rand_normal(rng: Optional[random.Random] = None) -> float:
    """Return a standard normal sample using the Marsaglia polar method."""
    while True:
        x1 = 2.0 * rand_double(rng) - 1.0
        x2 = 2.0 * rand_double(rng) - 1.0
        w = x1 * x1 + x2 * x2
        if 0.0 < w < 1.0:
            break
    return x1 * math.sqrt((-2.0 * math.log(w)) / w)