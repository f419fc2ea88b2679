import random
import statistics

import pytest

from slamopt.noise import rand_double, rand_normal


class _Sequence:
    """Deterministic stand-in that hands out preset uniform values."""

    def __init__(self, values):
        self._values = list(values)
        self.used = 0

    def random(self):
        value = self._values[self.used]
        self.used += 1
        return value


def test_rand_double_in_unit_interval():
    rng = random.Random(1)
    values = [rand_double(rng) for _ in range(1000)]
    assert all(0.0 <= v <= 1.0 for v in values)


def test_rand_double_passes_through_generator():
    fake = _Sequence([0.25])
    assert rand_double(fake) == 0.25
    assert fake.used == 1


def test_rand_normal_is_reproducible_with_seed():
    a = [rand_normal(random.Random(38401)) for _ in range(3)]
    b = [rand_normal(random.Random(38401)) for _ in range(3)]
    assert a == b


def test_rand_normal_rejects_points_outside_unit_disc():
    accepted = [0.75, 0.5]
    direct = rand_normal(_Sequence(accepted))
    fake = _Sequence([0.5, 0.5, 1.0, 1.0] + accepted)
    assert rand_normal(fake) == pytest.approx(direct)
    assert fake.used == 6


def test_rand_normal_sign_follows_first_coordinate():
    assert rand_normal(_Sequence([0.75, 0.5])) > 0
    assert rand_normal(_Sequence([0.25, 0.5])) < 0


def test_rand_normal_statistics():
    rng = random.Random(7)
    samples = [rand_normal(rng) for _ in range(20000)]
    assert abs(statistics.fmean(samples)) < 0.05
    assert statistics.pstdev(samples) == pytest.approx(1.0, abs=0.05)