import math

from windowbatch.math import Kahan


def test_add_returns_self():
    acc = Kahan()
    assert acc.add(1.0) is acc
    assert acc.value == 1.0


def test_add_no_worse_than_naive():
    xs = [0.1] * 1_000
    acc = Kahan()
    naive = 0.0
    for x in xs:
        acc.add(x)
        naive += x

    exact = math.fsum(xs)
    assert abs(acc.value - exact) <= abs(naive - exact)


def test_add_small_after_large():
    acc = Kahan(1.0)
    for _ in range(10_000):
        acc.add(1e-16)

    assert math.isclose(acc.value, 1.0 + 1e-12, rel_tol=1e-15)


def test_merge():
    left = Kahan()
    right = Kahan()
    for x in [1.0, 2.0, 3.0]:
        left.add(x)
    for x in [0.5, 0.25]:
        right.add(x)

    assert left.merge(right) is left
    assert left.value == 6.75
    assert right.value == 0.75


def test_nan_propagates():
    acc = Kahan().add(1.0).add(math.nan)
    assert math.isnan(acc.value)


def test_inf_propagates():
    acc = Kahan().add(1.0).add(math.inf)
    assert not math.isfinite(acc.value)
