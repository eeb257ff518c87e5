import pytest

from normalize import math as m


def test_percentiles():
    samples = [1, 2, 3, 4, 5, 6, 7, 8, 9, 100]
    assert round(m.percentile(samples, 50), 2) == 5.5
    assert round(m.percentile(samples, 95), 2) == 59.05
    assert round(m.percentile(samples, 99), 2) == 91.81
    assert m.p100(samples) == 100


def test_percentile_unsorted_and_single():
    assert m.percentile([3, 1, 2], 50) == 2.0
    assert m.percentile([7], 95) == 7.0


def test_percentile_ordering():
    samples = [0.1, 0.5, 0.5, 0.7, 3.0, 0.2, 0.9]
    values = [m.percentile(samples, p) for p in (50, 90, 95, 99, 100)]
    assert values == sorted(values)
    assert values[-1] == 3.0


def test_percentile_errors():
    with pytest.raises(ValueError):
        m.percentile([], 50)
    with pytest.raises(ValueError):
        m.percentile([1, 2, 3], -1)
    with pytest.raises(ValueError):
        m.percentile([1, 2, 3], 101)
