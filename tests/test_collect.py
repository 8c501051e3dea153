import numpy as np
import pandas as pd
import pytest

from pariter.config import PoolConfig
from pariter.collect import iterate_as_array, iterate_as_dict, iterate_as_series
from tests.helpers import double, fail_on_three, requires_fork


@pytest.mark.parametrize("workers", [0, pytest.param(3, marks=requires_fork)])
def test_array_restores_input_order(workers):
    data = list(range(25))
    assert iterate_as_array(double, data, workers) == [v * 2 for v in data]


@pytest.mark.parametrize("workers", [0, pytest.param(3, marks=requires_fork)])
def test_dict_uses_natural_keys(workers):
    data = {"a": 1, "b": 2, "c": 3}
    assert iterate_as_dict(double, data, workers) == {"a": 2, "b": 4, "c": 6}


def test_array_from_sparse_integer_keys():
    pairs = iter([(3, "d"), (0, "a")])
    assert iterate_as_array(lambda k, v: v.upper(), pairs, 0) == ["A", None, None, "D"]


def test_array_rejects_non_integer_keys():
    with pytest.raises(TypeError):
        iterate_as_array(double, {"a": 1}, 0)


@requires_fork
def test_array_keeps_slots_of_lost_items():
    out = iterate_as_array(fail_on_three, [1, 2, 3, 4, 5], 2)
    assert out == [2, 4, None, 8, 10]


def test_series_is_sorted_by_key():
    s = pd.Series([3.0, 1.0, 2.0], index=["c", "a", "b"])
    out = iterate_as_series(lambda k, v: v * 10, s, 0, name="x10")
    assert list(out.index) == ["a", "b", "c"]
    assert out.name == "x10"
    np.testing.assert_allclose(out.values, [10.0, 20.0, 30.0])


@requires_fork
def test_series_with_datetime_index():
    idx = pd.date_range("2024-01-01", periods=6, freq="D")
    s = pd.Series(np.arange(6, dtype=float), index=idx)
    out = iterate_as_series(double, s, 3)
    assert list(out.index) == list(idx)
    np.testing.assert_allclose(out.values, s.values * 2)


def test_series_from_empty_input():
    out = iterate_as_series(double, [], 0)
    assert out.empty
    assert out.dtype == object


def test_progress_bar(capsys):
    out = iterate_as_array(double, [1, 2, 3], 0, progress=True, desc="doubling")
    assert out == [2, 4, 6]
    assert "doubling" in capsys.readouterr().err


def test_collectors_accept_config():
    assert iterate_as_dict(double, [1], config=PoolConfig(workers=0)) == {0: 2}
