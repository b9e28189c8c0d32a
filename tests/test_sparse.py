"""
Unit tests for the dense/sparse algorithm selection and the sparse accumulator.

"""

import threading

import numpy as np
import pytest

from chhaya.sparse import (
    Algorithm,
    SelectorThresholds,
    SparseAccumulator,
    estimate_fill_ratio,
    select_algorithm,
)


# ──────────────────────────────────────────────────────────────
# Selection policy
# ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "res, fill, expected",
    [
        (4096, 0.005, Algorithm.SPARSE),
        (8192, 0.009, Algorithm.SPARSE),
        (4096, 0.02, Algorithm.ADAPTIVE_SPARSE),
        (2048, 0.005, Algorithm.ADAPTIVE_SPARSE),
        (2048, 0.10, Algorithm.HYBRID),
        (2048, 0.50, Algorithm.DENSE),
        (1024, 0.001, Algorithm.DENSE),
    ],
)
def test_select_algorithm_policy(res, fill, expected):
    decision = select_algorithm(1000, res, fill)
    assert decision.algorithm is expected
    assert not decision.forced


def test_select_algorithm_overrides():
    dense = select_algorithm(10, 8192, 0.0, override="force-dense")
    assert dense.algorithm is Algorithm.DENSE and dense.forced
    sparse = select_algorithm(10, 16, 1.0, override="force-sparse")
    assert sparse.algorithm is Algorithm.SPARSE and sparse.forced


def test_select_algorithm_custom_thresholds():
    t = SelectorThresholds(hybrid_resolution=64, hybrid_fill=0.5)
    assert select_algorithm(10, 64, 0.3, thresholds=t).algorithm is Algorithm.HYBRID


def test_decision_records_statistics():
    decision = select_algorithm(12, 4096, 0.001, total_bins=12000, expected_filled_bins=12)
    record = decision.as_dict()
    assert record["algorithm"] == "sparse"
    assert record["n_cells"] == 12
    assert record["total_bins"] == 12000
    assert record["expected_filled_bins"] == 12


# ──────────────────────────────────────────────────────────────
# Fill ratio estimate
# ──────────────────────────────────────────────────────────────

def test_fill_ratio_bounded_by_cell_count():
    ratio, expected = estimate_fill_ratio(np.array([0, 9]), np.array([0, 9]), (10, 10))
    assert expected == 2
    assert ratio == pytest.approx(0.02)


def test_fill_ratio_bounded_by_bounding_box():
    i1 = np.repeat(np.arange(2), 50)
    i2 = np.tile(np.arange(2), 50)
    ratio, expected = estimate_fill_ratio(i1, i2, (4, 16))
    assert expected == 4
    assert ratio == pytest.approx(4 / 64)


def test_fill_ratio_empty():
    assert estimate_fill_ratio(np.array([], dtype=int), np.array([], dtype=int), (8, 8)) == (0.0, 0)


# ──────────────────────────────────────────────────────────────
# SparseAccumulator
# ──────────────────────────────────────────────────────────────

def test_accumulator_insert_or_accumulate():
    acc = SparseAccumulator((4, 4))
    acc.add(1, 2, 3.0)
    acc.add(1, 2, 1.5)
    acc.add(0, 0, 1.0)
    assert acc.nnz == 2
    dense = acc.to_dense()
    assert dense[1, 2] == 4.5
    assert dense[0, 0] == 1.0
    assert dense.sum() == 5.5


def test_accumulator_drops_small_values():
    acc = SparseAccumulator((4, 4), drop_threshold=1e-12)
    acc.add(1, 1, 1e-13)
    acc.add_many(np.array([2, 3]), np.array([2, 3]), np.array([5e-13, 2.0]))
    assert acc.nnz == 1
    assert acc.dropped == 2
    assert acc.to_dense()[3, 3] == 2.0


def test_accumulator_batched_duplicates():
    acc = SparseAccumulator((3, 5))
    acc.add_many(np.array([0, 0, 2, 0]), np.array([4, 4, 1, 4]), np.array([1.0, 2.0, 3.0, 4.0]))
    dense = acc.to_dense()
    assert acc.nnz == 2
    assert dense[0, 4] == 7.0
    assert dense[2, 1] == 3.0


def test_accumulator_to_dense_overwrites_buffer():
    acc = SparseAccumulator((2, 2))
    acc.add(1, 0, 2.0)
    buf = np.full((2, 2), 9.0)
    out = acc.to_dense(out=buf)
    assert out is buf
    np.testing.assert_array_equal(out, [[0.0, 0.0], [2.0, 0.0]])
    with pytest.raises(ValueError):
        acc.to_dense(out=np.zeros((3, 3)))


def test_accumulator_concurrent_inserts():
    acc = SparseAccumulator((8, 8))

    def insert():
        for i in range(200):
            acc.add(i % 8, (i * 3) % 8, 1.0)

    threads = [threading.Thread(target=insert) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert acc.to_dense().sum() == 800.0


def test_accumulator_clear():
    acc = SparseAccumulator((2, 2))
    acc.add(0, 0, 1.0)
    acc.clear()
    assert len(acc) == 0
    assert not acc.to_dense().any()
