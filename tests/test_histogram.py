"""
Unit tests for per-level binning.

"""

import numpy as np
import pytest

from chhaya.cells import CellTable
from chhaya.errors import LevelDataError
from chhaya.grid import GridSpec
from chhaya.histogram import LevelBinner
from chhaya.pool import BufferSource, MemoryPool
from chhaya.sparse import Algorithm, SelectorThresholds


# ──────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────

def make_spec(res=8, **kwargs):
    table = CellTable([3], [0], [0], [0])
    return GridSpec.build(table, res=res, **kwargs)


def three_cells():
    i1 = np.array([0, 0, 7])
    i2 = np.array([0, 0, 7])
    w = np.array([1.0, 2.0, 3.0])
    quantities = {
        "v": (np.array([10.0, 20.0, 30.0]), True),
        "m": (np.array([1.0, 1.0, 1.0]), False),
    }
    return i1, i2, w, quantities


# ──────────────────────────────────────────────────────────────
# Dense binning
# ──────────────────────────────────────────────────────────────

def test_bin_level_dense():
    binner = LevelBinner(make_spec())
    binned = binner.bin_level(3, *three_cells())

    assert binned.decision.algorithm is Algorithm.DENSE
    assert binned.shape == (8, 8)
    assert binned.weight[0, 0] == 3.0
    assert binned.weight[7, 7] == 3.0
    # numerator is value * weight on the same bins
    assert binned.values["v"][0, 0] == 50.0
    assert binned.values["v"][7, 7] == 90.0
    # collapsed quantity is summed as is
    assert binned.values["m"][0, 0] == 2.0
    assert binned.filled_bins == 2
    assert binned.skipped_ratio == 0.0


def test_numerator_and_denominator_share_bins():
    rng = np.random.default_rng(3)
    i1 = rng.integers(0, 8, 200)
    i2 = rng.integers(0, 8, 200)
    w = rng.random(200) + 0.1
    binned = LevelBinner(make_spec()).bin_level(3, i1, i2, w, {"one": (np.ones(200), True)})
    np.testing.assert_allclose(binned.values["one"], binned.weight)


def test_cells_outside_extent_are_dropped():
    spec = make_spec(xrange=(0.0, 0.5))
    binned = LevelBinner(spec).bin_level(3, *three_cells())

    assert binned.bins == ((0, 4), (0, 8))
    assert binned.n_cells == 3
    assert binned.n_binned == 2
    assert binned.skipped_ratio == pytest.approx(1 / 3)
    assert binned.weight.sum() == 3.0


# ──────────────────────────────────────────────────────────────
# Malformed levels
# ──────────────────────────────────────────────────────────────

def test_coordinates_outside_level_grid():
    i1, i2, w, q = three_cells()
    i1[2] = 8
    with pytest.raises(LevelDataError) as err:
        LevelBinner(make_spec()).bin_level(3, i1, i2, w, q)
    assert err.value.level == 3


def test_non_finite_weights():
    i1, i2, w, q = three_cells()
    w[1] = np.nan
    with pytest.raises(LevelDataError, match="non-finite weights"):
        LevelBinner(make_spec()).bin_level(3, i1, i2, w, q)


# ──────────────────────────────────────────────────────────────
# Sparse and hybrid paths
# ──────────────────────────────────────────────────────────────

def test_sparse_matches_dense():
    rng = np.random.default_rng(11)
    i1 = rng.integers(0, 8, 300)
    i2 = rng.integers(0, 8, 300)
    w = rng.random(300) + 1e-3
    q = {"v": (rng.normal(size=300), True)}

    dense = LevelBinner(make_spec(), override="force-dense").bin_level(3, i1, i2, w, q)
    sparse = LevelBinner(make_spec(), override="force-sparse").bin_level(3, i1, i2, w, q)

    assert sparse.executed is Algorithm.SPARSE
    assert sparse.sparse_nnz == dense.filled_bins
    np.testing.assert_allclose(sparse.weight, dense.weight, rtol=1e-12)
    np.testing.assert_allclose(sparse.values["v"], dense.values["v"], rtol=1e-9, atol=1e-12 * 300)


def test_sparse_drops_tiny_weights():
    i1, i2, w, q = three_cells()
    w[2] = 1e-14
    binned = LevelBinner(make_spec(), override="force-sparse").bin_level(3, i1, i2, w, q)
    assert binned.n_dropped == 1
    assert binned.weight[7, 7] == 0.0
    assert binned.values["m"][7, 7] == 0.0


def test_hybrid_drops_relative_to_max_weight():
    t = SelectorThresholds(hybrid_resolution=1, hybrid_fill=1.0)
    i1, i2, w, q = three_cells()
    w[2] = 1e-12
    binned = LevelBinner(make_spec(), thresholds=t).bin_level(3, i1, i2, w, q)

    assert binned.decision.algorithm is Algorithm.HYBRID
    assert binned.n_dropped == 1
    assert binned.weight[7, 7] == 0.0
    assert binned.weight[0, 0] == 3.0


def test_adaptive_sparse_measures_occupancy():
    t = SelectorThresholds(sparse_resolution=10 ** 6, adaptive_resolution=1, adaptive_fill=0.5)

    # few occupied bins on a large level grid: stays sparse
    i1 = np.array([0] * 100 + [9])
    i2 = np.array([0] * 100 + [9])
    w = np.ones(101)
    binned = LevelBinner(make_spec(), thresholds=t).bin_level(7, i1, i2, w, {})
    assert binned.decision.algorithm is Algorithm.ADAPTIVE_SPARSE
    assert binned.executed is Algorithm.SPARSE
    assert binned.sparse_nnz == 2
    assert binned.weight[0, 0] == 100.0

    # measured occupancy above the sparse fill threshold: runs dense
    i1 = np.array([0] * 10 + [3])
    i2 = np.array([0] * 10 + [3])
    binned = LevelBinner(make_spec(), thresholds=t).bin_level(3, i1, i2, np.ones(11), {})
    assert binned.decision.algorithm is Algorithm.ADAPTIVE_SPARSE
    assert binned.executed is Algorithm.DENSE
    assert binned.weight.sum() == 11.0


# ──────────────────────────────────────────────────────────────
# Buffers
# ──────────────────────────────────────────────────────────────

def test_histograms_come_from_pool_and_go_back():
    pool = MemoryPool()
    binner = LevelBinner(make_spec(), buffers=BufferSource(pool))
    binned = binner.bin_level(3, *three_cells())
    assert pool.checked_out == 3

    binner.release(binned)
    assert pool.checked_out == 0
    assert pool.available((8, 8)) == 3

    # reused buffers are zeroed on checkout
    again = binner.bin_level(3, *three_cells())
    assert again.weight.sum() == 6.0
    assert pool.stats()["hits"] == 3
