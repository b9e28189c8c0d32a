"""
Unit tests for the HDF5 export of projection results.

These tests verify that a written file:
1. Holds every map with its unit, weighting and mode
2. Carries the grid geometry and generator attributes
3. Records per-level diagnostics and skipped levels

"""

import h5py
import numpy as np
import pytest

from chhaya import CellTable, projection
from chhaya.export import load_projection_maps, save_projection


# ──────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────

def small_result(**kwargs):
    table = CellTable(
        [2, 2, 3], [0, 3, 1], [0, 1, 1], [0, 0, 0],
        fields={"rho": [1.0, 2.0, 4.0], "vx": [1.0, -1.0, 0.5]},
        scale={"kpc": 2.0},
    )
    return projection(table, ["rho", "sd", "sigma_x"], res=8, **kwargs)


# ──────────────────────────────────────────────────────────────
# Tests
# ──────────────────────────────────────────────────────────────

def test_maps_round_trip(tmp_path):
    result = small_result()
    filename = save_projection(result, str(tmp_path / "proj.h5"), command="chhaya -n 1")

    maps = load_projection_maps(filename)
    assert list(maps) == ["rho", "sd", "sigma_x"]
    for name, data in result.maps.items():
        np.testing.assert_array_equal(maps[name], data)


def test_map_attributes(tmp_path):
    result = small_result()
    filename = save_projection(result, str(tmp_path / "proj.h5"))

    with h5py.File(filename, "r") as f:
        rho = f["Projection/Maps/rho"]
        assert rho.attrs["unit"] == "standard"
        assert rho.attrs["weighting"] == "mass"
        assert rho.attrs["mode"] == "average"
        assert f["Projection/Maps/sd"].attrs["mode"] == "sum"


def test_projection_attributes(tmp_path):
    result = small_result(direction="y")
    filename = save_projection(result, str(tmp_path / "proj.h5"), command="chhaya -n 1")

    with h5py.File(filename, "r") as f:
        attrs = f["Projection"].attrs
        assert attrs["direction"] == "y"
        assert attrs["res"] == 8
        assert attrs["pixsize"] == pytest.approx(0.125)
        np.testing.assert_allclose(attrs["extent"], [0.0, 1.0, 0.0, 1.0])
        assert attrs["lmax"] == 3
        assert not attrs["degraded"]
        assert attrs["generator_command"] == "chhaya -n 1"
        assert attrs["generator_version"] == "1.0.0"


def test_float32_maps(tmp_path):
    filename = save_projection(small_result(), str(tmp_path / "proj.h5"), float_dtype="f4")
    with h5py.File(filename, "r") as f:
        assert f["Projection/Maps/rho"].dtype == np.float32


def test_parent_directory_is_created(tmp_path):
    filename = str(tmp_path / "nested" / "out" / "proj.h5")
    assert save_projection(small_result(), filename) == filename
    assert (tmp_path / "nested" / "out" / "proj.h5").exists()


def test_level_diagnostics(tmp_path):
    result = small_result()
    filename = save_projection(result, str(tmp_path / "proj.h5"))

    with h5py.File(filename, "r") as f:
        diag = f["Projection/Diagnostics"]
        assert diag.attrs["state"] == "done"
        assert diag.attrs["n_cells"] == 3
        levels = diag["Levels"][()]
        columns = diag["Levels"].attrs["columns"].split(",")
        assert levels.shape == (2, len(columns))
        assert list(levels[:, columns.index("level")]) == [2, 3]
        assert list(levels[:, columns.index("n_cells")]) == [2, 1]
        assert [a.decode() for a in diag["LevelAlgorithms"][()]] == ["dense", "dense"]
        assert "skipped_levels" not in diag.attrs


def test_skipped_levels_are_recorded(tmp_path):
    table = CellTable([2, 3], [0, 9], [0, 0], [0, 0], fields={"rho": [1.0, 1.0]})
    result = projection(table, "rho", res=4)
    filename = save_projection(result, str(tmp_path / "proj.h5"))

    with h5py.File(filename, "r") as f:
        assert f["Projection"].attrs["degraded"]
        assert list(f["Projection/Diagnostics"].attrs["skipped_levels"]) == [3]
