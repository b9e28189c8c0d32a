"""
Unit tests for converting osyris datasets into cell tables.

These tests use small in-memory stand-ins for osyris datasets, so no
RAMSES snapshot is needed.

"""

from types import SimpleNamespace

import numpy as np
import pytest

from chhaya.loader import RamsesLoader, list_fields_for_snapshot


# ──────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────

class FakeDataset(dict):
    def __init__(self, groups, meta):
        super().__init__(groups)
        self.meta = meta


def fake_dataset(meta=None):
    # two level-1 cells and one level-2 cell in a box of length 2
    dx = np.array([1.0, 1.0, 0.5])
    position = np.array([[0.5, 0.5, 0.5], [1.5, 0.5, 1.5], [1.25, 1.75, 0.25]])
    velocity = SimpleNamespace(
        x=np.array([1.0, 2.0, 3.0]),
        y=np.array([0.0, 0.0, 0.0]),
        z=np.array([-1.0, -2.0, -3.0]),
    )
    mesh = {
        "level": np.array([1, 1, 2]),
        "dx": dx,
        "position": position,
        "density": np.array([1.0, 2.0, 3.0]),
        "pressure": np.array([0.1, 0.2, 0.3]),
        "velocity": velocity,
    }
    return FakeDataset({"mesh": mesh}, meta if meta is not None else {"boxlen": 2.0, "unit_l": 3.0856775814913673e21})


# ──────────────────────────────────────────────────────────────
# Tests
# ──────────────────────────────────────────────────────────────

def test_to_cell_table():
    table = RamsesLoader("unused").to_cell_table(fake_dataset())

    assert len(table) == 3
    assert table.boxlen == 2.0
    np.testing.assert_array_equal(table.level, [1, 1, 2])
    np.testing.assert_array_equal(table.cx, [0, 1, 2])
    np.testing.assert_array_equal(table.cy, [0, 0, 3])
    np.testing.assert_array_equal(table.cz, [0, 1, 0])
    assert table.field_names == ["p", "rho", "vx", "vy", "vz"]
    np.testing.assert_array_equal(table.field("vz"), [-1.0, -2.0, -3.0])


def test_length_units_from_metadata():
    table = RamsesLoader("unused").to_cell_table(fake_dataset())
    assert table.unit_scale("kpc") == pytest.approx(1.0)
    assert table.unit_scale("pc") == pytest.approx(1.0e3)


def test_missing_metadata_defaults():
    table = RamsesLoader("unused").to_cell_table(fake_dataset(meta={}))
    assert table.boxlen == 1.0
    assert sorted(table.scale) == ["standard"]


def test_requested_fields_only():
    table = RamsesLoader("unused", fields=["density"]).to_cell_table(fake_dataset())
    assert table.field_names == ["rho"]


def test_dataset_without_mesh():
    with pytest.raises(KeyError):
        RamsesLoader("unused").to_cell_table(FakeDataset({}, {}))


def test_list_fields(monkeypatch):
    monkeypatch.setattr(RamsesLoader, "read_data", lambda self, num: fake_dataset())
    assert list_fields_for_snapshot("unused", 1) == ["rho", "p", "vx", "vy", "vz"]


def test_list_fields_on_unreadable_snapshot(tmp_path):
    assert list_fields_for_snapshot(str(tmp_path), 1) == []
