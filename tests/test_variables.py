"""
Unit tests for variable resolution and per-cell extraction.

"""

import numpy as np
import pytest

from chhaya.cells import CellTable
from chhaya.errors import ProjectionConfigError
from chhaya.grid import GridSpec
from chhaya.request import ProjectionRequest
from chhaya.variables import VariableKind, WeightExtractor, resolve_variable


# ──────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────

def make_table(**fields):
    # level-1 cells in a box of length 2: cell size 1, volume 1
    n = len(next(iter(fields.values()))) if fields else 2
    return CellTable(
        level=[1] * n,
        cx=[1, 0][:n] + [0] * max(0, n - 2),
        cy=[0] * n,
        cz=[0] * n,
        fields=fields,
        boxlen=2.0,
    )


def extractor(table, variables, **kwargs):
    request = ProjectionRequest(variables=variables, **kwargs)
    spec = GridSpec.build(table, center=request.center, res=4, data_center=request.data_center)
    return WeightExtractor(table, request, spec)


# ──────────────────────────────────────────────────────────────
# Resolution
# ──────────────────────────────────────────────────────────────

def test_resolve_kinds():
    table = make_table(rho=[1.0, 2.0], vx=[0.0, 1.0], vy=[0.0, 0.0], vz=[0.0, 0.0])
    assert resolve_variable("rho", table).kind is VariableKind.STORED
    assert resolve_variable("v", table).kind is VariableKind.DERIVED
    assert resolve_variable("sd", table).kind is VariableKind.SURFACE_DENSITY
    assert resolve_variable("sigma", table).kind is VariableKind.DISPERSION
    assert resolve_variable("phi", table).kind is VariableKind.GEOMETRY


def test_unknown_variable():
    with pytest.raises(ProjectionConfigError, match="unknown variable"):
        resolve_variable("temperature", make_table(rho=[1.0, 1.0]))


def test_stored_field_shadows_derived_definition():
    table = make_table(rho=[1.0, 1.0], v=[7.0, 7.0])
    assert resolve_variable("v", table).kind is VariableKind.STORED


def test_mass_weighting_needs_density_or_mass():
    table = make_table(vx=[1.0, 2.0])
    with pytest.raises(ProjectionConfigError, match="mass weighting"):
        extractor(table, "vx").plan()
    # volume weighting does not
    extractor(table, "vx", weighting="volume").plan()


def test_velocity_quantities_need_components():
    table = make_table(rho=[1.0, 1.0], vx=[1.0, 2.0])
    with pytest.raises(ProjectionConfigError, match="missing field"):
        extractor(table, "sigma").plan()


def test_unknown_unit_is_rejected_during_planning():
    table = make_table(rho=[1.0, 1.0])
    with pytest.raises(ProjectionConfigError):
        extractor(table, "rho", units="Msol").plan()


def test_dispersion_adds_internal_moments():
    table = make_table(rho=[1.0, 1.0], vx=[1.0, 3.0])
    ex = extractor(table, "sigma_x").extract(np.arange(2))
    assert ex.outputs == ("sigma_x",)
    assert set(ex.quantities) == {"vx", "vx2"}
    assert set(ex.internal) == {"vx", "vx2"}
    np.testing.assert_allclose(ex.quantities["vx2"].values, [1.0, 9.0])


def test_requested_moment_is_not_internal():
    table = make_table(rho=[1.0, 1.0], vx=[1.0, 3.0])
    ex = extractor(table, ["sigma_x", "vx"]).extract(np.arange(2))
    assert ex.internal == ("vx2",)


# ──────────────────────────────────────────────────────────────
# Extraction
# ──────────────────────────────────────────────────────────────

def test_mass_from_density_and_volume():
    table = make_table(rho=[3.0, 5.0])
    ex = extractor(table, "mass").extract(np.arange(2))
    np.testing.assert_allclose(ex.weights, [3.0, 5.0])
    assert ex.quantities["mass"].weighted is False
    np.testing.assert_allclose(ex.quantities["mass"].values, [3.0, 5.0])


def test_stored_mass_takes_precedence():
    table = make_table(rho=[3.0, 5.0], mass=[0.5, 0.25])
    ex = extractor(table, "rho").extract(np.arange(2))
    np.testing.assert_allclose(ex.weights, [0.5, 0.25])
    assert ex.quantities["rho"].weighted is True


def test_weighting_modes():
    table = CellTable([1, 2], [0, 0], [0, 0], [0, 0], fields={"rho": [1.0, 1.0]}, boxlen=4.0)
    ex = extractor(table, "rho", weighting="volume").extract(np.arange(2))
    np.testing.assert_allclose(ex.weights, [8.0, 1.0])
    ex = extractor(table, "rho", weighting="none").extract(np.arange(2))
    np.testing.assert_allclose(ex.weights, [1.0, 1.0])


def test_speed_and_squares():
    table = make_table(rho=[1.0, 1.0], vx=[3.0, 0.0], vy=[4.0, 1.0], vz=[0.0, 2.0])
    ex = extractor(table, ["v", "v2", "vz2"]).extract(np.arange(2))
    np.testing.assert_allclose(ex.quantities["v"].values, [5.0, np.sqrt(5.0)])
    np.testing.assert_allclose(ex.quantities["v2"].values, [25.0, 5.0])
    np.testing.assert_allclose(ex.quantities["vz2"].values, [0.0, 4.0])


def test_cylindrical_velocities():
    # data center at (1.0, 0.5, 0.5) code units of a box of length 2:
    # cell 0 sits at x = +0.5, cell 1 at x = -0.5, both at y = 0
    table = make_table(rho=[1.0, 1.0], vx=[2.0, 2.0], vy=[1.0, 1.0])
    ex = extractor(table, ["vr_cylinder", "vphi_cylinder"], data_center=(0.5, 0.25, 0.25)).extract(np.arange(2))
    np.testing.assert_allclose(ex.quantities["vr_cylinder"].values, [2.0, -2.0])
    np.testing.assert_allclose(ex.quantities["vphi_cylinder"].values, [1.0, -1.0])


def test_geometry_is_not_binned():
    table = make_table(rho=[1.0, 1.0])
    ex = extractor(table, ["r_cylinder", "rho"]).extract(np.arange(2))
    assert ex.geometry == ("r_cylinder",)
    assert "r_cylinder" not in ex.quantities


def test_selection_index():
    table = make_table(rho=[3.0, 5.0])
    ex = extractor(table, "rho").extract(np.array([1]))
    np.testing.assert_allclose(ex.quantities["rho"].values, [5.0])
    positions = np.array([0])
    assert ex.level_slice(positions)["rho"][1] is True
