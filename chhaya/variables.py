#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Variable resolution and per-cell weight/value extraction.

Every projectable name maps to one `VariableKind`:

  STORED            a column of the cell table
  DERIVED           computed per cell from stored columns (speed, squared
                    components, cylindrical velocities, cell mass, volume)
  SURFACE_DENSITY   'sd', cell mass summed per pixel area
  DISPERSION        sqrt(E[v^2] - E[v]^2), needs two moment maps
  GEOMETRY          radius/angle of pixel centers, never binned

Names are looked up in a fixed table; unknown names are a configuration error
raised before any level is processed.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .cells import CellTable
from .errors import ProjectionConfigError
from .grid import GridSpec
from .request import ProjectionRequest

logger = logging.getLogger("chhaya.variables")


class VariableKind(Enum):
    STORED = "stored"
    DERIVED = "derived"
    SURFACE_DENSITY = "surface_density"
    DISPERSION = "dispersion"
    GEOMETRY = "geometry"


class CellView:
    """Lazy per-cell quantities of the selected cells of a table."""

    def __init__(self, table: CellTable, index: np.ndarray, data_center: Tuple[float, float, float]):
        self.table = table
        self.index = index
        self.data_center = data_center

    def field(self, name: str) -> np.ndarray:
        return self.table.field(name)[self.index]

    @cached_property
    def level(self) -> np.ndarray:
        return self.table.level[self.index]

    @cached_property
    def size(self) -> np.ndarray:
        return self.table.cell_size(self.level)

    @cached_property
    def volume(self) -> np.ndarray:
        return self.size ** 3

    @cached_property
    def mass(self) -> np.ndarray:
        if self.table.has_field("mass"):
            return self.field("mass")
        return self.field("rho") * self.volume

    def position(self, axis: str) -> np.ndarray:
        """Cell-center coordinate relative to the data center, code units."""
        i = "xyz".index(axis)
        coords = self.table.coords(axis)[self.index]
        return (coords + 0.5) * self.size - self.data_center[i] * self.table.boxlen

    @cached_property
    def cylinder(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(x, y, r) in the plane perpendicular to z through the data center."""
        x = self.position("x")
        y = self.position("y")
        return x, y, np.hypot(x, y)


def _speed2(c: CellView) -> np.ndarray:
    return c.field("vx") ** 2 + c.field("vy") ** 2 + c.field("vz") ** 2


def _vr_cylinder(c: CellView) -> np.ndarray:
    x, y, r = c.cylinder
    num = x * c.field("vx") + y * c.field("vy")
    return np.divide(num, r, out=np.zeros_like(num), where=r > 0)


def _vphi_cylinder(c: CellView) -> np.ndarray:
    x, y, r = c.cylinder
    num = x * c.field("vy") - y * c.field("vx")
    return np.divide(num, r, out=np.zeros_like(num), where=r > 0)


@dataclass(frozen=True)
class VariableDef:
    """
    One entry of the variable table.

    Attributes:
        kind: how the variable is produced.
        requires: stored columns that must be present.
        compute: per-cell values for DERIVED variables.
        moments: (E[v], E[v^2]) variable names for DISPERSION.
        collapse: the binned value is the extensive quantity itself, summed
            rather than weight-averaged.
    """

    name: str
    kind: VariableKind
    requires: Tuple[str, ...] = ()
    compute: Optional[Callable[[CellView], np.ndarray]] = None
    moments: Optional[Tuple[str, str]] = None
    collapse: bool = False


_VELOCITY = ("vx", "vy", "vz")
_MASS_SOURCE = ("mass", "rho")


def _table() -> Dict[str, VariableDef]:
    defs = [
        VariableDef("mass", VariableKind.DERIVED, _MASS_SOURCE, lambda c: c.mass, collapse=True),
        VariableDef("volume", VariableKind.DERIVED, (), lambda c: c.volume),
        VariableDef("v", VariableKind.DERIVED, _VELOCITY, lambda c: np.sqrt(_speed2(c))),
        VariableDef("v2", VariableKind.DERIVED, _VELOCITY, _speed2),
        VariableDef("vx2", VariableKind.DERIVED, ("vx",), lambda c: c.field("vx") ** 2),
        VariableDef("vy2", VariableKind.DERIVED, ("vy",), lambda c: c.field("vy") ** 2),
        VariableDef("vz2", VariableKind.DERIVED, ("vz",), lambda c: c.field("vz") ** 2),
        VariableDef("vr_cylinder", VariableKind.DERIVED, ("vx", "vy"), _vr_cylinder),
        VariableDef("vphi_cylinder", VariableKind.DERIVED, ("vx", "vy"), _vphi_cylinder),
        VariableDef("vr_cylinder2", VariableKind.DERIVED, ("vx", "vy"), lambda c: _vr_cylinder(c) ** 2),
        VariableDef("vphi_cylinder2", VariableKind.DERIVED, ("vx", "vy"), lambda c: _vphi_cylinder(c) ** 2),
        VariableDef("sd", VariableKind.SURFACE_DENSITY, _MASS_SOURCE, lambda c: c.mass, collapse=True),
        VariableDef("sigma_x", VariableKind.DISPERSION, ("vx",), moments=("vx", "vx2")),
        VariableDef("sigma_y", VariableKind.DISPERSION, ("vy",), moments=("vy", "vy2")),
        VariableDef("sigma_z", VariableKind.DISPERSION, ("vz",), moments=("vz", "vz2")),
        VariableDef("sigma", VariableKind.DISPERSION, _VELOCITY, moments=("v", "v2")),
        VariableDef(
            "sigma_r_cylinder", VariableKind.DISPERSION, ("vx", "vy"),
            moments=("vr_cylinder", "vr_cylinder2"),
        ),
        VariableDef(
            "sigma_phi_cylinder", VariableKind.DISPERSION, ("vx", "vy"),
            moments=("vphi_cylinder", "vphi_cylinder2"),
        ),
        VariableDef("r_cylinder", VariableKind.GEOMETRY),
        VariableDef("r_sphere", VariableKind.GEOMETRY),
        VariableDef("phi", VariableKind.GEOMETRY),
    ]
    return {d.name: d for d in defs}


VARIABLES: Dict[str, VariableDef] = _table()


def resolve_variable(name: str, table: CellTable) -> VariableDef:
    """
    Look up `name`.

    Table entries that are always computed (surface density, dispersions,
    geometry, cell mass) take precedence; otherwise a stored column wins over
    a derived definition of the same name.
    """
    definition = VARIABLES.get(name)
    if definition is not None and (definition.kind is not VariableKind.DERIVED or name == "mass"):
        return definition
    if table.has_field(name):
        return VariableDef(name, VariableKind.STORED, (name,), lambda c, _n=name: c.field(_n))
    if definition is not None:
        return definition
    raise ProjectionConfigError(
        f"unknown variable '{name}' (stored fields: {table.field_names}; "
        f"derived: {sorted(VARIABLES)})"
    )


def _check_requires(definition: VariableDef, table: CellTable, purpose: str) -> None:
    if definition.requires == _MASS_SOURCE:
        if not (table.has_field("mass") or table.has_field("rho")):
            raise ProjectionConfigError(f"{purpose} needs a 'rho' or 'mass' field in the cell table")
        return
    missing = [f for f in definition.requires if not table.has_field(f)]
    if missing:
        raise ProjectionConfigError(f"{purpose} needs missing field(s) {missing}")


@dataclass
class BinnedQuantity:
    name: str
    values: np.ndarray
    weighted: bool


@dataclass
class Extraction:
    """
    Per-cell inputs of one projection.

    Attributes:
        index: indices of the selected cells in the table.
        weights: per selected cell weight.
        quantities: everything that gets histogrammed, including dispersion
            moments that were not requested.
        outputs: requested names, in request order.
        definitions: resolved definition of every output and moment.
        internal: binned names that are not returned to the caller.
    """

    index: np.ndarray
    weights: np.ndarray
    quantities: Dict[str, BinnedQuantity]
    outputs: Tuple[str, ...]
    definitions: Dict[str, VariableDef]
    internal: Tuple[str, ...] = ()
    geometry: Tuple[str, ...] = field(default=())

    def level_slice(self, positions: np.ndarray) -> Dict[str, Tuple[np.ndarray, bool]]:
        """Quantities restricted to `positions` (indices into the selection)."""
        return {name: (q.values[positions], q.weighted) for name, q in self.quantities.items()}


class WeightExtractor:
    """
    Resolve the requested variables and compute per-cell weights and values.

    `plan()` validates everything against the table without touching cell
    data; `extract(index)` then evaluates the selected cells.
    """

    def __init__(self, table: CellTable, request: ProjectionRequest, spec: GridSpec):
        self.table = table
        self.request = request
        self.spec = spec
        self._planned: Optional[Dict[str, VariableDef]] = None

    def plan(self) -> Dict[str, VariableDef]:
        if self._planned is not None:
            return self._planned

        table, request = self.table, self.request
        if request.weighting == "mass":
            _check_requires(VARIABLES["mass"], table, "mass weighting")

        for name in request.variables:
            table.unit_scale(request.unit_for(name))

        planned: Dict[str, VariableDef] = {}
        for name in request.variables:
            definition = resolve_variable(name, table)
            _check_requires(definition, table, f"variable '{name}'")
            planned[name] = definition
            if definition.kind is VariableKind.DISPERSION:
                for moment in definition.moments:
                    if moment not in planned:
                        planned[moment] = resolve_variable(moment, table)
        self._planned = planned
        logger.debug("variables resolved: %s", {k: v.kind.value for k, v in planned.items()})
        return planned

    def weights(self, cells: CellView) -> np.ndarray:
        weighting = self.request.weighting
        if weighting == "mass":
            return np.asarray(cells.mass, dtype=float)
        if weighting == "volume":
            return np.asarray(cells.volume, dtype=float)
        return np.ones(len(cells.index), dtype=float)

    def extract(self, index: np.ndarray) -> Extraction:
        planned = self.plan()
        cells = CellView(self.table, index, self.spec.data_center)

        quantities: Dict[str, BinnedQuantity] = {}
        geometry: List[str] = []
        for name, definition in planned.items():
            if definition.kind is VariableKind.GEOMETRY:
                geometry.append(name)
            elif definition.kind is VariableKind.DISPERSION:
                continue
            else:
                values = np.asarray(definition.compute(cells), dtype=float)
                quantities[name] = BinnedQuantity(name, values, weighted=not definition.collapse)

        requested = set(self.request.variables)
        internal = tuple(name for name in planned if name not in requested)

        return Extraction(
            index=index,
            weights=self.weights(cells),
            quantities=quantities,
            outputs=tuple(self.request.variables),
            definitions=dict(planned),
            internal=internal,
            geometry=tuple(geometry),
        )
