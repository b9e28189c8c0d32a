#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Cell table: the read-only AMR input of a projection.

Every cell carries its refinement level, 0-based integer coordinates on the
grid of its own level and any number of named scalar fields. A level-L cell
with coordinate ``i`` covers ``[i, i+1) / 2**L`` of the box along that axis.

"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from .errors import ProjectionConfigError

logger = logging.getLogger("chhaya.cells")

AXES = ("x", "y", "z")


def _frozen(arr, dtype) -> np.ndarray:
    out = np.asarray(arr, dtype=dtype).view()
    out.setflags(write=False)
    return out


class CellTable:
    """
    Immutable column store of AMR cells plus simulation metadata.

    Args:
        level: refinement level of each cell.
        cx, cy, cz: integer cell coordinates at the cell's own level.
        fields: mapping field name -> per-cell values.
        boxlen: simulation box length in code units.
        scale: unit name -> factor converting code units to that unit.
        lmin, lmax: level range of the simulation (defaults: min/max of `level`).
    """

    def __init__(
        self,
        level: Iterable[int],
        cx: Iterable[int],
        cy: Iterable[int],
        cz: Iterable[int],
        fields: Optional[Mapping[str, Iterable[float]]] = None,
        boxlen: float = 1.0,
        scale: Optional[Mapping[str, float]] = None,
        lmin: Optional[int] = None,
        lmax: Optional[int] = None,
    ):
        self.level = _frozen(level, np.int64)
        self.cx = _frozen(cx, np.int64)
        self.cy = _frozen(cy, np.int64)
        self.cz = _frozen(cz, np.int64)

        n = len(self.level)
        for name, arr in (("cx", self.cx), ("cy", self.cy), ("cz", self.cz)):
            if arr.ndim != 1 or len(arr) != n:
                raise ProjectionConfigError(
                    f"coordinate column '{name}' has {len(arr)} entries, expected {n}"
                )

        self._fields: Dict[str, np.ndarray] = {}
        for name, values in (fields or {}).items():
            arr = _frozen(values, np.float64)
            if arr.ndim != 1 or len(arr) != n:
                raise ProjectionConfigError(
                    f"field '{name}' has {len(arr)} entries, expected {n}"
                )
            self._fields[name] = arr

        if boxlen <= 0:
            raise ProjectionConfigError(f"boxlen must be positive, got {boxlen}")
        self.boxlen = float(boxlen)

        self.scale: Dict[str, float] = {"standard": 1.0}
        if scale:
            self.scale.update({k: float(v) for k, v in scale.items()})

        if n:
            self.lmin = int(self.level.min()) if lmin is None else int(lmin)
            self.lmax = int(self.level.max()) if lmax is None else int(lmax)
        else:
            self.lmin = 0 if lmin is None else int(lmin)
            self.lmax = self.lmin if lmax is None else int(lmax)

    @classmethod
    def from_positions(
        cls,
        x: Iterable[float],
        y: Iterable[float],
        z: Iterable[float],
        dx: Iterable[float],
        fields: Optional[Mapping[str, Iterable[float]]] = None,
        boxlen: float = 1.0,
        scale: Optional[Mapping[str, float]] = None,
    ) -> "CellTable":
        """
        Build a table from cell-center positions and cell sizes (same length unit).

        The level follows from ``boxlen / dx``; the integer coordinate is the
        index of the cell along each axis at that level.
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        z = np.asarray(z, dtype=float)
        dx = np.asarray(dx, dtype=float)

        if np.any(dx <= 0):
            raise ProjectionConfigError("cell sizes must be positive")

        level = np.rint(np.log2(boxlen / dx)).astype(np.int64)
        cx = np.floor(x / dx).astype(np.int64)
        cy = np.floor(y / dx).astype(np.int64)
        cz = np.floor(z / dx).astype(np.int64)

        return cls(level, cx, cy, cz, fields=fields, boxlen=boxlen, scale=scale)

    def __len__(self) -> int:
        return len(self.level)

    def __repr__(self) -> str:
        return (
            f"CellTable(ncells={len(self)}, levels={self.lmin}..{self.lmax}, "
            f"boxlen={self.boxlen}, fields={self.field_names})"
        )

    @property
    def field_names(self) -> List[str]:
        return sorted(self._fields)

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def field(self, name: str) -> np.ndarray:
        try:
            return self._fields[name]
        except KeyError:
            raise ProjectionConfigError(
                f"field '{name}' is not present in the cell table (available: {self.field_names})"
            ) from None

    def coords(self, axis: str) -> np.ndarray:
        if axis == "x":
            return self.cx
        if axis == "y":
            return self.cy
        if axis == "z":
            return self.cz
        raise ProjectionConfigError(f"unknown axis '{axis}'")

    def unit_scale(self, unit: Optional[str]) -> float:
        """Return the factor converting code units to `unit` ('standard' -> 1)."""
        if unit is None or unit == "standard":
            return 1.0
        try:
            return self.scale[unit]
        except KeyError:
            raise ProjectionConfigError(
                f"unit '{unit}' is not in the unit-scale table (known: {sorted(self.scale)})"
            ) from None

    def cell_size(self, level) -> np.ndarray:
        """Physical edge length of cells at `level` (scalar or array)."""
        return self.boxlen / np.power(2.0, level)

    def level_counts(self, mask: Optional[np.ndarray] = None) -> Dict[int, int]:
        """Number of cells on each level present in the table (optionally masked)."""
        levels = self.level if mask is None else self.level[mask]
        uniq, counts = np.unique(levels, return_counts=True)
        return {int(lvl): int(c) for lvl, c in zip(uniq, counts)}
