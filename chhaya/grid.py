#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Grid specification: from requested ranges, center and resolution to the
integer-aligned pixel grid of the output maps.

All ranges are handled in normalized box units ([0, 1] spans the box) once
they leave this module. The output grid of resolution `res` has pixel `k`
covering ``[k, k+1) / res``; only the pixels overlapping the requested ranges
are materialized.

"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from .cells import CellTable
from .errors import ProjectionConfigError

logger = logging.getLogger("chhaya.grid")

# projection direction -> (first image axis, second image axis, line of sight)
DIRECTION_AXES = {
    "z": ("x", "y", "z"),
    "y": ("x", "z", "y"),
    "x": ("y", "z", "x"),
}

BOX_CENTER_SYMBOLS = ("bc", "boxcenter")

_AXIS_INDEX = {"x": 0, "y": 1, "z": 2}

# rounding applied before floor/ceil so that 0.3 * 10 stays 3
_DIGITS = 9


def _floor(v: float) -> int:
    return int(math.floor(round(v, _DIGITS)))


def _ceil(v: float) -> int:
    return int(math.ceil(round(v, _DIGITS)))


def range_conversion(table: CellTable, unit: Optional[str]) -> float:
    """Factor converting normalized box units to `unit` (1 for 'standard')."""
    if unit is None or unit == "standard":
        return 1.0
    return table.boxlen * table.unit_scale(unit)


def resolve_center(
    center: Sequence[Any],
    table: CellTable,
    unit: Optional[str] = "standard",
) -> Tuple[float, float, float]:
    """
    Resolve a center specification into numbers expressed in `unit`.

    Accepts three entries, each a number or a box-center symbol ('bc',
    'boxcenter'), or a single box-center symbol meaning all three axes.
    """
    conv = range_conversion(table, unit)
    box_center = 0.5 * conv

    entries = list(center)
    if len(entries) == 1:
        if entries[0] in BOX_CENTER_SYMBOLS:
            return (box_center, box_center, box_center)
        raise ProjectionConfigError(
            f"a single-entry center must be one of {BOX_CENTER_SYMBOLS}, got {entries[0]!r}"
        )
    if len(entries) != 3:
        raise ProjectionConfigError(f"center needs 3 entries, got {len(entries)}")

    resolved: List[float] = []
    for entry in entries:
        if isinstance(entry, str):
            if entry not in BOX_CENTER_SYMBOLS:
                raise ProjectionConfigError(
                    f"unknown center symbol {entry!r}; use a number or one of {BOX_CENTER_SYMBOLS}"
                )
            resolved.append(box_center)
        else:
            try:
                resolved.append(float(entry))
            except (TypeError, ValueError):
                raise ProjectionConfigError(f"center entry {entry!r} is not a number") from None
    return (resolved[0], resolved[1], resolved[2])


def prepare_ranges(
    table: CellTable,
    xrange: Tuple[Optional[float], Optional[float]],
    yrange: Tuple[Optional[float], Optional[float]],
    zrange: Tuple[Optional[float], Optional[float]],
    center: Sequence[Any] = (0.0, 0.0, 0.0),
    range_unit: Optional[str] = "standard",
) -> Tuple[List[float], Tuple[float, float, float]]:
    """
    Convert user ranges (relative to `center`, in `range_unit`) to normalized
    box units.

    Returns:
        ([xmin, xmax, ymin, ymax, zmin, zmax], center) with the center also
        normalized. Missing bounds are the box edges, zero-length ranges span
        the full box.

    Raises:
        ProjectionConfigError for unknown units/symbols, inverted ranges or
        ranges that do not intersect the box.
    """
    conv = range_conversion(table, range_unit)
    center_u = resolve_center(center, table, range_unit)

    ranges: List[float] = []
    for axis, (lo, hi) in zip("xyz", (xrange, yrange, zrange)):
        c = center_u[_AXIS_INDEX[axis]]
        vmin = 0.0 if lo is None else (lo + c) / conv
        vmax = 1.0 if hi is None else (hi + c) / conv

        if vmin > vmax:
            raise ProjectionConfigError(f"{axis}min > {axis}max ({vmin:.6g} > {vmax:.6g})")

        if vmin == vmax:
            logger.debug("zero-length %s range; using the full box", axis)
            vmin, vmax = 0.0, 1.0

        vmin = max(vmin, 0.0)
        vmax = min(vmax, 1.0)
        if vmin >= vmax:
            raise ProjectionConfigError(f"{axis} range lies outside the box")

        ranges.extend([vmin, vmax])

    center_norm = (center_u[0] / conv, center_u[1] / conv, center_u[2] / conv)
    return ranges, center_norm


def resolve_resolution(
    table: CellTable,
    res: Optional[int] = None,
    pxsize: Optional[Tuple[float, str]] = None,
    lmax: Optional[int] = None,
) -> int:
    """
    Pixel count along the full box: pxsize dominates, then res, then 2**lmax
    (table lmax when nothing is given).
    """
    if pxsize is not None:
        value, unit = pxsize
        px_code = value / table.unit_scale(unit)
        resolution = _ceil(table.boxlen / px_code)
    elif res is not None:
        resolution = int(res)
    else:
        resolution = 2 ** int(table.lmax if lmax is None else lmax)

    if resolution < 1:
        raise ProjectionConfigError(f"resolution must be >= 1, got {resolution}")
    return resolution


@dataclass(frozen=True)
class GridSpec:
    """
    Resolved output grid of one projection.

    Attributes:
        direction: line of sight ('x', 'y' or 'z').
        axes: (first image axis, second image axis, line of sight).
        res: pixel count spanning the full box.
        ranges: normalized [xmin, xmax, ymin, ymax, zmin, zmax].
        lo1, hi1, lo2, hi2: output pixel index bounds (hi exclusive).
        boxlen: box length in code units.
        center, data_center: normalized centers.
    """

    direction: str
    axes: Tuple[str, str, str]
    res: int
    ranges: Tuple[float, ...]
    lo1: int
    hi1: int
    lo2: int
    hi2: int
    boxlen: float
    center: Tuple[float, float, float]
    data_center: Tuple[float, float, float]

    @classmethod
    def build(
        cls,
        table: CellTable,
        direction: str = "z",
        xrange=(None, None),
        yrange=(None, None),
        zrange=(None, None),
        center: Sequence[Any] = (0.0, 0.0, 0.0),
        range_unit: Optional[str] = "standard",
        res: Optional[int] = None,
        pxsize: Optional[Tuple[float, str]] = None,
        lmax: Optional[int] = None,
        data_center: Optional[Sequence[Any]] = None,
        data_center_unit: Optional[str] = None,
    ) -> "GridSpec":
        if direction not in DIRECTION_AXES:
            raise ProjectionConfigError(f"unknown direction '{direction}'")

        ranges, center_norm = prepare_ranges(table, xrange, yrange, zrange, center, range_unit)
        resolution = resolve_resolution(table, res=res, pxsize=pxsize, lmax=lmax)

        if data_center is None:
            dc_norm = center_norm
        else:
            dc_unit = range_unit if data_center_unit is None else data_center_unit
            entries = list(data_center)
            if len(entries) == 3:
                # missing entries fall back to the projection center
                conv = range_conversion(table, dc_unit)
                entries = [center_norm[i] * conv if e is None else e for i, e in enumerate(entries)]
            dc_u = resolve_center(entries, table, dc_unit)
            conv = range_conversion(table, dc_unit)
            dc_norm = (dc_u[0] / conv, dc_u[1] / conv, dc_u[2] / conv)

        axes = DIRECTION_AXES[direction]
        a1, a2 = _AXIS_INDEX[axes[0]], _AXIS_INDEX[axes[1]]
        lo1 = _floor(ranges[2 * a1] * resolution)
        hi1 = max(_ceil(ranges[2 * a1 + 1] * resolution), lo1 + 1)
        lo2 = _floor(ranges[2 * a2] * resolution)
        hi2 = max(_ceil(ranges[2 * a2 + 1] * resolution), lo2 + 1)

        spec = cls(
            direction=direction,
            axes=axes,
            res=resolution,
            ranges=tuple(ranges),
            lo1=lo1,
            hi1=hi1,
            lo2=lo2,
            hi2=hi2,
            boxlen=table.boxlen,
            center=center_norm,
            data_center=dc_norm,
        )
        logger.debug(
            "grid: direction=%s res=%d map=%dx%d pixsize=%.6g",
            direction, resolution, spec.length1, spec.length2, spec.pixsize,
        )
        return spec

    @property
    def length1(self) -> int:
        return self.hi1 - self.lo1

    @property
    def length2(self) -> int:
        return self.hi2 - self.lo2

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.length1, self.length2)

    @property
    def pixsize(self) -> float:
        return self.boxlen / self.res

    @property
    def pixel_area(self) -> float:
        return self.pixsize ** 2

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        """Physical image bounds [x0, x1, y0, y1] in code units."""
        s = self.pixsize
        return (self.lo1 * s, self.hi1 * s, self.lo2 * s, self.hi2 * s)

    @property
    def extent_center(self) -> Tuple[float, float, float, float]:
        """Image bounds relative to the projection center."""
        c1 = self.center[_AXIS_INDEX[self.axes[0]]] * self.boxlen
        c2 = self.center[_AXIS_INDEX[self.axes[1]]] * self.boxlen
        x0, x1, y0, y1 = self.extent
        return (x0 - c1, x1 - c1, y0 - c2, y1 - c2)

    @property
    def ratio(self) -> float:
        return self.length1 / self.length2

    def axis_range(self, axis: str) -> Tuple[float, float]:
        i = _AXIS_INDEX[axis]
        return self.ranges[2 * i], self.ranges[2 * i + 1]

    def level_bins(self, level: int) -> Tuple[Tuple[int, int], Tuple[int, int]]:
        """
        Native bin bounds of `level` on both image axes, hi exclusive.

        The level grid is aligned on the same normalized ranges as the output
        grid so that a level histogram can be resampled onto it.
        """
        n = 2 ** level
        out = []
        for axis in self.axes[:2]:
            vmin, vmax = self.axis_range(axis)
            lo = _floor(vmin * n)
            hi = max(_ceil(vmax * n), lo + 1)
            out.append((lo, hi))
        return out[0], out[1]

    def los_bounds(self, level: int) -> Tuple[int, int]:
        """Line-of-sight cell index bounds at `level`, hi exclusive."""
        n = 2 ** level
        vmin, vmax = self.axis_range(self.axes[2])
        return _floor(vmin * n), _ceil(vmax * n)

    def pixel_offsets(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Physical coordinates of pixel centers relative to the data center,
        along the first and second image axis.
        """
        s = self.pixsize
        d1 = self.data_center[_AXIS_INDEX[self.axes[0]]] * self.boxlen
        d2 = self.data_center[_AXIS_INDEX[self.axes[1]]] * self.boxlen
        u = (self.lo1 + np.arange(self.length1) + 0.5) * s - d1
        v = (self.lo2 + np.arange(self.length2) + 0.5) * s - d2
        return u, v
