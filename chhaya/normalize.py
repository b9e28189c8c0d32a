#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Finalization of accumulated grids into physical maps.

"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from .cells import CellTable
from .grid import GridSpec
from .request import ProjectionRequest
from .variables import Extraction, VariableKind

logger = logging.getLogger("chhaya.normalize")


def safe_divide(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    """num / den with 0 wherever den == 0."""
    out = np.zeros_like(num, dtype=float)
    np.divide(num, den, out=out, where=den != 0)
    return out


def dispersion(mean: np.ndarray, mean_sq: np.ndarray) -> np.ndarray:
    """sqrt(E[v^2] - E[v]^2) with negative variances clamped to 0."""
    return np.sqrt(np.maximum(mean_sq - mean ** 2, 0.0))


def geometry_map(name: str, spec: GridSpec) -> np.ndarray:
    """
    Radius or angle of each pixel center relative to the data center.

    A projected map has no line-of-sight coordinate per pixel, so
    'r_sphere' is the in-plane distance and equals 'r_cylinder'.

    Args:
        name: 'r_cylinder', 'r_sphere' (in-plane distance) or 'phi' (angle
            in [0, 2*pi), 0 at zero radius).
    """
    u, v = spec.pixel_offsets()
    uu, vv = np.meshgrid(u, v, indexing="ij")
    if name in ("r_cylinder", "r_sphere"):
        return np.hypot(uu, vv)
    if name == "phi":
        phi = np.mod(np.arctan2(vv, uu), 2.0 * np.pi)
        phi[(uu == 0) & (vv == 0)] = 0.0
        return phi
    raise ValueError(f"'{name}' is not a geometry variable")


class WeightNormalizer:
    """
    Turn combined numerator/weight grids into the result maps.

    Args:
        table: the cell table (unit scales).
        request: the projection request (mode, units).
        spec: output grid (pixel area, pixel centers).
    """

    def __init__(self, table: CellTable, request: ProjectionRequest, spec: GridSpec):
        self.table = table
        self.request = request
        self.spec = spec

    def _average(self, num: np.ndarray, weight: np.ndarray) -> np.ndarray:
        return safe_divide(num, weight)

    def finalize(
        self,
        extraction: Extraction,
        numerators: Mapping[str, np.ndarray],
        weight: Optional[np.ndarray],
    ) -> Tuple[Dict[str, np.ndarray], Dict[str, str]]:
        """
        Build the result maps.

        Variables without a numerator grid (no level contributed) are left
        out; geometry maps are always produced.

        Returns:
            (maps, units), both keyed by variable name in request order.
        """
        mode = self.request.mode
        maps: Dict[str, np.ndarray] = {}
        units: Dict[str, str] = {}

        for name in extraction.outputs:
            definition = extraction.definitions[name]
            unit = self.request.unit_for(name)
            scale = self.table.unit_scale(unit)

            if definition.kind is VariableKind.GEOMETRY:
                data = geometry_map(name, self.spec)
            elif definition.kind is VariableKind.DISPERSION:
                m1, m2 = definition.moments
                if m1 not in numerators or m2 not in numerators or weight is None:
                    continue
                data = dispersion(self._average(numerators[m1], weight), self._average(numerators[m2], weight))
            elif definition.kind is VariableKind.SURFACE_DENSITY:
                if name not in numerators:
                    continue
                data = numerators[name] / self.spec.pixel_area
            elif definition.collapse:
                if name not in numerators:
                    continue
                data = numerators[name].copy()
            else:
                if name not in numerators:
                    continue
                if mode == "sum":
                    data = numerators[name].copy()
                else:
                    data = self._average(numerators[name], weight)

            maps[name] = data * scale
            units[name] = unit

        missing = [n for n in extraction.outputs if n not in maps]
        if missing:
            logger.debug("no contribution for %s; left out of the result", missing)
        return maps, units
