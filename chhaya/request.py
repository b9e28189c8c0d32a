#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Projection request: the immutable description of one projection call.

"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

import numpy as np

from .errors import ProjectionConfigError
from .sparse import SelectorThresholds

DIRECTIONS = ("x", "y", "z")
WEIGHTINGS = ("mass", "volume", "none")
MODES = ("average", "sum")
ALGORITHMS = ("auto", "force-dense", "force-sparse")

# alternative names of "average"
_MODE_ALIASES = {"standard": "average", "mean": "average"}

Range = Tuple[Optional[float], Optional[float]]


def _as_range(name: str, value) -> Range:
    if value is None:
        return (None, None)
    value = tuple(value)
    if len(value) != 2:
        raise ProjectionConfigError(f"{name} must be a (min, max) pair, got {value!r}")
    return (
        None if value[0] is None else float(value[0]),
        None if value[1] is None else float(value[1]),
    )


@dataclass(frozen=True)
class ProjectionRequest:
    """
    Everything a projection needs besides the cells themselves.

    Resolution is given by exactly one of `pxsize` (value, unit), `res` or
    `lmax`; `pxsize` dominates, then `res`, then `lmax` (defaults to the
    table's lmax). Ranges are relative to `center` and expressed in
    `range_unit` ('standard' = normalized box units).
    """

    variables: Tuple[str, ...]
    units: Tuple[str, ...] = ("standard",)
    direction: str = "z"
    weighting: str = "mass"
    mode: str = "average"
    xrange: Range = (None, None)
    yrange: Range = (None, None)
    zrange: Range = (None, None)
    center: Tuple[Any, ...] = (0.0, 0.0, 0.0)
    range_unit: str = "standard"
    data_center: Optional[Tuple[Any, ...]] = None
    data_center_unit: Optional[str] = None
    res: Optional[int] = None
    pxsize: Optional[Tuple[float, str]] = None
    lmax: Optional[int] = None
    mask: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    max_threads: Optional[int] = None
    algorithm: str = "auto"
    thresholds: SelectorThresholds = field(default_factory=SelectorThresholds)

    def __post_init__(self):
        variables = (self.variables,) if isinstance(self.variables, str) else tuple(self.variables)
        if not variables:
            raise ProjectionConfigError("at least one variable must be requested")
        object.__setattr__(self, "variables", variables)

        units = (self.units,) if isinstance(self.units, str) else tuple(self.units)
        if len(units) not in (1, len(variables)):
            raise ProjectionConfigError(
                f"got {len(units)} units for {len(variables)} variables; "
                "give one unit for all or one per variable"
            )
        object.__setattr__(self, "units", units)

        if self.direction not in DIRECTIONS:
            raise ProjectionConfigError(f"direction must be one of {DIRECTIONS}, got '{self.direction}'")

        weighting = "none" if self.weighting is None else self.weighting
        if weighting not in WEIGHTINGS:
            raise ProjectionConfigError(f"weighting must be one of {WEIGHTINGS}, got '{weighting}'")
        object.__setattr__(self, "weighting", weighting)

        mode = _MODE_ALIASES.get(self.mode, self.mode)
        if mode not in MODES:
            raise ProjectionConfigError(f"mode must be one of {MODES}, got '{self.mode}'")
        object.__setattr__(self, "mode", mode)

        if self.algorithm not in ALGORITHMS:
            raise ProjectionConfigError(f"algorithm must be one of {ALGORITHMS}, got '{self.algorithm}'")

        for name in ("xrange", "yrange", "zrange"):
            object.__setattr__(self, name, _as_range(name, getattr(self, name)))

        center = (self.center,) if isinstance(self.center, str) else tuple(self.center)
        object.__setattr__(self, "center", center)
        if self.data_center is not None:
            data_center = (self.data_center,) if isinstance(self.data_center, str) else tuple(self.data_center)
            object.__setattr__(self, "data_center", data_center)

        if self.res is not None and int(self.res) <= 0:
            raise ProjectionConfigError(f"res must be positive, got {self.res}")
        if self.lmax is not None and int(self.lmax) < 0:
            raise ProjectionConfigError(f"lmax must be non-negative, got {self.lmax}")
        if self.pxsize is not None:
            pxsize = (self.pxsize, "standard") if np.isscalar(self.pxsize) else tuple(self.pxsize)
            if len(pxsize) == 1:
                pxsize = (pxsize[0], "standard")
            if float(pxsize[0]) <= 0:
                raise ProjectionConfigError(f"pxsize must be positive, got {pxsize[0]}")
            object.__setattr__(self, "pxsize", (float(pxsize[0]), pxsize[1] or "standard"))

        if self.max_threads is not None and int(self.max_threads) < 1:
            raise ProjectionConfigError(f"max_threads must be >= 1, got {self.max_threads}")

        if self.mask is not None:
            mask = np.asarray(self.mask, dtype=bool)
            if mask.ndim != 1:
                raise ProjectionConfigError("mask must be a 1D boolean array")
            object.__setattr__(self, "mask", mask)

    def unit_for(self, variable: str) -> str:
        """Unit requested for `variable`."""
        if len(self.units) == 1:
            return self.units[0]
        return self.units[self.variables.index(variable)]
