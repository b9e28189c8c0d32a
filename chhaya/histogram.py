#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Per-level weighted 2D histograms at the level's native resolution.

For one AMR level the binner produces a weight histogram (denominator) and
one numerator histogram per binned quantity. Every histogram of a level is
built from the same flat bin index, so numerator and denominator always share
their bin edges.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from .errors import LevelDataError
from .grid import GridSpec
from .pool import BufferSource
from .sparse import (
    Algorithm,
    AlgorithmDecision,
    SelectorThresholds,
    SparseAccumulator,
    estimate_fill_ratio,
    select_algorithm,
)

logger = logging.getLogger("chhaya.histogram")

LevelBins = Tuple[Tuple[int, int], Tuple[int, int]]

# name -> (per-cell values, multiply by the cell weight)
Quantities = Mapping[str, Tuple[np.ndarray, bool]]


@dataclass
class BinnedLevel:
    """Histograms of one level plus the bookkeeping that produced them."""

    level: int
    bins: LevelBins
    weight: np.ndarray
    values: Dict[str, np.ndarray]
    decision: AlgorithmDecision
    executed: Algorithm
    n_cells: int
    n_binned: int
    n_dropped: int = 0
    sparse_nnz: Optional[int] = None

    @property
    def shape(self) -> Tuple[int, int]:
        return self.weight.shape

    @property
    def filled_bins(self) -> int:
        return int(np.count_nonzero(self.weight))

    @property
    def skipped_ratio(self) -> float:
        """Fraction of the level's cells that did not reach a histogram."""
        if self.n_cells == 0:
            return 0.0
        return 1.0 - (self.n_binned - self.n_dropped) / self.n_cells


class LevelBinner:
    """
    Bin the cells of one level onto its native grid.

    Args:
        spec: the resolved output grid.
        thresholds: selector thresholds (resolution/fill ratio/drop limits).
        override: 'auto', 'force-dense' or 'force-sparse'.
        buffers: allocation front-end (pool or direct allocation).
    """

    def __init__(
        self,
        spec: GridSpec,
        thresholds: Optional[SelectorThresholds] = None,
        override: str = "auto",
        buffers: Optional[BufferSource] = None,
    ):
        self.spec = spec
        self.thresholds = thresholds or SelectorThresholds()
        self.override = override
        self.buffers = buffers or BufferSource(None)

    @staticmethod
    def validate(level: int, i1: np.ndarray, i2: np.ndarray, weights: np.ndarray, quantities: Quantities) -> None:
        """Raise LevelDataError when the level's cells cannot be binned."""
        n = 2 ** level
        if len(i1) and (i1.min() < 0 or i1.max() >= n or i2.min() < 0 or i2.max() >= n):
            raise LevelDataError(level, f"cell coordinates outside the level grid [0, {n})")
        if not np.all(np.isfinite(weights)):
            raise LevelDataError(level, "non-finite weights")
        for name, (values, _) in quantities.items():
            if not np.all(np.isfinite(values)):
                raise LevelDataError(level, f"non-finite values in '{name}'")

    def bin_level(
        self,
        level: int,
        i1: np.ndarray,
        i2: np.ndarray,
        weights: np.ndarray,
        quantities: Quantities,
    ) -> BinnedLevel:
        """
        Histogram one level.

        Args:
            level: AMR level of all given cells.
            i1, i2: integer coordinates of the cells along the two image axes.
            weights: per-cell weight (denominator contribution).
            quantities: name -> (values, weighted); the numerator contribution
                is ``values * weights`` when `weighted`, else ``values``.

        Returns:
            BinnedLevel whose histogram buffers come from `self.buffers`.

        Raises:
            LevelDataError for coordinates outside the level grid or
            non-finite weights/values.
        """
        i1 = np.asarray(i1, dtype=np.int64)
        i2 = np.asarray(i2, dtype=np.int64)
        weights = np.asarray(weights, dtype=float)
        self.validate(level, i1, i2, weights, quantities)

        bins = self.spec.level_bins(level)
        (lo1, hi1), (lo2, hi2) = bins
        n1, n2 = hi1 - lo1, hi2 - lo2
        n_cells = len(i1)

        inside = (i1 >= lo1) & (i1 < hi1) & (i2 >= lo2) & (i2 < hi2)
        b1 = i1[inside] - lo1
        b2 = i2[inside] - lo2
        w = weights[inside]
        n_binned = len(w)

        fill_ratio, expected = estimate_fill_ratio(b1, b2, (n1, n2))
        decision = select_algorithm(
            n_binned,
            self.spec.res,
            fill_ratio,
            total_bins=n1 * n2,
            expected_filled_bins=expected,
            thresholds=self.thresholds,
            override=self.override,
        )

        keep = None
        if decision.algorithm is Algorithm.HYBRID and n_binned:
            wmax = float(np.abs(w).max())
            keep = np.abs(w) >= wmax * self.thresholds.hybrid_relative_threshold
        elif decision.algorithm.is_sparse:
            keep = np.abs(w) >= self.thresholds.sparse_drop_threshold

        n_dropped = 0
        contributions: Dict[str, np.ndarray] = {}
        for name, (values, weighted) in quantities.items():
            values = np.asarray(values, dtype=float)[inside]
            contributions[name] = values * w if weighted else values

        if keep is not None and not keep.all():
            n_dropped = int(n_binned - np.count_nonzero(keep))
            b1, b2, w = b1[keep], b2[keep], w[keep]
            contributions = {name: c[keep] for name, c in contributions.items()}

        executed = decision.algorithm
        if executed is Algorithm.ADAPTIVE_SPARSE:
            # the estimate is an upper bound; measure the real occupancy
            occupied = len(np.unique(b1 * n2 + b2))
            if occupied / (n1 * n2) >= self.thresholds.sparse_fill:
                executed = Algorithm.DENSE
            else:
                executed = Algorithm.SPARSE

        sparse_nnz = None
        if executed.is_sparse:
            weight_hist, sparse_nnz = self._sparse(b1, b2, w, (n1, n2))
            value_hists = {name: self._sparse(b1, b2, c, (n1, n2))[0] for name, c in contributions.items()}
        else:
            flat = b1 * n2 + b2
            weight_hist = self._dense(flat, w, (n1, n2))
            value_hists = {name: self._dense(flat, c, (n1, n2)) for name, c in contributions.items()}

        logger.debug(
            "level %d: %d cells, %d binned, %d dropped, bins %dx%d, fill %.3g -> %s%s",
            level, n_cells, n_binned, n_dropped, n1, n2, fill_ratio, decision.algorithm.value,
            "" if executed is decision.algorithm else f" (ran {executed.value})",
        )

        return BinnedLevel(
            level=level,
            bins=bins,
            weight=weight_hist,
            values=value_hists,
            decision=decision,
            executed=executed,
            n_cells=n_cells,
            n_binned=n_binned,
            n_dropped=n_dropped,
            sparse_nnz=sparse_nnz,
        )

    def _dense(self, flat: np.ndarray, values: np.ndarray, shape: Tuple[int, int]) -> np.ndarray:
        out = self.buffers.checkout(shape)
        out += np.bincount(flat, weights=values, minlength=shape[0] * shape[1]).reshape(shape)
        return out

    def _sparse(self, b1: np.ndarray, b2: np.ndarray, values: np.ndarray, shape: Tuple[int, int]):
        acc = SparseAccumulator(shape, drop_threshold=self.thresholds.sparse_drop_threshold)
        acc.add_many(b1, b2, values)
        return acc.to_dense(out=self.buffers.checkout(shape)), acc.nnz

    def release(self, binned: BinnedLevel) -> None:
        """Return the histogram buffers of `binned` to the allocation source."""
        self.buffers.release(binned.weight)
        for hist in binned.values.values():
            self.buffers.release(hist)
        binned.values = {}
