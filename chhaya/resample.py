#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Level resampling: bring a level-native histogram onto the output grid.

The resize is separable and area-preserving. Along one axis, level bin ``g``
covers ``[g, g+1) / 2**L`` and output pixel ``q`` covers ``[q, q+1) / res``;
measured in units of ``1 / (2**L * res)`` both become integer intervals,
``[g*res, (g+1)*res)`` and ``[q*2**L, (q+1)*2**L)``. The matrix entry is the
overlap length divided by the pixel length, i.e. the resize preserves
intensities: a coarse bin is replicated when upsampling and fine bins are
block-averaged when downsampling. Multiplying by the area-correction factor
``(2**L / res)**2`` then turns it into a mass-conserving transfer.

"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np
from scipy import sparse

from .grid import GridSpec

logger = logging.getLogger("chhaya.resample")


def overlap_matrix(level_lo: int, level_n: int, level: int, out_lo: int, out_n: int, res: int) -> sparse.csr_matrix:
    """
    Overlap operator of one image axis.

    Args:
        level_lo, level_n: first level bin and number of level bins.
        level: the AMR level (bins per box length = 2**level).
        out_lo, out_n: first output pixel and number of output pixels.
        res: output pixels per box length.

    Returns:
        (out_n, level_n) CSR matrix M with ``out = M @ hist`` along this axis.
    """
    nlev = 2 ** level
    g = level_lo + np.arange(level_n, dtype=np.int64)

    # pixels touched by each level bin: q0 .. q1 inclusive
    q0 = (g * res) // nlev
    q1 = -((-(g + 1) * res) // nlev) - 1
    counts = q1 - q0 + 1

    cols = np.repeat(np.arange(level_n, dtype=np.int64), counts)
    starts = np.repeat(q0, counts)
    offsets = np.arange(counts.sum(), dtype=np.int64) - np.repeat(np.cumsum(counts) - counts, counts)
    q = starts + offsets
    gg = g[cols]

    overlap = np.minimum((gg + 1) * res, (q + 1) * nlev) - np.maximum(gg * res, q * nlev)
    rows = q - out_lo

    keep = (rows >= 0) & (rows < out_n) & (overlap > 0)
    data = overlap[keep] / nlev
    return sparse.csr_matrix((data, (rows[keep], cols[keep])), shape=(out_n, level_n))


class LevelResampler:
    """
    Resample and accumulate the histograms of one level.

    The two axis operators are built once per level and applied to the
    weight histogram and every numerator histogram of that level.
    """

    def __init__(self, spec: GridSpec, level: int, bins: Optional[Tuple[Tuple[int, int], Tuple[int, int]]] = None):
        self.level = level
        self.res = spec.res
        (lo1, hi1), (lo2, hi2) = bins if bins is not None else spec.level_bins(level)
        self.shape_in = (hi1 - lo1, hi2 - lo2)
        self.shape_out = spec.shape
        self.m1 = overlap_matrix(lo1, hi1 - lo1, level, spec.lo1, spec.length1, spec.res)
        self.m2 = overlap_matrix(lo2, hi2 - lo2, level, spec.lo2, spec.length2, spec.res)
        self.fcorrect = (2.0 ** level / spec.res) ** 2

    def resample(self, hist: np.ndarray) -> np.ndarray:
        """Intensity-preserving resize of a level histogram onto the output grid."""
        if hist.shape != self.shape_in:
            raise ValueError(f"level {self.level} histogram has shape {hist.shape}, expected {self.shape_in}")
        tmp = self.m1 @ hist
        return np.asarray((self.m2 @ np.asarray(tmp).T).T)

    def accumulate(self, target: np.ndarray, hist: np.ndarray) -> np.ndarray:
        """Add the area-corrected, resampled `hist` to `target` in place."""
        target += self.fcorrect * self.resample(hist)
        return target
