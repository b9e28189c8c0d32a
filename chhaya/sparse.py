#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Accumulation strategy selection and the sparse (bin -> value) accumulator.

High-resolution maps of sparsely refined levels touch only a small fraction
of the level grid; for those the histogram is collected in a dict keyed by
``(binX, binY)`` and scattered into a dense array once at the end.

"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

import numpy as np

logger = logging.getLogger("chhaya.sparse")


class Algorithm(str, Enum):
    DENSE = "dense"
    HYBRID = "hybrid"
    ADAPTIVE_SPARSE = "adaptive_sparse"
    SPARSE = "sparse"

    @property
    def is_sparse(self) -> bool:
        return self in (Algorithm.SPARSE, Algorithm.ADAPTIVE_SPARSE)


@dataclass(frozen=True)
class SelectorThresholds:
    """Tunable knobs of the dense/sparse decision."""

    sparse_resolution: int = 4096
    sparse_fill: float = 0.01
    adaptive_resolution: int = 2048
    adaptive_fill: float = 0.05
    hybrid_resolution: int = 2048
    hybrid_fill: float = 0.20
    # contributions with |w| below this are dropped by the sparse path
    sparse_drop_threshold: float = 1e-12
    # hybrid path drops |w| < max|w| * hybrid_relative_threshold
    hybrid_relative_threshold: float = 1e-8


@dataclass(frozen=True)
class AlgorithmDecision:
    algorithm: Algorithm
    n_cells: int
    resolution: int
    fill_ratio: float
    total_bins: int
    expected_filled_bins: int
    forced: bool = False

    def as_dict(self) -> Dict[str, object]:
        out = asdict(self)
        out["algorithm"] = self.algorithm.value
        return out


def estimate_fill_ratio(i1: np.ndarray, i2: np.ndarray, shape: Tuple[int, int]) -> Tuple[float, int]:
    """
    Estimate the fraction of level bins that receive at least one cell.

    The number of filled bins is bounded by both the cell count and the area
    of the occupied bounding box; the ratio is taken against the actual
    (possibly non-square) level grid.

    Returns:
        (fill_ratio, expected_filled_bins)
    """
    total = int(shape[0]) * int(shape[1])
    if len(i1) == 0 or total == 0:
        return 0.0, 0
    bbox = (int(i1.max()) - int(i1.min()) + 1) * (int(i2.max()) - int(i2.min()) + 1)
    expected = min(len(i1), bbox)
    return expected / total, expected


def select_algorithm(
    n_cells: int,
    resolution: int,
    fill_ratio: float,
    total_bins: int = 0,
    expected_filled_bins: int = 0,
    thresholds: Optional[SelectorThresholds] = None,
    override: str = "auto",
) -> AlgorithmDecision:
    """
    Pick the accumulation strategy for one level.

    Args:
        n_cells: cells on the level inside the requested extent.
        resolution: requested output resolution.
        fill_ratio: estimated filled fraction of the level grid.
        override: 'auto', 'force-dense' or 'force-sparse'.
    """
    t = thresholds or SelectorThresholds()

    def decide(algorithm: Algorithm, forced: bool = False) -> AlgorithmDecision:
        return AlgorithmDecision(
            algorithm=algorithm,
            n_cells=int(n_cells),
            resolution=int(resolution),
            fill_ratio=float(fill_ratio),
            total_bins=int(total_bins),
            expected_filled_bins=int(expected_filled_bins),
            forced=forced,
        )

    if override == "force-dense":
        return decide(Algorithm.DENSE, forced=True)
    if override == "force-sparse":
        return decide(Algorithm.SPARSE, forced=True)

    if resolution >= t.sparse_resolution and fill_ratio < t.sparse_fill:
        return decide(Algorithm.SPARSE)
    if resolution >= t.adaptive_resolution and fill_ratio < t.adaptive_fill:
        return decide(Algorithm.ADAPTIVE_SPARSE)
    if resolution >= t.hybrid_resolution and fill_ratio < t.hybrid_fill:
        return decide(Algorithm.HYBRID)
    return decide(Algorithm.DENSE)


class SparseAccumulator:
    """
    Thread-safe ``(binX, binY) -> value`` histogram.

    Contributions whose magnitude is below `drop_threshold` are discarded
    before insertion; `dropped` counts them.
    """

    def __init__(self, shape: Tuple[int, int], drop_threshold: float = 1e-12):
        self.shape = (int(shape[0]), int(shape[1]))
        self.drop_threshold = float(drop_threshold)
        self.dropped = 0
        self._data: Dict[Tuple[int, int], float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._data)

    @property
    def nnz(self) -> int:
        """Number of distinct bins holding a value."""
        return len(self._data)

    def add(self, bx: int, by: int, value: float) -> None:
        """Insert `value` at (bx, by) or add it to the existing entry."""
        if abs(value) < self.drop_threshold:
            with self._lock:
                self.dropped += 1
            return
        key = (int(bx), int(by))
        with self._lock:
            self._data[key] = self._data.get(key, 0.0) + float(value)

    def add_many(self, bx: np.ndarray, by: np.ndarray, values: np.ndarray) -> None:
        """
        Batched insert-or-accumulate.

        Contributions are thresholded one by one, pre-summed per bin with
        numpy and then merged into the map under a single lock acquisition.
        """
        values = np.asarray(values, dtype=float)
        keep = np.abs(values) >= self.drop_threshold
        n_dropped = int(len(values) - np.count_nonzero(keep))

        bx = np.asarray(bx)[keep]
        by = np.asarray(by)[keep]
        values = values[keep]

        flat = bx.astype(np.int64) * self.shape[1] + by.astype(np.int64)
        keys, inverse = np.unique(flat, return_inverse=True)
        sums = np.bincount(inverse.ravel(), weights=values, minlength=len(keys))
        k1, k2 = np.divmod(keys, self.shape[1])

        with self._lock:
            self.dropped += n_dropped
            data = self._data
            for i, j, v in zip(k1.tolist(), k2.tolist(), sums.tolist()):
                key = (i, j)
                data[key] = data.get(key, 0.0) + v

    def items(self) -> Iterator[Tuple[Tuple[int, int], float]]:
        with self._lock:
            snapshot = list(self._data.items())
        return iter(snapshot)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self.dropped = 0

    def to_dense(self, out: Optional[np.ndarray] = None) -> np.ndarray:
        """Zero-initialize a dense array (or `out`) and scatter all entries into it."""
        if out is None:
            out = np.zeros(self.shape, dtype=float)
        else:
            if out.shape != self.shape:
                raise ValueError(f"output buffer has shape {out.shape}, expected {self.shape}")
            out.fill(0.0)

        with self._lock:
            if not self._data:
                return out
            idx = np.fromiter(
                (k for key in self._data for k in key), dtype=np.int64, count=2 * len(self._data)
            ).reshape(-1, 2)
            vals = np.fromiter(self._data.values(), dtype=float, count=len(self._data))

        out[idx[:, 0], idx[:, 1]] = vals
        return out
