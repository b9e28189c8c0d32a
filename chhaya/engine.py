#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Projection engine: turns an AMR cell table into fixed-resolution 2D maps.

Every request walks the same states:

  INIT       validate the request and resolve the output grid
  EXTRACT    resolve variables, select cells, compute weights and values
  SCHEDULE   distribute the non-empty levels over worker threads
  PROCESS    per thread and level: select algorithm, bin, resample, add
  COMBINE    sum the per-thread partial grids
  NORMALIZE  weighted averages, sums, surface densities, dispersions
  DONE

Failures in INIT/EXTRACT raise `ProjectionConfigError` before any worker is
started. A level whose cells are malformed is skipped and the result is
flagged as degraded.

──────────────────────────────────────────────────────────────────────────────
Levels and the output grid
──────────────────────────────────────────────────────────────────────────────
Each level is histogrammed on its own native grid and then resampled onto the
output grid with the area-correction factor (2**L / res)**2, so that a pixel
can receive contributions from several levels while mass is conserved.

"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from .cells import CellTable
from .diagnostics import Diagnostics, LevelDiagnostics
from .errors import LevelDataError, ProjectionConfigError
from .grid import GridSpec
from .histogram import LevelBinner
from .normalize import WeightNormalizer
from .pool import BufferSource, MemoryPool
from .request import ProjectionRequest
from .resample import LevelResampler
from .scheduler import (
    PartialResult,
    ThreadAssignment,
    balance_workload,
    combine_partial_results,
    execute_assignments,
)
from .variables import Extraction, VariableKind, WeightExtractor

__version__ = "1.0.0"


def setup_logging(verbose: bool) -> None:
    """
    Configure global logging.

    Args:
        verbose: If True, set DEBUG level, otherwise INFO.
    """

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )

    # Reduce noise from libraries (adjustable)
    logging.getLogger("h5py").setLevel(logging.WARNING)


logger = logging.getLogger("chhaya")


class ProjectionState(str, Enum):
    INIT = "init"
    EXTRACT = "extract"
    SCHEDULE = "schedule"
    PROCESS = "process"
    COMBINE = "combine"
    NORMALIZE = "normalize"
    DONE = "done"


@dataclass
class ProjectionResult:
    """
    Maps of one projection and the geometry needed to display them.

    `extent` is [x0, x1, y0, y1] of the image in code units, `extent_center`
    the same bounds relative to the projection center. `ranges` are the
    normalized [xmin, xmax, ymin, ymax, zmin, zmax] actually used.
    """

    maps: Dict[str, np.ndarray]
    units: Dict[str, str]
    weighting: Dict[str, str]
    mode: Dict[str, str]
    extent: Tuple[float, float, float, float]
    extent_center: Tuple[float, float, float, float]
    ratio: float
    res: int
    pixsize: float
    boxlen: float
    direction: str
    ranges: Tuple[float, ...]
    lmin: int
    lmax: int
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def __getitem__(self, name: str) -> np.ndarray:
        return self.maps[name]

    def __contains__(self, name: str) -> bool:
        return name in self.maps

    @property
    def degraded(self) -> bool:
        return self.diagnostics.degraded


class ProjectionEngine:
    """
    Run one projection request against one cell table.

    Args:
        table: the AMR cells (read only).
        request: validated request.
        pool: optional MemoryPool supplying histogram and grid buffers.
    """

    def __init__(self, table: CellTable, request: ProjectionRequest, pool: Optional[MemoryPool] = None):
        self.table = table
        self.request = request
        self.buffers = BufferSource(pool)
        self.diagnostics = Diagnostics(pool_used=self.buffers.enabled)

        self.spec: Optional[GridSpec] = None
        self.binner: Optional[LevelBinner] = None
        self.extraction: Optional[Extraction] = None
        self._positions: Dict[int, np.ndarray] = {}
        self._partials: List[PartialResult] = []

    # ──────────────────────────────────────────────────────────────────────
    # states
    # ──────────────────────────────────────────────────────────────────────

    def _enter(self, state: ProjectionState) -> None:
        self.diagnostics.state = state.value
        logger.debug("state -> %s", state.value.upper())

    def _init(self) -> None:
        req = self.request
        self.spec = GridSpec.build(
            self.table,
            direction=req.direction,
            xrange=req.xrange,
            yrange=req.yrange,
            zrange=req.zrange,
            center=req.center,
            range_unit=req.range_unit,
            res=req.res,
            pxsize=req.pxsize,
            lmax=req.lmax,
            data_center=req.data_center,
            data_center_unit=req.data_center_unit,
        )
        if req.mask is not None and len(req.mask) != len(self.table):
            raise ProjectionConfigError(
                f"mask has {len(req.mask)} entries, the cell table has {len(self.table)}"
            )
        self.binner = LevelBinner(self.spec, req.thresholds, req.algorithm, self.buffers)

    def select_cells(self) -> np.ndarray:
        """Indices of the cells inside the mask and the line-of-sight range."""
        table, spec = self.table, self.spec
        keep = np.ones(len(table), dtype=bool) if self.request.mask is None else self.request.mask.copy()

        los = table.coords(spec.axes[2])
        for lvl in np.unique(table.level):
            lo, hi = spec.los_bounds(int(lvl))
            on = table.level == lvl
            keep[on] &= (los[on] >= lo) & (los[on] < hi)
        return np.flatnonzero(keep)

    def _extract(self) -> None:
        extractor = WeightExtractor(self.table, self.request, self.spec)
        extractor.plan()
        index = self.select_cells()
        self.extraction = extractor.extract(index)

        levels = self.table.level[index]
        order = np.argsort(levels, kind="stable")
        uniq, starts = np.unique(levels[order], return_index=True)
        bounds = list(starts[1:]) + [len(order)]
        self._positions = {int(lvl): order[s:e] for lvl, s, e in zip(uniq, starts, bounds)}

        self.diagnostics.n_cells = int(len(index))
        self.diagnostics.level_counts = {lvl: int(len(pos)) for lvl, pos in self._positions.items()}
        logger.debug("selected %d of %d cells", len(index), len(self.table))

    def _schedule(self):
        assignments = balance_workload(self.diagnostics.level_counts, max_threads=self.request.max_threads)
        self.diagnostics.n_threads = len(assignments)
        self.diagnostics.assignments = {a.thread_id: list(a.levels) for a in assignments}
        return assignments

    def _process_assignment(self, assignment: ThreadAssignment) -> PartialResult:
        """Worker body: bin, resample and accumulate every level of one thread."""
        tid = assignment.thread_id
        partial = PartialResult(thread_id=tid)
        self._partials.append(partial)
        try:
            for level in assignment.levels:
                self._process_level(level, partial)
        except Exception:
            logger.exception("[thread %d] unexpected worker error", tid)
            raise
        return partial

    def _release_partial(self, partial: PartialResult) -> None:
        self.buffers.release(partial.weight)
        for grid in partial.numerators.values():
            self.buffers.release(grid)
        partial.weight = None
        partial.numerators = {}

    def _process_level(self, level: int, partial: PartialResult) -> None:
        t0 = time.perf_counter()
        spec, table, extraction = self.spec, self.table, self.extraction

        pos = self._positions[level]
        idx = extraction.index[pos]
        try:
            binned = self.binner.bin_level(
                level,
                table.coords(spec.axes[0])[idx],
                table.coords(spec.axes[1])[idx],
                extraction.weights[pos],
                extraction.level_slice(pos),
            )
        except LevelDataError as err:
            logger.warning("[thread %d] skipping %s", partial.thread_id, err)
            partial.skipped[level] = err.reason
            return

        try:
            diag = LevelDiagnostics(
                level=level,
                thread_id=partial.thread_id,
                n_cells=binned.n_cells,
                n_binned=binned.n_binned,
                algorithm=binned.decision.algorithm.value,
                executed=binned.executed.value,
                fill_ratio=binned.decision.fill_ratio,
                expected_filled_bins=binned.decision.expected_filled_bins,
                filled_bins=binned.filled_bins,
                total_bins=binned.decision.total_bins,
                skipped_ratio=binned.skipped_ratio,
                forced=binned.decision.forced,
                sparse_nnz=binned.sparse_nnz,
            )

            resampler = LevelResampler(spec, level, binned.bins)
            partial.ensure_grids(binned.values, spec.shape, self.buffers)
            resampler.accumulate(partial.weight, binned.weight)
            for name, hist in binned.values.items():
                resampler.accumulate(partial.numerators[name], hist)
        finally:
            self.binner.release(binned)

        diag.seconds = time.perf_counter() - t0
        partial.levels.append(diag)

    # ──────────────────────────────────────────────────────────────────────
    # driver
    # ──────────────────────────────────────────────────────────────────────

    def run(self) -> ProjectionResult:
        diag = self.diagnostics
        t_start = time.perf_counter()

        self._enter(ProjectionState.INIT)
        self._init()

        self._enter(ProjectionState.EXTRACT)
        t0 = time.perf_counter()
        self._extract()
        diag.timings["extract"] = time.perf_counter() - t0

        self._enter(ProjectionState.SCHEDULE)
        assignments = self._schedule()

        self._enter(ProjectionState.PROCESS)
        t0 = time.perf_counter()
        try:
            partials = execute_assignments(assignments, self._process_assignment)
        except Exception:
            # grids of finished and failed workers alike go back to the pool
            for part in self._partials:
                self._release_partial(part)
            raise
        diag.timings["process"] = time.perf_counter() - t0

        for part in partials:
            diag.levels.extend(part.levels)
            diag.skipped_levels.update(part.skipped)
        diag.levels.sort(key=lambda d: d.level)
        diag.degraded = bool(diag.skipped_levels)

        self._enter(ProjectionState.COMBINE)
        t0 = time.perf_counter()
        numerators, weight = combine_partial_results(partials, self.spec.shape, self.buffers)
        diag.timings["combine"] = time.perf_counter() - t0

        self._enter(ProjectionState.NORMALIZE)
        t0 = time.perf_counter()
        normalizer = WeightNormalizer(self.table, self.request, self.spec)
        maps, units = normalizer.finalize(self.extraction, numerators, weight)
        for grid in numerators.values():
            self.buffers.release(grid)
        self.buffers.release(weight)
        diag.timings["normalize"] = time.perf_counter() - t0

        if self.buffers.enabled:
            self.buffers.pool.cleanup()
            diag.pool_stats = self.buffers.stats()

        self._enter(ProjectionState.DONE)
        diag.timings["total"] = time.perf_counter() - t_start

        if diag.degraded:
            logger.warning("projection degraded: skipped levels %s", diag.skipped_levels)
        logger.info("projection %s: %s", self.request.direction, diag.summary())

        return self._result(maps, units)

    def _result(self, maps: Dict[str, np.ndarray], units: Dict[str, str]) -> ProjectionResult:
        spec, req = self.spec, self.request
        weighting: Dict[str, str] = {}
        mode: Dict[str, str] = {}
        for name in maps:
            definition = self.extraction.definitions[name]
            if definition.kind is VariableKind.GEOMETRY:
                weighting[name], mode[name] = "none", "geometry"
            elif definition.collapse:
                weighting[name], mode[name] = "none", "sum"
            elif definition.kind is VariableKind.DISPERSION:
                weighting[name], mode[name] = req.weighting, "average"
            else:
                weighting[name], mode[name] = req.weighting, req.mode

        return ProjectionResult(
            maps=maps,
            units=units,
            weighting=weighting,
            mode=mode,
            extent=spec.extent,
            extent_center=spec.extent_center,
            ratio=spec.ratio,
            res=spec.res,
            pixsize=spec.pixsize,
            boxlen=spec.boxlen,
            direction=spec.direction,
            ranges=spec.ranges,
            lmin=self.table.lmin,
            lmax=self.table.lmax,
            diagnostics=self.diagnostics,
        )


def project(table: CellTable, request: ProjectionRequest, pool: Optional[MemoryPool] = None) -> ProjectionResult:
    """Run `request` on `table`."""
    return ProjectionEngine(table, request, pool=pool).run()


def projection(
    table: CellTable,
    variables,
    units="standard",
    pool: Optional[MemoryPool] = None,
    **kwargs,
) -> ProjectionResult:
    """
    Project one or more variables of `table` along a box axis.

    Args:
        table: the AMR cells.
        variables: a name or a list of names (stored fields, derived
            quantities, 'sd', 'mass', dispersions, 'r_cylinder', 'phi', ...).
        units: one unit for all variables or one per variable.
        pool: optional MemoryPool.
        **kwargs: any other `ProjectionRequest` field (direction, weighting,
            mode, xrange, yrange, zrange, center, range_unit, data_center,
            res, pxsize, lmax, mask, max_threads, algorithm, thresholds).

    Returns:
        ProjectionResult

    Raises:
        ProjectionConfigError when the request cannot be satisfied.
    """
    request = ProjectionRequest(variables=variables, units=units, **kwargs)
    return project(table, request, pool=pool)
