#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

HDF5 hand-off of projection results.

Layout of a written file::

    /Projection                 attrs: direction, res, pixsize, boxlen, extent,
                                       extent_center, ratio, ranges, lmin, lmax,
                                       degraded, generator_*
    /Projection/Maps/<name>     2D float dataset, attrs: unit, weighting, mode
    /Projection/Diagnostics     attrs: state, n_cells, n_threads, timings
    /Projection/Diagnostics/Levels   one row per processed level

"""

from __future__ import annotations

import logging
import os
import shlex
import sys
import time
from typing import Dict, Optional

import h5py as h5
import numpy as np

from .diagnostics import Diagnostics
from .engine import ProjectionResult, __version__

logger = logging.getLogger("chhaya.export")

_LEVEL_COLUMNS = ("level", "thread_id", "n_cells", "n_binned", "filled_bins", "total_bins")


def _write_diagnostics(group, diag: Diagnostics) -> None:
    group.attrs["state"] = diag.state
    group.attrs["n_cells"] = diag.n_cells
    group.attrs["n_threads"] = diag.n_threads
    group.attrs["pool_used"] = diag.pool_used
    for key, seconds in diag.timings.items():
        group.attrs[f"time_{key}"] = seconds

    if diag.levels:
        table = np.array([[getattr(d, c) for c in _LEVEL_COLUMNS] for d in diag.levels], dtype=np.int64)
        ds = group.create_dataset("Levels", data=table)
        ds.attrs["columns"] = ",".join(_LEVEL_COLUMNS)
        group.create_dataset("LevelAlgorithms", data=[d.executed.encode("ascii") for d in diag.levels])
        group.create_dataset("LevelFillRatio", data=np.array([d.fill_ratio for d in diag.levels]))

    if diag.skipped_levels:
        group.attrs["skipped_levels"] = np.array(sorted(diag.skipped_levels), dtype=np.int64)


def save_projection(
    result: ProjectionResult,
    filename: str,
    float_dtype: str = "f8",
    command: Optional[str] = None,
) -> str:
    """
    Write `result` to an HDF5 file.

    Args:
        result: the projection to store.
        filename: target path (parent directories are created).
        float_dtype: dtype of the map datasets.
        command: command line recorded as generator_command (default: sys.argv).

    Returns:
        The written file name.
    """
    parent = os.path.dirname(filename)
    if parent:
        os.makedirs(parent, exist_ok=True)

    t0 = time.time()
    with h5.File(filename, "w") as f:
        root = f.create_group("Projection", track_order=True)
        root.attrs["direction"] = result.direction
        root.attrs["res"] = result.res
        root.attrs["pixsize"] = result.pixsize
        root.attrs["boxlen"] = result.boxlen
        root.attrs["extent"] = np.asarray(result.extent, dtype=float)
        root.attrs["extent_center"] = np.asarray(result.extent_center, dtype=float)
        root.attrs["ratio"] = result.ratio
        root.attrs["ranges"] = np.asarray(result.ranges, dtype=float)
        root.attrs["lmin"] = result.lmin
        root.attrs["lmax"] = result.lmax
        root.attrs["degraded"] = result.degraded

        root.attrs["generator_command"] = command if command is not None else shlex.join(sys.argv)
        root.attrs["generator_timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        root.attrs["generator_version"] = __version__

        maps = root.create_group("Maps", track_order=True)
        for name, data in result.maps.items():
            ds = maps.create_dataset(name, data=np.asarray(data).astype(float_dtype), compression="gzip")
            ds.attrs["unit"] = result.units.get(name, "standard")
            ds.attrs["weighting"] = result.weighting.get(name, "none")
            ds.attrs["mode"] = result.mode.get(name, "")

        _write_diagnostics(root.create_group("Diagnostics"), result.diagnostics)

    logger.info("Saved '%s' (%d map(s)) in %.2fs", filename, len(result.maps), time.time() - t0)
    return filename


def load_projection_maps(filename: str) -> Dict[str, np.ndarray]:
    """Read back the maps of a file written by `save_projection`."""
    with h5.File(filename, "r") as f:
        maps = f["Projection/Maps"]
        return {name: maps[name][()] for name in maps}
