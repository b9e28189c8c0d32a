#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Parallel execution over many RAMSES outputs (one process per output).

Within one output the projection engine already spreads AMR levels over
threads; this module only fans out whole snapshots.

"""

from __future__ import annotations

from functools import partial
from typing import List, Optional

import concurrent.futures
from concurrent.futures.process import BrokenProcessPool
import logging
import os
import time

from .engine import project, setup_logging
from .export import save_projection
from .loader import load_cell_table
from .request import ProjectionRequest

logger = logging.getLogger("chhaya")


def output_filename(output_prefix: str, output_num: int, direction: str, output_directory: Optional[str] = None) -> str:
    name = f"{output_prefix}_{direction}_{output_num:05d}.h5"
    return os.path.join(output_directory, name) if output_directory else name


def process_single_output(
    output_num: int,
    input_folder: str,
    request: ProjectionRequest,
    output_prefix: str = "projection",
    fields: Optional[List[str]] = None,
    dry_run: bool = False,
    verbose: bool = False,
    output_directory: Optional[str] = None,
) -> Optional[str]:
    """
    Worker function executed in each process: load one snapshot, project it
    and write the maps.

    Args:
        output_num: Snapshot/output number being processed.
        input_folder: Root input directory containing RAMSES outputs.
        request: the projection to run on the snapshot.
        output_prefix: File prefix for output files.
        fields: Optional list of mesh fields to load (None = all).
        dry_run: Load and report, but do not project or write.
        verbose: Flag for verbose logging.
        output_directory: Optional directory for output files (default: cwd).

    Returns:
        The written file name, or None when nothing was written.
    """
    setup_logging(verbose)

    try:
        t0 = time.time()
        table = load_cell_table(input_folder, output_num, fields=fields)

        if dry_run:
            logger.info(
                "[dry-run] output %s: %r, cells per level %s; would project %s along %s",
                output_num, table, table.level_counts(), list(request.variables), request.direction,
            )
            return None

        result = project(table, request)
        filename = save_projection(
            result, output_filename(output_prefix, output_num, request.direction, output_directory)
        )
        logger.info("DONE: output %s in %.2fs", output_num, time.time() - t0)
        return filename
    except Exception:
        # Do not re-raise because we want other workers to continue
        logger.exception("[worker %s] Unexpected worker error", output_num)
        return None


def run_parallel_projection(
    output_numbers: List[int],
    input_folder: str,
    request: ProjectionRequest,
    output_prefix: str = "projection",
    fields: Optional[List[str]] = None,
    dry_run: bool = False,
    verbose: bool = False,
    nproc: Optional[int] = None,
    output_directory: Optional[str] = None,
) -> List[Optional[str]]:
    """
    High-level parallel runner that projects multiple outputs.

    Args:
        output_numbers: List of snapshot numbers.
        input_folder: Input directory containing RAMSES outputs.
        request: projection applied to every snapshot.
        nproc: Number of processes; None or < 1 means serial execution,
            otherwise up to min(nproc, number of outputs) workers.

    Returns:
        Written file names (None for skipped/failed outputs), in input order.

    On a failure of the process pool itself the outputs are processed
    serially, continuing past per-output errors.
    """

    if nproc is not None and nproc > 0:
        nworkers = min(nproc, len(output_numbers))
    else:
        nworkers = 1

    logger.info("Starting on %d worker(s) for outputs %s", nworkers, output_numbers)
    t0 = time.time()

    worker = partial(
        process_single_output,
        input_folder=input_folder,
        request=request,
        output_prefix=output_prefix,
        fields=fields,
        dry_run=dry_run,
        verbose=verbose,
        output_directory=output_directory,
    )

    if nworkers == 1:
        written = [worker(num) for num in output_numbers]
    else:
        try:
            with concurrent.futures.ProcessPoolExecutor(max_workers=nworkers) as ex:
                written = list(ex.map(worker, output_numbers))
        except BrokenProcessPool as e:
            logger.error("Parallel execution failed: %s", e)
            logger.info("Falling back to serial execution...")
            written = [worker(num) for num in output_numbers]

    logger.info("Total elapsed: %.2fs", time.time() - t0)
    return written
