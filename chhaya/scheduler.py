#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Level scheduling across worker threads and the reduction of their results.

Each worker owns a disjoint set of AMR levels and a private `PartialResult`;
nothing is shared while levels are processed. After the join, the partial
grids are summed into fresh final grids.

"""

from __future__ import annotations

import concurrent.futures
import heapq
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np

from .diagnostics import LevelDiagnostics
from .pool import BufferSource

logger = logging.getLogger("chhaya.scheduler")


@dataclass
class ThreadAssignment:
    thread_id: int
    levels: List[int] = field(default_factory=list)
    load: int = 0


def resolve_thread_count(max_threads: Optional[int], n_levels: int) -> int:
    """min(thread budget, CPU count, non-empty levels), at least 1."""
    cpus = os.cpu_count() or 1
    budget = cpus if max_threads is None else int(max_threads)
    return max(1, min(budget, cpus, n_levels))


def balance_workload(
    level_counts: Mapping[int, int],
    max_threads: Optional[int] = None,
    n_threads: Optional[int] = None,
) -> List[ThreadAssignment]:
    """
    Greedy longest-first assignment of levels to threads.

    Levels are taken by descending cell count (ties: lower level first) and
    each goes to the least-loaded thread, ties going to the lowest thread id.
    Empty levels are not scheduled and threads that receive nothing are not
    returned.

    Args:
        level_counts: level -> cell count.
        max_threads: thread budget (None = CPU count).
        n_threads: exact thread count, bypassing the budget/CPU clamp.

    Returns:
        Non-empty assignments ordered by thread id.
    """
    levels = sorted(
        ((lvl, cnt) for lvl, cnt in level_counts.items() if cnt > 0),
        key=lambda item: (-item[1], item[0]),
    )
    if not levels:
        return []

    if n_threads is None:
        n_threads = resolve_thread_count(max_threads, len(levels))
    n_threads = max(1, min(int(n_threads), len(levels)))

    assignments = [ThreadAssignment(thread_id=i) for i in range(n_threads)]
    heap: List[Tuple[int, int]] = [(0, i) for i in range(n_threads)]

    for lvl, cnt in levels:
        load, tid = heapq.heappop(heap)
        assignments[tid].levels.append(lvl)
        assignments[tid].load = load + cnt
        heapq.heappush(heap, (load + cnt, tid))

    assigned = [a for a in assignments if a.levels]
    logger.debug(
        "scheduled %d level(s) on %d thread(s): %s",
        len(levels), len(assigned), {a.thread_id: a.levels for a in assigned},
    )
    return assigned


@dataclass
class PartialResult:
    """Grids and diagnostics produced by one worker."""

    thread_id: int
    numerators: Dict[str, np.ndarray] = field(default_factory=dict)
    weight: Optional[np.ndarray] = None
    levels: List[LevelDiagnostics] = field(default_factory=list)
    skipped: Dict[int, str] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return self.weight is None

    def ensure_grids(self, names, shape, buffers: BufferSource) -> None:
        """Allocate the weight grid and the numerator grid of every name once."""
        if self.weight is None:
            self.weight = buffers.checkout(shape)
        for name in names:
            if name not in self.numerators:
                self.numerators[name] = buffers.checkout(shape)


def execute_assignments(
    assignments: List[ThreadAssignment],
    worker: Callable[[ThreadAssignment], PartialResult],
) -> List[PartialResult]:
    """
    Run `worker` once per assignment on a fixed thread pool and join.

    A single assignment runs on the calling thread. Exceptions raised by a
    worker propagate after every worker has finished.
    """
    if not assignments:
        return []
    if len(assignments) == 1:
        return [worker(assignments[0])]

    with concurrent.futures.ThreadPoolExecutor(
        max_workers=len(assignments), thread_name_prefix="chhaya-level"
    ) as ex:
        futures = [ex.submit(worker, a) for a in assignments]
        concurrent.futures.wait(futures)

    results = []
    for assignment, fut in zip(assignments, futures):
        err = fut.exception()
        if err is not None:
            logger.error("[thread %d] worker failed on levels %s: %s", assignment.thread_id, assignment.levels, err)
            raise err
        results.append(fut.result())
    return results


def combine_partial_results(
    partials: List[PartialResult],
    shape: Tuple[int, int],
    buffers: Optional[BufferSource] = None,
) -> Tuple[Dict[str, np.ndarray], Optional[np.ndarray]]:
    """
    Sum every partial grid into fresh final grids.

    Names no worker produced are absent. Partial buffers are released to
    `buffers` once added.

    Returns:
        (numerators, weight); weight is None when no worker produced grids.
    """
    buffers = buffers or BufferSource(None)
    numerators: Dict[str, np.ndarray] = {}
    weight: Optional[np.ndarray] = None

    for part in partials:
        if part.empty:
            continue
        if weight is None:
            weight = buffers.checkout(shape)
        weight += part.weight
        buffers.release(part.weight)
        part.weight = None

        for name, grid in part.numerators.items():
            if name not in numerators:
                numerators[name] = buffers.checkout(shape)
            numerators[name] += grid
            buffers.release(grid)
        part.numerators = {}

    return numerators, weight
