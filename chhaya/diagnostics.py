#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Diagnostics attached to every projection result.

"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional


@dataclass
class LevelDiagnostics:
    """What happened to one AMR level."""

    level: int
    thread_id: int
    n_cells: int
    n_binned: int
    algorithm: str
    executed: str
    fill_ratio: float
    expected_filled_bins: int
    filled_bins: int
    total_bins: int
    skipped_ratio: float
    forced: bool = False
    sparse_nnz: Optional[int] = None
    seconds: float = 0.0


@dataclass
class Diagnostics:
    state: str = "init"
    levels: List[LevelDiagnostics] = field(default_factory=list)
    skipped_levels: Dict[int, str] = field(default_factory=dict)
    degraded: bool = False
    n_threads: int = 0
    assignments: Dict[int, List[int]] = field(default_factory=dict)
    level_counts: Dict[int, int] = field(default_factory=dict)
    n_cells: int = 0
    timings: Dict[str, float] = field(default_factory=dict)
    pool_used: bool = False
    pool_stats: Optional[Dict[str, object]] = None

    @property
    def cells_per_second(self) -> float:
        seconds = self.timings.get("total", 0.0)
        return self.n_cells / seconds if seconds > 0 else 0.0

    def level(self, level: int) -> Optional[LevelDiagnostics]:
        for entry in self.levels:
            if entry.level == level:
                return entry
        return None

    def as_dict(self) -> Dict[str, object]:
        out = asdict(self)
        out["cells_per_second"] = self.cells_per_second
        return out

    def summary(self) -> str:
        return (
            f"{self.n_cells} cells on {len(self.levels)} level(s), {self.n_threads} thread(s), "
            f"{self.timings.get('total', 0.0):.3f}s ({self.cells_per_second:.3g} cells/s)"
            + (f", degraded: skipped levels {sorted(self.skipped_levels)}" if self.degraded else "")
        )
