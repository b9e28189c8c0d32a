# -*- coding: utf-8 -*-

"""

Chhaya: multi-resolution projections of RAMSES AMR data
=======================================================

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Chhaya projects adaptive-mesh-refinement cells onto fixed-resolution 2D maps:
weighted averages, sums, surface densities, velocity dispersions and
radius/angle maps, with every AMR level binned at its own resolution and
resampled onto the output grid so that mass is conserved.

──────────────────────────────────────────────────────────────────────────────
WHY THIS EXISTS
──────────────────────────────────────────────────────────────────────────────
- A RAMSES snapshot mixes cells of very different sizes; naive per-pixel
  binning at one resolution either loses small cells or smears large ones.
- Levels are independent, so they are histogrammed in parallel threads and
  sparse levels at high resolution are accumulated in a bin map instead of
  a dense array.

"""

from .cells import CellTable
from .errors import ChhayaError, LevelDataError, ProjectionConfigError
from .request import ProjectionRequest
from .sparse import SelectorThresholds, SparseAccumulator
from .pool import MemoryPool
from .engine import (
    ProjectionEngine,
    ProjectionResult,
    ProjectionState,
    project,
    projection,
    setup_logging,
    __version__,
)
