#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

─────────────────────────────────────────────────────────────
Example Usage of Chhaya
─────────────────────────────────────────────────────────────

This script demonstrates how to project an AMR cell table
onto 2D maps with `chhaya.projection`.

Features demonstrated:
1. Building a synthetic two-level cell table
2. Mass-weighted average, surface density and dispersion maps
3. Reading the per-level diagnostics of a projection
4. Reusing a MemoryPool across projections
5. Writing the maps to an HDF5 file

To project a real RAMSES snapshot instead, use
`chhaya.loader.load_cell_table(folder, output_num)` or the
`chhaya` command line tool.

─────────────────────────────────────────────────────────────

"""

import os

import numpy as np

from chhaya import CellTable, MemoryPool, projection, setup_logging
from chhaya.export import save_projection

# ──────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────

COARSE_LEVEL = 5

FINE_LEVEL = 6

RESOLUTION = 64

VARIABLES = ["rho", "sd", "sigma_z", "r_cylinder"]

OUTPUT_FILE = None  # Set to e.g. "projections/example_z.h5" to write the maps


# ──────────────────────────────────────────────────────────────
# Helper Functions
# ──────────────────────────────────────────────────────────────


def make_table(seed: int = 0) -> CellTable:
    """A uniform coarse box with a refined clump in its center."""

    rng = np.random.default_rng(seed)
    n = 2 ** COARSE_LEVEL
    lo, hi = n // 4, 3 * n // 4

    ix, iy, iz = np.meshgrid(np.arange(n), np.arange(n), np.arange(n), indexing="ij")
    refined = (ix >= lo) & (ix < hi) & (iy >= lo) & (iy < hi) & (iz >= lo) & (iz < hi)
    coarse = [a[~refined] for a in (ix, iy, iz)]

    f = np.arange(2 * lo, 2 * hi)
    fx, fy, fz = (a.ravel() for a in np.meshgrid(f, f, f, indexing="ij"))

    level = np.concatenate([np.full(len(coarse[0]), COARSE_LEVEL), np.full(len(fx), FINE_LEVEL)])
    cx = np.concatenate([coarse[0], fx])
    cy = np.concatenate([coarse[1], fy])
    cz = np.concatenate([coarse[2], fz])

    # denser and hotter towards the center
    r = np.sqrt(((cx + 0.5) / 2.0 ** level - 0.5) ** 2 + ((cy + 0.5) / 2.0 ** level - 0.5) ** 2)
    rho = 1.0 + 10.0 * np.exp(-(r / 0.1) ** 2)
    vz = rng.normal(scale=1.0 + 5.0 * np.exp(-(r / 0.1) ** 2))

    return CellTable(
        level, cx, cy, cz,
        fields={"rho": rho, "vx": np.zeros_like(vz), "vy": np.zeros_like(vz), "vz": vz},
        boxlen=1.0,
    )


def print_map_info(result):

    for name, data in result.maps.items():
        print(
            f"  {name:<12} unit={result.units[name]:<9} mode={result.mode[name]:<9} "
            f"min={data.min():.4g} max={data.max():.4g}"
        )


def print_diagnostics(result):

    diag = result.diagnostics
    print(f"  {diag.summary()}")
    for d in diag.levels:
        print(
            f"  level {d.level}: {d.n_cells} cells on thread {d.thread_id}, "
            f"{d.executed} ({d.filled_bins}/{d.total_bins} bins filled)"
        )


# ──────────────────────────────────────────────────────────────
# Main Example Workflow
# ──────────────────────────────────────────────────────────────

def main():

    setup_logging(verbose=False)

    print("=== Chhaya Example Usage ===")
    table = make_table()
    print(f"Built {table}\n")

    pool = MemoryPool()

    for direction in ("z", "x"):
        result = projection(
            table,
            VARIABLES,
            direction=direction,
            res=RESOLUTION,
            center="bc",
            pool=pool,
        )
        print(f"🔹 Projection along {direction}: {result['rho'].shape[0]}x{result['rho'].shape[1]} pixels")
        print_map_info(result)
        print_diagnostics(result)
        print()

        if OUTPUT_FILE:
            root, ext = os.path.splitext(OUTPUT_FILE)
            save_projection(result, f"{root}_{direction}{ext}")

    stats = pool.stats()
    print(f"Pool: {stats['hits']} hits, {stats['misses']} misses (hit rate {stats['hit_rate']:.0%})")
    print("\n🎉 Example usage finished!")


# ──────────────────────────────────────────────────────────────
# Entry Point
# ──────────────────────────────────────────────────────────────

if __name__ == "__main__":
    main()
