#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
CLI QUICK START (copy–paste, then tweak)
──────────────────────────────────────────────────────────────────────────────
Surface density and mass-weighted velocity dispersion along z, 512 pixels:

    chhaya \
        --base-dir ./simulations \
        --folder-name sedov_3d \
        --numbers 1,3,5-7 \
        --variables sd,sigma \
        --direction z --res 512 \
        --x-range 0.25:0.75 --y-range 0.25:0.75 \
        --output-dir ./maps \
        --nproc 4 --verbose

Exploration mode:

    # Lists the cell table fields a snapshot provides (nothing is projected)
    chhaya --base-dir ./simulations --folder-name sedov_3d -n 5 --list-fields

    # Dry-run: load and report cell counts per level, no projection/write
    chhaya --base-dir ./simulations --folder-name sedov_3d -n 5 \
        --variables rho --dry-run --verbose

Required args:

    --base-dir         Path to your RAMSES run root directory.
    --folder-name      Subfolder inside base-dir containing outputs.
    -n / --numbers     Output numbers to process. Formats:
                       "7" or "3,5,9" or "10-15"
    --variables        Comma-separated variables (not needed with --list-fields)

Ranges:
    --x-range/--y-range/--z-range take 'min:max' relative to --center, in
    --range-unit ('standard' = box fraction). An empty side means the box
    edge, e.g. '0.2:' or ':'. Negative bounds need the '=' form:
    --x-range=-0.1:0.1. --center accepts 'bc' or three entries such
    as '0.5,bc,0.5'.

"""


import argparse
import logging
import os
from typing import List, Optional, Tuple

from .engine import setup_logging
from .errors import ProjectionConfigError
from .loader import list_fields_for_snapshot
from .parallel import run_parallel_projection
from .request import ALGORITHMS, DIRECTIONS, MODES, WEIGHTINGS, ProjectionRequest

logger = logging.getLogger("chhaya")


def parse_output_numbers(arg: str) -> List[int]:
    """
    Parse output numbers strings like '5', '1,3,5', or '2-7' into a list of ints.

    Args:
        arg: user-provided string

    Returns:
        List of ints representing snapshot/output numbers.

    Raises:
        argparse.ArgumentTypeError on invalid format.
    """

    if "-" in arg and "," in arg:
        # mixed lists like '1,3-5'
        nums: List[int] = []
        for part in arg.split(","):
            part = part.strip()
            if part:
                nums.extend(parse_output_numbers(part))
        return nums

    if "-" in arg:
        try:
            start, end = map(int, arg.split("-", 1))
        except ValueError:
            raise argparse.ArgumentTypeError("Invalid range; use 'start-end'.")
        if end < start:
            raise argparse.ArgumentTypeError("Range end must be >= start.")
        return list(range(start, end + 1))

    if "," in arg:
        nums = []
        for x in arg.split(","):
            x = x.strip()
            if x == "":
                continue
            try:
                nums.append(int(x))
            except ValueError:
                raise argparse.ArgumentTypeError(f"Invalid integer in list: '{x}'")
        return nums

    try:
        return [int(arg)]
    except ValueError:
        raise argparse.ArgumentTypeError("Output number must be an integer.")


def parse_range(arg: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
    """
    Parse an axis range spec: 'min:max', ':max', 'min:', or ':'.

    Returns (min, max) where a missing side is None (box edge).
    """

    if arg is None:
        return (None, None)

    s = arg.strip()

    if s == "":
        return (None, None)

    if ":" not in s:
        raise argparse.ArgumentTypeError("Axis range must be 'min:max' (e.g., 0.2:0.8, :0.6, 0.1:, :).")

    left, right = s.split(":", 1)
    try:
        minv = float(left) if left.strip() != "" else None
        maxv = float(right) if right.strip() != "" else None
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number in range '{arg}'.")

    if minv is not None and maxv is not None and minv > maxv:
        raise argparse.ArgumentTypeError("Axis min cannot be greater than axis max.")

    return (minv, maxv)


def parse_list_arg(arg: Optional[str]) -> Optional[List[str]]:
    """
    Parse a comma-separated list (variables, units, fields).

    Returns None if user didn't pass anything.
    """

    if arg is None:
        return None

    items = [f.strip() for f in arg.split(",") if f.strip() != ""]

    return items if items else None


def parse_center(arg: str):
    """
    Parse a center: 'bc' / 'boxcenter', or three comma-separated entries each
    a number or a box-center symbol.
    """
    parts = [p.strip() for p in arg.split(",") if p.strip() != ""]
    if len(parts) not in (1, 3):
        raise argparse.ArgumentTypeError("Center needs one symbol or three entries, e.g. 'bc' or '0.5,bc,0.5'.")

    center = []
    for p in parts:
        try:
            center.append(float(p))
        except ValueError:
            center.append(p)
    return tuple(center)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="2D projections of RAMSES AMR outputs")

    # Required inputs
    parser.add_argument("--base-dir", type=str, required=True, help="Base directory containing simulation folders (REQUIRED)")
    parser.add_argument("--folder-name", type=str, required=True, help="Folder inside base_dir to process (REQUIRED)")
    parser.add_argument("-n", "--numbers", type=parse_output_numbers, required=True, help="Output numbers like '1', '1,3,5' or '2-7' (REQUIRED)")

    # What to project
    parser.add_argument("--variables", type=parse_list_arg, default=None, help="Comma-separated variables, e.g. rho,sd,sigma,r_cylinder")
    parser.add_argument("--units", type=parse_list_arg, default=None, help="One unit for all variables or one per variable (default: standard)")
    parser.add_argument("--direction", choices=DIRECTIONS, default="z", help="Line of sight (default: z)")
    parser.add_argument("--weighting", choices=WEIGHTINGS, default="mass", help="Cell weighting (default: mass)")
    parser.add_argument("--mode", choices=MODES, default="average", help="Aggregation mode (default: average)")

    # Resolution
    parser.add_argument("--res", type=int, default=None, help="Pixels along the full box")
    parser.add_argument("--pxsize", type=float, default=None, help="Physical pixel size (dominates --res)")
    parser.add_argument("--pxsize-unit", type=str, default="standard", help="Unit of --pxsize (default: standard)")
    parser.add_argument("--lmax", type=int, default=None, help="Resolution 2**lmax when neither --res nor --pxsize is given")

    # Region
    parser.add_argument("--x-range", type=parse_range, default=None, help="x range 'min:max' relative to the center")
    parser.add_argument("--y-range", type=parse_range, default=None, help="y range 'min:max'")
    parser.add_argument("--z-range", type=parse_range, default=None, help="z range 'min:max' (line-of-sight range for direction z)")
    parser.add_argument("--center", type=parse_center, default=(0.0, 0.0, 0.0), help="Center, e.g. 'bc' or '0.5,bc,0.5' (default: 0,0,0)")
    parser.add_argument("--range-unit", type=str, default="standard", help="Unit of ranges and center (default: standard)")

    # Execution
    parser.add_argument("--threads", type=int, default=None, help="Threads per projection (default: CPU count)")
    parser.add_argument("--algorithm", choices=ALGORITHMS, default="auto", help="Dense/sparse accumulation override")
    parser.add_argument("--nproc", type=int, default=None, help="Parallel processes across outputs (default: serial)")

    # Output
    parser.add_argument("-o", "--output-prefix", dest="output_prefix", default="projection", help="Output file prefix (default: projection)")
    parser.add_argument("--output-dir", type=str, default=None, help="Directory for output files (default: current directory)")
    parser.add_argument("--fields", type=parse_list_arg, default=None, help="Mesh fields to load (default: all)")

    parser.add_argument("--list-fields", action="store_true", help="List available fields in the first requested snapshot and exit.")

    # Utility flags
    parser.add_argument("--dry-run", action="store_true", help="Load and report without projecting or writing files.")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging.")
    return parser


def request_from_args(args: argparse.Namespace) -> ProjectionRequest:
    """Build (and validate) the projection request described by the CLI arguments."""
    return ProjectionRequest(
        variables=tuple(args.variables),
        units=tuple(args.units) if args.units else ("standard",),
        direction=args.direction,
        weighting=args.weighting,
        mode=args.mode,
        xrange=args.x_range or (None, None),
        yrange=args.y_range or (None, None),
        zrange=args.z_range or (None, None),
        center=args.center,
        range_unit=args.range_unit,
        res=args.res,
        pxsize=None if args.pxsize is None else (args.pxsize, args.pxsize_unit),
        lmax=args.lmax,
        max_threads=args.threads,
        algorithm=args.algorithm,
    )


def main(argv: Optional[List[str]] = None) -> None:

    """
    Parse CLI args and run the projection pipeline.
    """

    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging early
    setup_logging(args.verbose)

    # Build absolute input folder path and validate
    input_folder = os.path.join(os.path.abspath(args.base_dir), args.folder_name)

    if not os.path.exists(input_folder):
        logger.error("Input folder not found: %s", input_folder)
        raise FileNotFoundError(f"Input folder not found: {input_folder}")

    # If user requested to list fields, inspect the first snapshot in args.numbers
    if args.list_fields:
        first_num = args.numbers[0]
        logger.info("Listing fields for snapshot %s in folder '%s'...", first_num, input_folder)
        fields = list_fields_for_snapshot(input_folder, first_num)

        if fields:
            print("Available fields:")
            for f in fields:
                print(" -", f)
        else:
            print("No fields discovered (see logs for details).")
        return

    if not args.variables:
        parser.error("--variables is required unless --list-fields is given.")

    try:
        request = request_from_args(args)
    except ProjectionConfigError as e:
        parser.error(str(e))

    try:
        run_parallel_projection(
            output_numbers=args.numbers,
            input_folder=input_folder,
            request=request,
            output_prefix=args.output_prefix,
            fields=args.fields,
            dry_run=args.dry_run,
            verbose=args.verbose,
            nproc=args.nproc,
            output_directory=args.output_dir,
        )
    except Exception as e:
        logger.exception("FATAL: Unexpected error: %s", e)
        raise


if __name__ == "__main__":
    main()
