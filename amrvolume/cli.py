#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
CLI QUICK START (copy–paste, then tweak)
──────────────────────────────────────────────────────────────────────────────
Example run (levels 7..12, adaptive resolution, two workers):

    amrvolume \
        --base-dir ./simulations \
        --folder-name output_dir \
        --numbers 1,3,5 \
        --output-prefix amr_volume \
        --level-start 7 --level-end 12 \
        --nproc 2 \
        --verbose

Exploration mode :

    # Dry-run: build the volumes and report their size, but don’t write .vtkhdf
    amrvolume --base-dir ./simulations --folder-name output_dir \
        -n 5 --dry-run --verbose

    # Fixed 128^3 grid, raw (non-percentile) colour ranges
    amrvolume --base-dir ./simulations --folder-name output_dir \
        -n 5 --fixed-resolution --resolution 128 --non-robust

Required args:

    --base-dir         Path to your RAMSES run root directory.
    --folder-name      Subfolder inside base-dir containing outputs.
    -n / --numbers     Output numbers to process. Formats:
                       "7", "3,5,9", "10-15" or "1-3,8"

Optional args:

    --output-prefix / -o   Prefix for output files (default: amr_volume)
    --output-dir           Where to write files (default: the input folder)
    --level-start / --level-end     AMR level range (inclusive)
    --resolution       Base resolution (adaptive) or grid size (fixed)
    --max-resolution   Upper bound for the adaptive master resolution
    --fixed-resolution Rasterize every level at --resolution
    --max-instances    Stop ingesting cells after this many
    --non-robust       Use raw min/max instead of percentiles for colour ranges
    --min-overdensity / --max-overdensity   Overdensity window (cosmological runs)
    --nproc            Worker processes (one snapshot per worker)
    --verbose          step-by-step narration
    --dry-run          Run everything except the actual write step

"""


import os
import argparse
import logging
from typing import List

from .builder import BuildConfig
from .composite import CompositeConfig
from .exporter import VolumeExporter, setup_logging
from .ranges import RangeConfig

logger = logging.getLogger("amrvolume")


def parse_output_numbers(arg: str) -> List[int]:
    """
    Parse output numbers like '5', '1,3,5', '2-7' or '1-3,8' into a list of ints.

    Duplicates are dropped, first occurrence wins.

    Raises:
        argparse.ArgumentTypeError on invalid format.
    """
    nums: List[int] = []
    for token in arg.split(","):
        token = token.strip()
        if not token:
            continue
        start, dash, end = token.partition("-")
        try:
            lo = int(start)
            hi = int(end) if dash else lo
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid output number or range: '{token}'")
        if hi < lo:
            raise argparse.ArgumentTypeError(f"Range end must be >= start: '{token}'")
        nums.extend(range(lo, hi + 1))

    if not nums:
        raise argparse.ArgumentTypeError("No output numbers given.")
    return list(dict.fromkeys(nums))


def non_negative_int(arg: str) -> int:
    """argparse type for levels, resolutions and counts."""
    try:
        value = int(arg)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer value: {arg}")
    if value < 0:
        raise argparse.ArgumentTypeError(f"Invalid value: {arg}. Must be non-negative.")
    return value


def build_config_from_args(args: argparse.Namespace) -> BuildConfig:
    """Map CLI flags onto a BuildConfig."""
    composite = CompositeConfig()
    if args.resolution is not None:
        composite.base_resolution = args.resolution
    if args.max_resolution is not None:
        composite.max_resolution = args.max_resolution
        composite.reduced_max_resolution = min(composite.reduced_max_resolution, args.max_resolution)

    config = BuildConfig(
        adaptive=not args.fixed_resolution,
        composite=composite,
        ranges=RangeConfig(robust=not args.non_robust),
        min_overdensity=args.min_overdensity,
        max_overdensity=args.max_overdensity,
        max_instances=args.max_instances,
    )
    if args.resolution is not None:
        config.resolution = args.resolution
    return config


def main() -> None:

    """
    Parse CLI args and run the export pipeline.
    """

    parser = argparse.ArgumentParser(description="Dense density/temperature volumes from RAMSES AMR outputs")

    # Required inputs
    parser.add_argument("--base-dir", type=str, required=True, help="Base directory containing simulation folders (REQUIRED)")
    parser.add_argument("--folder-name", type=str, required=True, help="Folder inside base_dir to process (REQUIRED)")
    parser.add_argument("-n", "--numbers", type=parse_output_numbers, required=True, help="Output numbers like '1', '1,3,5' or '2-7' (REQUIRED)")

    # Output and level selection
    parser.add_argument("-o", "--output-prefix", dest="output_prefix", default="amr_volume", help="Output file prefix (default: amr_volume)")
    parser.add_argument("--output-dir", dest="output_dir", default=None, help="Directory for output files (default: input folder)")
    parser.add_argument("--level-start", type=non_negative_int, default=None, help="Minimum AMR level to include (inclusive). Optional.")
    parser.add_argument("--level-end", type=non_negative_int, default=None, help="Maximum AMR level to include (inclusive). Optional.")

    # Volume resolution
    parser.add_argument("--resolution", type=non_negative_int, default=None, help="Base (adaptive) or fixed grid resolution.")
    parser.add_argument("--max-resolution", type=non_negative_int, default=None, help="Cap on the adaptive master resolution.")
    parser.add_argument("--fixed-resolution", action="store_true", help="Rasterize all levels into one fixed-size grid.")
    parser.add_argument("--max-instances", type=non_negative_int, default=None, help="Stop ingesting cells after this many accepted instances.")

    # Value handling
    parser.add_argument("--non-robust", action="store_true", help="Use raw min/max instead of percentile colour ranges.")
    parser.add_argument("--min-overdensity", type=float, default=0.0, help="Lowest overdensity kept in cosmological runs (default: 0).")
    parser.add_argument("--max-overdensity", type=float, default=1e12, help="Highest overdensity kept in cosmological runs (default: 1e12).")

    # Utility flags
    parser.add_argument("--nproc", type=non_negative_int, default=None, help="Number of worker processes (default: serial).")
    parser.add_argument("--dry-run", action="store_true", help="Build volumes without writing files.")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging.")

    args = parser.parse_args()

    # Configure logging early
    setup_logging(args.verbose)

    # Build absolute input folder path and validate
    input_folder = os.path.join(os.path.abspath(args.base_dir), args.folder_name)

    if not os.path.exists(input_folder):
        logger.error("Input folder not found: %s", input_folder)
        raise FileNotFoundError(f"Input folder not found: {input_folder}")

    if args.level_start is not None and args.level_end is not None:
        if args.level_end < args.level_start:
            parser.error(f"Invalid level range: end ({args.level_end}) < start ({args.level_start}).")

    if args.resolution == 0 or args.max_resolution == 0:
        parser.error("Resolutions must be positive.")

    if args.min_overdensity > args.max_overdensity:
        parser.error("--min-overdensity cannot be greater than --max-overdensity.")

    config = build_config_from_args(args)

    exporter = VolumeExporter(
        input_folder=input_folder,
        output_prefix=args.output_prefix,
        level_start=args.level_start,
        level_end=args.level_end,
        config=config,
        dry_run=args.dry_run,
        output_directory=args.output_dir,
    )

    try:
        exporter.run(args.numbers, nproc=args.nproc, verbose=args.verbose)
    except Exception as e:
        logger.exception("FATAL: Unexpected error: %s", e)
        raise


if __name__ == "__main__":
    main()
