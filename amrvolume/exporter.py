#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Loads RAMSES outputs through osyris, resamples the AMR hydro cells into dense
density / temperature volumes, and writes them as VTKHDF ImageData files.

──────────────────────────────────────────────────────────────────────────────
WHY THIS EXISTS
──────────────────────────────────────────────────────────────────────────────
- Ray-marching renderers want a regular 3D texture, RAMSES gives a sparse
  octree of cells with sizes spanning many levels.
- Finer levels must win where they exist, coarse cells must still fill the
  gaps, and the colour range must survive a few extreme cells.

──────────────────────────────────────────────────────────────────────────────
IT SUPPORTS:
──────────────────────────────────────────────────────────────────────────────
 - Level range selection (--level-start / --level-end)
 - Adaptive master resolution or a fixed grid (--fixed-resolution)
 - Robust (percentile) or raw colour ranges (--non-robust)
 - Per-snapshot parallel processing (ProcessPoolExecutor)
 - Dry-run mode (--dry-run) to report what would be built without writing
 - Embedding run metadata (CLI command, timestamp, code version) in each output file

"""


from __future__ import annotations

import concurrent.futures
import logging
import os
import time
from functools import partial
from typing import List, Optional, Sequence

from .builder import BuildConfig, BuildResult, VolumeBuilder
from .source import OsyrisCellSource
from .writer import write_vtkhdf_image

__version__ = "1.0.0"

LOG_FORMAT = "%(asctime)s | %(processName)-12s | %(levelname)-8s | %(message)s"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("h5py", "osyris", "matplotlib")


def setup_logging(verbose: bool) -> None:
    """
    Configure global logging for the main process or a worker.

    Args:
        verbose: If True, set DEBUG level, otherwise INFO.

    Worker processes call this again on start-up; `force` replaces whatever
    handlers the parent left behind, so each record is printed once.
    """

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S", force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("amrvolume")


def _export_worker(exporter: "VolumeExporter", verbose: bool, output_num: int) -> Optional[str]:
    """Process-pool entry point: one snapshot per call, failures logged and turned into None."""
    setup_logging(verbose)
    try:
        return exporter.process_output(output_num)
    except Exception:
        logger.exception("[worker %s] Unexpected worker error", output_num)
        return None


class VolumeExporter:
    """
    Build volumes for RAMSES outputs and write them as VTKHDF ImageData.

    Each method has one job (load, build, write) so the pieces can be tested and
    reused on their own; process_output chains them and never raises.
    """

    def __init__(
        self,
        input_folder: str,
        output_prefix: str = "amr_volume",
        level_start: Optional[int] = None,
        level_end: Optional[int] = None,
        config: Optional[BuildConfig] = None,
        dry_run: bool = False,
        output_directory: Optional[str] = None,
    ):
        self.input_folder = input_folder
        self.output_prefix = output_prefix

        # Level bounds (None => snapshot defaults)
        self.level_start = level_start
        self.level_end = level_end

        self.config = config or BuildConfig()
        self.dry_run = dry_run
        self.output_directory = output_directory

    def output_path(self, output_num: int) -> str:
        directory = self.output_directory or self.input_folder
        return os.path.join(directory, f"{self.output_prefix}_{output_num:05d}.vtkhdf")

    def read_data(self, output_num: int) -> Optional[OsyrisCellSource]:
        """
        Load a RAMSES snapshot with osyris and wrap it as a cell source.
        On failure, logs the error and returns None (so caller can handle).
        """
        try:
            return OsyrisCellSource.load(output_num, self.input_folder)
        except Exception as e:
            logger.error("Failed to load output %s from '%s': %s", output_num, self.input_folder, e)
            logger.debug("Exception details:", exc_info=True)
            return None

    def build(self, source) -> BuildResult:
        builder = VolumeBuilder(source, self.config)
        return builder.build(self.level_start, self.level_end)

    def convert_one(self, output_num: int, source) -> Optional[str]:
        """
        Build and write the volume of one loaded snapshot.

        Args:
            output_num: snapshot number
            source: cell source for that snapshot (None is logged and skipped)

        Returns:
            Path of the written file, or None when nothing was written.
        """
        if source is None:
            logger.warning("No data for output %s; skipping.", output_num)
            return None

        path = self.output_path(output_num)
        t0 = time.time()
        result = self.build(source)

        if self.dry_run:
            logger.info(
                "[dry-run] Would write '%s': %d^3 voxels, %d instances, levels %d..%d",
                path, result.resolution, result.n_instances, result.min_level, result.max_level,
            )
            return None

        if self.output_directory:
            os.makedirs(self.output_directory, exist_ok=True)

        write_vtkhdf_image(path, result, version=__version__)
        logger.info("DONE: Saved '%s' in %.2fs", path, time.time() - t0)
        return path

    def process_output(self, output_num: int) -> Optional[str]:
        """
        Read and convert a single output (load + build + write).
        This wrapper isolates exceptions so callers (`run`) can continue on failure.
        """
        source = self.read_data(output_num)
        try:
            return self.convert_one(output_num, source)
        except Exception as e:
            logger.exception("Unexpected failure converting output %s: %s", output_num, e)
            return None

    def run(self, output_numbers: Sequence[int], nproc: Optional[int] = None, verbose: bool = False) -> List[Optional[str]]:
        """
        Export several snapshots, one per worker process.

        Args:
            output_numbers: snapshot numbers, exported in this order.
            nproc: worker processes; None or 1 runs everything in this process.
            verbose: DEBUG logging inside the workers.

        Returns:
            One written path (or None) per output number, in input order. If the
            pool cannot be started the remaining work runs serially.
        """
        output_numbers = list(output_numbers)
        nworkers = min(nproc, len(output_numbers)) if nproc is not None and nproc > 1 else 1
        logger.info("Starting on %d worker(s) for outputs %s", nworkers, output_numbers)
        t0 = time.time()

        results: List[Optional[str]]
        if nworkers <= 1:
            results = [self.process_output(num) for num in output_numbers]
        else:
            try:
                with concurrent.futures.ProcessPoolExecutor(max_workers=nworkers) as ex:
                    results = list(ex.map(partial(_export_worker, self, verbose), output_numbers))
            except Exception as e:
                logger.error("Parallel execution failed: %s", e)
                logger.info("Falling back to serial execution...")
                results = [self.process_output(num) for num in output_numbers]

        written = sum(1 for r in results if r)
        logger.info("Exported %d of %d output(s) in %.2fs", written, len(output_numbers), time.time() - t0)
        return results
