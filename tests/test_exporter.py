"""
Unit tests for the snapshot exporter and its multi-output runner.

Uses the in-memory two-level source for the build/write path and a
non-existent folder for the failure path (no RAMSES data needed).

"""

import logging
import os

import h5py

from amrvolume.builder import BuildConfig
from amrvolume.composite import CompositeConfig
from amrvolume.exporter import QUIET_LOGGERS, VolumeExporter, setup_logging

SMALL = BuildConfig(composite=CompositeConfig(base_resolution=8))


# ──────────────────────────────────────────────────────────────
# Single snapshot
# ──────────────────────────────────────────────────────────────

def test_output_path_defaults_to_input_folder(tmp_path):
    """Without an output directory, files land next to the input."""
    exporter = VolumeExporter(str(tmp_path), output_prefix="vol")
    assert exporter.output_path(12) == os.path.join(str(tmp_path), "vol_00012.vtkhdf")


def test_convert_one_writes_file(tmp_path, two_level_source):
    """A build is written to a freshly created nested output directory."""
    out_dir = tmp_path / "out" / "nested"
    exporter = VolumeExporter(str(tmp_path), config=SMALL, output_directory=str(out_dir))
    path = exporter.convert_one(3, two_level_source)

    assert path == os.path.join(str(out_dir), "amr_volume_00003.vtkhdf")
    assert os.path.exists(path)
    with h5py.File(path, "r") as f:
        assert f["VTKHDF/CellData/Density"].shape == (16, 16, 16)


def test_level_range_is_passed_to_builder(tmp_path, two_level_source):
    """level_start/level_end select the build's level range."""
    exporter = VolumeExporter(str(tmp_path), level_start=2, level_end=2, config=SMALL)
    result = exporter.build(two_level_source)
    assert (result.min_level, result.max_level) == (2, 2)
    assert result.n_instances == 64


def test_dry_run_writes_nothing(tmp_path, two_level_source):
    """Dry runs build but never touch the filesystem."""
    exporter = VolumeExporter(str(tmp_path), config=SMALL, dry_run=True)
    assert exporter.convert_one(1, two_level_source) is None
    assert not any(name.endswith(".vtkhdf") for name in os.listdir(tmp_path))


def test_missing_source_is_skipped(tmp_path):
    """A snapshot that failed to load is skipped."""
    exporter = VolumeExporter(str(tmp_path))
    assert exporter.convert_one(1, None) is None


def test_unreadable_output_does_not_raise(tmp_path):
    """Read failures are logged and reported as None."""
    exporter = VolumeExporter(str(tmp_path / "does_not_exist"))
    assert exporter.process_output(1) is None


# ──────────────────────────────────────────────────────────────
# Several snapshots
# ──────────────────────────────────────────────────────────────

def test_run_continues_past_failures(tmp_path):
    """Every requested output gets an entry, failed ones included."""
    exporter = VolumeExporter(str(tmp_path / "does_not_exist"), config=SMALL)
    assert exporter.run([1, 2]) == [None, None]


def test_run_with_workers_keeps_order(tmp_path):
    """Worker processes return one result per output, in input order."""
    exporter = VolumeExporter(str(tmp_path / "does_not_exist"), config=SMALL)
    assert exporter.run([4, 5, 6], nproc=2) == [None, None, None]


# ──────────────────────────────────────────────────────────────
# Logging
# ──────────────────────────────────────────────────────────────

def test_setup_logging_quiets_third_party():
    """Reader and plotting libraries only log warnings and above."""
    setup_logging(verbose=True)
    assert logging.getLogger().level == logging.DEBUG
    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING
    setup_logging(verbose=False)
    assert logging.getLogger().level == logging.INFO
