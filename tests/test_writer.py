"""
Unit tests for the VTKHDF ImageData writer.

Builds a small volume and reads the file back with h5py.

"""

import h5py
import numpy as np
import pytest

from amrvolume.builder import BuildConfig, VolumeBuilder
from amrvolume.composite import CompositeConfig
from amrvolume.writer import write_vtkhdf_image


def as_text(value):
    return value.decode("ascii") if isinstance(value, bytes) else str(value)


@pytest.fixture
def built(two_level_source):
    return VolumeBuilder(two_level_source, BuildConfig(composite=CompositeConfig(base_resolution=8))).build()


def test_image_data_layout(tmp_path, built):
    """The file is VTKHDF ImageData with the volume as cell data."""
    path = tmp_path / "volume.vtkhdf"
    write_vtkhdf_image(str(path), built, version="1.0.0")

    with h5py.File(path, "r") as f:
        root = f["VTKHDF"]
        n = built.resolution
        assert as_text(root.attrs["Type"]) == "ImageData"
        assert list(root.attrs["Version"]) == [2, 1]
        assert list(root.attrs["WholeExtent"]) == [0, n, 0, n, 0, n]
        np.testing.assert_allclose(root.attrs["Spacing"], [1.0 / n] * 3)
        np.testing.assert_allclose(root.attrs["Origin"], [0.0, 0.0, 0.0])
        assert "PointData" in root
        assert "FieldData" in root

        density = root["CellData/Density"][()]
        temperature = root["CellData/Temperature"][()]
        assert density.shape == (n, n, n)
        assert density.dtype == np.float32
        np.testing.assert_array_equal(density, built.volume.density)
        np.testing.assert_array_equal(temperature, built.volume.temperature)


def test_metadata_attributes(tmp_path, built):
    """Ranges, mode, level range and generator info are stored as attributes."""
    path = tmp_path / "volume.vtkhdf"
    write_vtkhdf_image(str(path), built, version="1.0.0")

    with h5py.File(path, "r") as f:
        attrs = f["VTKHDF"].attrs
        np.testing.assert_allclose(attrs["density_range"], [built.ranges.density_min, built.ranges.density_max])
        np.testing.assert_allclose(attrs["temperature_range"],
                                   [built.ranges.temperature_min, built.ranges.temperature_max])
        assert not bool(attrs["is_overdensity"])
        assert list(attrs["level_range"]) == [1, 2]
        assert int(attrs["n_instances"]) == 120
        assert as_text(attrs["generator_version"]) == "1.0.0"
        assert as_text(attrs["generator_timestamp"]).endswith("Z")


def test_overwrites_existing_file(tmp_path, built):
    """An existing file at the path is replaced."""
    path = tmp_path / "volume.vtkhdf"
    path.write_bytes(b"not an hdf5 file")
    write_vtkhdf_image(str(path), built)
    with h5py.File(path, "r") as f:
        assert "VTKHDF" in f
