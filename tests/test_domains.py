"""
Unit tests for per-domain conversion.

Checks domain ordering, early stop at the instance ceiling, refined-parent
handling, and the serial fallback when the process pool cannot be used.

"""

import numpy as np

from amrvolume.domains import convert_domain, convert_domains, convert_domains_serial
from amrvolume.units import UnitConverter

from conftest import ABSOLUTE_HEADER


def converter():
    return UnitConverter.from_header(ABSOLUTE_HEADER)


def test_convert_domain_skips_refined(two_level_source):
    """Domain 1 holds four of the refined parents; they are skipped, not converted."""
    instances, stats = convert_domain(1, two_level_source, converter(), 1, 2)
    assert stats.skipped_refined == 4
    assert len(instances) == stats.accepted == 60


def test_convert_domain_keeps_refined_when_asked(two_level_source):
    """keep_refined returns the parents flagged, with the same stats."""
    instances, stats = convert_domain(1, two_level_source, converter(), 1, 2, keep_refined=True)
    assert len(instances) == 64
    assert int(instances.refined.sum()) == 4
    assert stats.skipped_refined == 4
    assert stats.accepted == len(instances.leaves(2)) == 60


def test_domain_stopping_at_coarse_level_keeps_parents(two_level_source):
    """Refined parents are the finest data left when the read stops at their level."""
    instances, stats = convert_domain(1, two_level_source, converter(), 1, 1)
    assert stats.skipped_refined == 0
    assert len(instances) == stats.accepted == 32


def test_domains_come_back_in_order(two_level_source):
    """Results follow the requested domain order, not completion order."""
    results = convert_domains(two_level_source, [2, 1], converter(), 1, 2)
    assert len(results) == 2
    # Odd cell indices belong to domain 2.
    first, _ = results[0]
    second, _ = results[1]
    assert len(first) + len(second) == 120
    serial_two, _ = convert_domain(2, two_level_source, converter(), 1, 2)
    np.testing.assert_array_equal(first.centers, serial_two.centers)


def test_serial_stops_at_ceiling(two_level_source):
    """Serial conversion stops reading once the ceiling is reached."""
    results = convert_domains_serial(two_level_source, [1, 2], converter(), 1, 2, max_instances=5)
    assert len(results) == 1


def test_serial_ceiling_counts_leaves_only(two_level_source):
    """Kept refined parents do not count towards the ceiling."""
    results = convert_domains_serial(two_level_source, [1, 2], converter(), 1, 2,
                                     max_instances=61, keep_refined=True)
    assert len(results) == 2


def test_parallel_matches_serial(two_level_source):
    """Worker processes produce the serial instances and stats."""
    serial = convert_domains(two_level_source, [1, 2], converter(), 1, 2)
    parallel = convert_domains(two_level_source, [1, 2], converter(), 1, 2, nproc=2)
    assert len(parallel) == len(serial)
    for (a, sa), (b, sb) in zip(serial, parallel):
        np.testing.assert_array_equal(a.density, b.density)
        np.testing.assert_array_equal(a.centers, b.centers)
        assert sa == sb


def test_unpicklable_source_falls_back_to_serial(two_level_source):
    """A source that cannot be pickled is converted in-process."""
    class LocalSource:
        # Defined inside the test, so it cannot be pickled for worker processes.
        header = ABSOLUTE_HEADER

        def domains(self):
            return two_level_source.domains()

        def read_domain(self, domain, min_level, max_level):
            return two_level_source.read_domain(domain, min_level, max_level)

    results = convert_domains(LocalSource(), [1, 2], converter(), 1, 2, nproc=2)
    assert sum(len(inst) for inst, _ in results) == 120
