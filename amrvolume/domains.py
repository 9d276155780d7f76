# -*- coding: utf-8 -*-

"""

Per-domain conversion, serial or spread over worker processes.

Each domain is read and converted independently; results come back as one
entry per domain, in domain order, and are concatenated by the caller on a
single thread.

"""

from __future__ import annotations

from functools import partial
from typing import List, Optional, Sequence, Tuple

import concurrent.futures
import logging

from .instances import FieldInstances
from .source import CellSource
from .units import ConversionStats, UnitConverter

logger = logging.getLogger("amrvolume")

DomainResult = Tuple[FieldInstances, ConversionStats]


def convert_domain(
    domain: int,
    source: CellSource,
    converter: UnitConverter,
    min_level: int,
    max_level: int,
    keep_refined: bool = False,
) -> DomainResult:
    """Read one domain from the source and convert its cells for a build ending at max_level."""
    batch = source.read_domain(domain, min_level, max_level)
    instances, stats = converter.convert(batch, max_level=max_level, keep_refined=keep_refined)
    logger.debug(
        "Domain %s: %d cells read, %d accepted, %d rejected, %d refined",
        domain, len(batch), stats.accepted, stats.rejected, stats.skipped_refined,
    )
    return instances, stats


def convert_domains_serial(
    source: CellSource,
    domains: Sequence[int],
    converter: UnitConverter,
    min_level: int,
    max_level: int,
    max_instances: Optional[int] = None,
    keep_refined: bool = False,
) -> List[DomainResult]:
    """
    Convert domains one after the other.

    Stops reading further domains once `max_instances` accepted leaves have
    been collected; the caller trims the surplus.
    """
    results: List[DomainResult] = []
    total = 0
    for domain in domains:
        result = convert_domain(domain, source, converter, min_level, max_level, keep_refined)
        results.append(result)
        total += result[1].accepted
        if max_instances is not None and total >= max_instances:
            logger.info("Instance ceiling (%d) reached after domain %s; stopping ingestion.", max_instances, domain)
            break
    return results


def convert_domains(
    source: CellSource,
    domains: Sequence[int],
    converter: UnitConverter,
    min_level: int,
    max_level: int,
    nproc: Optional[int] = None,
    max_instances: Optional[int] = None,
    keep_refined: bool = False,
) -> List[DomainResult]:
    """
    Convert all domains, in parallel when nproc > 1.

    Parameters:
    - source: cell source; must be picklable for parallel runs.
    - domains: domain ids, in the order results are returned.
    - converter: unit converter for this build.
    - min_level, max_level: inclusive refinement level range.
    - nproc: number of worker processes. None or <= 1 means serial execution.
    - max_instances: ingestion ceiling (serial runs stop early; parallel runs
                     read everything and leave trimming to the caller).
    - keep_refined: also return refined cells, flagged, for level caching.

    Behavior:
    - On any failure of the process pool (e.g. an unpicklable source), falls
      back to serial conversion.

    Returns:
    - One (FieldInstances, ConversionStats) per converted domain, in domain order.
    """
    domains = list(domains)
    nworkers = min(nproc, len(domains)) if nproc is not None and nproc > 1 else 1

    if nworkers <= 1:
        return convert_domains_serial(source, domains, converter, min_level, max_level, max_instances, keep_refined)

    logger.info("Converting %d domain(s) on %d worker(s)", len(domains), nworkers)
    worker = partial(
        convert_domain,
        source=source,
        converter=converter,
        min_level=min_level,
        max_level=max_level,
        keep_refined=keep_refined,
    )

    try:
        with concurrent.futures.ProcessPoolExecutor(max_workers=nworkers) as ex:
            return list(ex.map(worker, domains))
    except Exception as e:
        logger.error("Parallel domain conversion failed: %s", e)
        logger.info("Falling back to serial execution...")

    return convert_domains_serial(source, domains, converter, min_level, max_level, max_instances, keep_refined)
