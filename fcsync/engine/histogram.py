"""Sampling of index reads into per-lane frequency tables.

Only the cycles of the index reads are decoded, and only for the first
``sample_reads_per_tile`` records of one representative tile per lane.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from fcsync.basecalls import BaseCallDecoder, TileUnit
from fcsync.engine.models import Histogram
from fcsync.errors import CorruptHeaderError, MissingCycleError
from fcsync.rundir import IndexSegment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistogramSettings:
    sample_reads_per_tile: int = 1_000_000
    min_index_fraction: float = 0.001


def count_index_reads(
    columns: list[np.ndarray], passed: np.ndarray | None
) -> tuple[dict[str, int], int]:
    """Count the index reads formed by concatenating ``columns`` row-wise.

    Returns the counts and the number of passing reads.
    """
    if not columns:
        return {}, 0
    matrix = np.ascontiguousarray(np.stack(columns, axis=1))
    if passed is not None:
        matrix = matrix[passed]
    if not len(matrix):
        return {}, 0
    sequences = matrix.view(f"S{matrix.shape[1]}").ravel()
    values, counts = np.unique(sequences, return_counts=True)
    return {value.decode("ascii"): int(count) for value, count in zip(values, counts)}, len(matrix)


def filter_counts(counts: dict[str, int], sample_size: int, min_fraction: float) -> dict[str, int]:
    """Keep entries whose share of ``sample_size`` is strictly above ``min_fraction``."""
    if sample_size <= 0:
        return {}
    return {seq: count for seq, count in counts.items() if count / sample_size > min_fraction}


class IndexHistogramEngine:
    """Builds index histograms for the lanes of a run."""

    def __init__(self, decoder: BaseCallDecoder, settings: HistogramSettings | None = None):
        self.decoder = decoder
        self.settings = settings or HistogramSettings()

    def sample_segment(self, tile: TileUnit, segment: IndexSegment) -> Histogram:
        """Decode the cycles of one index read for ``tile`` and count them.

        A missing cycle ends decoding; the index reads are then the prefix
        decoded so far and the histogram is marked as truncated.
        """
        limit = self.settings.sample_reads_per_tile
        columns: list[np.ndarray] = []
        passed: np.ndarray | None = None
        truncated = False
        for cycle in segment.cycles:
            if cycle > tile.last_cycle:
                truncated = True
                break
            try:
                calls = self.decoder.decode(tile, cycle, limit=limit)
            except MissingCycleError as e:
                logger.info("Lane %d tile %s: %s", tile.lane, tile.tile, e)
                truncated = True
                break
            if columns and len(calls) != len(columns[0]):
                raise CorruptHeaderError(
                    f"Tile {tile.tile} has {len(calls)} records at cycle {cycle}, "
                    f"expected {len(columns[0])}"
                )
            if passed is None:
                passed = calls.passed_filter
            columns.append(calls.bases)

        counts, sample_size = count_index_reads(columns, passed)
        return Histogram(
            lane=tile.lane,
            index_no=segment.index_no,
            tile=tile.tile,
            sample_size=sample_size,
            min_index_fraction=self.settings.min_index_fraction,
            counts=filter_counts(counts, sample_size, self.settings.min_index_fraction),
            cycles_decoded=len(columns),
            truncated=truncated,
        )

    def sample_tile(self, tile: TileUnit, segments: list[IndexSegment]) -> list[Histogram]:
        return [self.sample_segment(tile, segment) for segment in segments]

    def sample_lane(self, lane: int, segments: list[IndexSegment]) -> list[Histogram]:
        """Return one histogram per index segment for ``lane``.

        The first tile in lane order is used; a tile with a damaged file is
        skipped in favour of the next one.

        Raises:
            CorruptHeaderError: Every tile of the lane is damaged
        """
        if not segments:
            return []
        tiles = self.decoder.tiles(lane)
        if not tiles:
            logger.warning("No tiles found for lane %d", lane)
            return [
                Histogram(
                    lane=lane,
                    index_no=segment.index_no,
                    min_index_fraction=self.settings.min_index_fraction,
                    truncated=True,
                )
                for segment in segments
            ]

        last_error: CorruptHeaderError | None = None
        for tile in tiles:
            try:
                histograms = self.sample_tile(tile, segments)
            except CorruptHeaderError as e:
                logger.warning("Lane %d: skipping tile %s: %s", lane, tile.tile, e)
                last_error = e
                continue
            for histogram in histograms:
                logger.info(
                    "Lane %d index %d: %d reads sampled from tile %s, %d sequences kept",
                    lane,
                    histogram.index_no,
                    histogram.sample_size,
                    tile.tile,
                    len(histogram.counts),
                )
            return histograms
        raise CorruptHeaderError(
            f"No readable tile in lane {lane}: {last_error}"
        ) from last_error
