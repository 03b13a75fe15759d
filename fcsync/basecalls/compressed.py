"""Decoder for gzip/BGZF compressed BCL files.

Two layouts carry the same records inside a compressed stream:

- per tile: ``BaseCalls/L00<lane>/C<cycle>.1/s_<lane>_<tile>.bcl.gz``
- per lane: ``BaseCalls/L00<lane>/<cycle:04>.bcl.bgzf`` holding all tiles of
  the lane back to back, in the order listed by ``s_<lane>.bci``.
"""

from __future__ import annotations

import gzip
import struct
import zlib
from pathlib import Path

from fcsync.basecalls.base import (
    COUNT_HEADER,
    BaseCalls,
    PerTileBclDecoder,
    TileUnit,
    decode_bcl_bytes,
    read_bcl_records,
    read_filter_file,
    read_record_count,
)
from fcsync.basecalls import registry
from fcsync.errors import CorruptHeaderError, MissingCycleError
from fcsync.rundir import basecalls_dir

GZIP_ERRORS = (gzip.BadGzipFile, EOFError, zlib.error)

BCI_ENTRY = struct.Struct("<II")

# Tile ID used when a packed lane has no .bci index
WHOLE_LANE = "all"


def read_bci(path: Path) -> list[tuple[str, int]]:
    """Read (tile, record count) pairs from a ``.bci`` tile index."""
    data = path.read_bytes()
    if len(data) % BCI_ENTRY.size:
        raise CorruptHeaderError(f"Truncated tile index {path}", path)
    return [(str(tile), count) for tile, count in BCI_ENTRY.iter_unpack(data)]


@registry.register
class CompressedBclDecoder(PerTileBclDecoder):
    name = "compressed"
    description = "Gzip or BGZF compressed BCL, per tile or packed per lane"
    suffix = ".gz"

    @classmethod
    def detect(cls, run_dir: Path) -> bool:
        root = basecalls_dir(run_dir)
        return (
            next(root.glob("L*/C*.1/s_*_*.bcl.gz"), None) is not None
            or next(root.glob("L*/*.bcl.bgzf"), None) is not None
        )

    def open_stream(self, path: Path):
        return gzip.open(path, "rb")

    # Lane-packed layout ----------------------------------------------------

    def is_lane_packed(self, lane: int) -> bool:
        return next(self.lane_dir(lane).glob("*.bcl.bgzf"), None) is not None

    def bgzf_path(self, lane: int, cycle: int) -> Path:
        return self.lane_dir(lane) / f"{cycle:04d}.bcl.bgzf"

    def bci_path(self, lane: int) -> Path:
        return self.lane_dir(lane) / f"s_{lane}.bci"

    def tile_span(self, tile: TileUnit) -> tuple[int, int | None]:
        """Return (offset, record count) of a tile inside the packed lane."""
        if tile.tile == WHOLE_LANE:
            return 0, None
        offset = 0
        for name, count in read_bci(self.bci_path(tile.lane)):
            if name == tile.tile:
                return offset, count
            offset += count
        raise CorruptHeaderError(
            f"Tile {tile.tile} not in {self.bci_path(tile.lane)}", self.bci_path(tile.lane)
        )

    def _decode_packed(self, tile: TileUnit, cycle: int, limit: int | None) -> BaseCalls:
        path = self.bgzf_path(tile.lane, cycle)
        if not path.exists():
            raise MissingCycleError(f"Missing {path}", path, cycle)
        offset, count = self.tile_span(tile)
        with self.open_stream(path) as stream:
            total = read_record_count(stream, path)
            if count is None:
                count = total
            if offset + count > total:
                raise CorruptHeaderError(
                    f"{path} holds {total} records, tile needs {offset + count}", path
                )
            wanted = count if limit is None else min(count, limit)
            stream.seek(COUNT_HEADER.size + offset)
            payload = stream.read(wanted)
        if len(payload) < wanted:
            raise CorruptHeaderError(f"Truncated payload in {path}", path)
        filter_path = self.lane_dir(tile.lane) / f"s_{tile.lane}.filter"
        passed = read_filter_file(filter_path, len(payload), offset=offset)
        return decode_bcl_bytes(payload, passed)

    # BaseCallDecoder -------------------------------------------------------

    def available_tiles(self, lane: int) -> list[str]:
        if not self.is_lane_packed(lane):
            return super().available_tiles(lane)
        if not self.bci_path(lane).exists():
            return [WHOLE_LANE]
        # Lane order is the order of the index, not a numeric one.
        return [name for name, _ in read_bci(self.bci_path(lane))]

    def tiles(self, lane: int) -> list[TileUnit]:
        units = super().tiles(lane)
        if self.is_lane_packed(lane) and self.bci_path(lane).exists():
            order = {name: i for i, name in enumerate(self.available_tiles(lane))}
            if not self.descriptor.tiles.get(lane):
                units.sort(key=lambda unit: order[unit.tile])
        return units

    def length(self, tile: TileUnit) -> int:
        try:
            if not self.is_lane_packed(tile.lane):
                return super().length(tile)
            _, count = self.tile_span(tile)
            if count is not None:
                return count
            path = self.bgzf_path(tile.lane, tile.first_cycle)
            if not path.exists():
                raise MissingCycleError(f"Missing {path}", path, tile.first_cycle)
            with self.open_stream(path) as stream:
                return read_record_count(stream, path)
        except GZIP_ERRORS as e:
            raise CorruptHeaderError(f"Problem decompressing data of tile {tile.tile}: {e}") from e

    def decode(self, tile: TileUnit, cycle: int, limit: int | None = None) -> BaseCalls:
        try:
            if self.is_lane_packed(tile.lane):
                return self._decode_packed(tile, cycle, limit)
            path = self.tile_path(tile, cycle)
            if not path.exists():
                raise MissingCycleError(f"Missing {path}", path, cycle)
            with self.open_stream(path) as stream:
                payload = read_bcl_records(stream, path, limit)
        except GZIP_ERRORS as e:
            raise CorruptHeaderError(f"Problem decompressing data of tile {tile.tile}: {e}") from e
        passed = read_filter_file(self.filter_path(tile), len(payload))
        return decode_bcl_bytes(payload, passed)
