"""Decoder for concatenated BCL (CBCL) files.

Layout: ``BaseCalls/L00<lane>/C<cycle>.1/L00<lane>_<surface>.cbcl``. Each
file holds all tiles of one surface for one cycle as gzip blocks listed in the
file header.
"""

from __future__ import annotations

import gzip
import re
import struct
import zlib
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from fcsync.basecalls.base import (
    BASE_TABLE,
    NO_CALL,
    BaseCallDecoder,
    BaseCalls,
    TileUnit,
    read_filter_file,
)
from fcsync.basecalls import registry
from fcsync.errors import CorruptHeaderError, MissingCycleError, UnsupportedFormatError
from fcsync.rundir import basecalls_dir

CBCL_FILE_PATTERN = re.compile(r"^L(?P<lane>\d+)_(?P<surface>\d+)\.cbcl$")

SUPPORTED_VERSION = 1

PREAMBLE = struct.Struct("<HIBBI")
BIN_ENTRY = struct.Struct("<II")
TILE_COUNT = struct.Struct("<I")
TILE_ENTRY = struct.Struct("<IIII")
FLAG = struct.Struct("<B")


@dataclass(frozen=True)
class CbclTileEntry:
    tile: str
    num_records: int
    uncompressed_size: int
    compressed_size: int
    offset: int


@dataclass(frozen=True)
class CbclHeader:
    version: int
    header_size: int
    bits_per_basecall: int
    bits_per_qscore: int
    bins: dict[int, int]
    tiles: list[CbclTileEntry] = field(default_factory=list)
    non_pf_excluded: bool = False

    @property
    def bits_per_record(self) -> int:
        return self.bits_per_basecall + self.bits_per_qscore

    def entry(self, tile: str) -> CbclTileEntry | None:
        for entry in self.tiles:
            if entry.tile == tile:
                return entry
        return None


def parse_cbcl_header(data: bytes, path: Path) -> CbclHeader:
    """Parse the header of a CBCL file.

    Block offsets accumulate from the end of the header in tile order.

    Raises:
        CorruptHeaderError: The header is truncated
        UnsupportedFormatError: Unknown version or bit depth
    """
    try:
        version, header_size, bits_base, bits_qual, num_bins = PREAMBLE.unpack_from(data, 0)
        if version != SUPPORTED_VERSION:
            raise UnsupportedFormatError(f"Unsupported CBCL version {version} in {path}", path)
        if bits_base != 2 or bits_base + bits_qual not in (4, 8):
            raise UnsupportedFormatError(
                f"Unsupported bit depth {bits_base}+{bits_qual} in {path}", path
            )
        pos = PREAMBLE.size
        bins = {}
        for _ in range(num_bins):
            qbin, score = BIN_ENTRY.unpack_from(data, pos)
            bins[qbin] = score
            pos += BIN_ENTRY.size
        (num_tiles,) = TILE_COUNT.unpack_from(data, pos)
        pos += TILE_COUNT.size
        tiles = []
        offset = header_size
        for _ in range(num_tiles):
            tile, records, raw_size, packed_size = TILE_ENTRY.unpack_from(data, pos)
            tiles.append(CbclTileEntry(str(tile), records, raw_size, packed_size, offset))
            offset += packed_size
            pos += TILE_ENTRY.size
        (flag,) = FLAG.unpack_from(data, pos)
    except struct.error as e:
        raise CorruptHeaderError(f"Truncated CBCL header in {path}: {e}", path) from e

    return CbclHeader(
        version=version,
        header_size=header_size,
        bits_per_basecall=bits_base,
        bits_per_qscore=bits_qual,
        bins=bins,
        tiles=tiles,
        non_pf_excluded=bool(flag),
    )


def read_cbcl_header(path: Path) -> CbclHeader:
    with path.open("rb") as f:
        head = f.read(PREAMBLE.size)
        if len(head) < PREAMBLE.size:
            raise CorruptHeaderError(f"Truncated CBCL header in {path}", path)
        header_size = PREAMBLE.unpack(head)[1]
        return parse_cbcl_header(head + f.read(max(header_size - PREAMBLE.size, 0)), path)


def unpack_records(block: bytes, num_records: int, header: CbclHeader) -> BaseCalls:
    """Unpack 4-bit (two per byte, low nibble first) or 8-bit records."""
    raw = np.frombuffer(block, dtype=np.uint8)
    if header.bits_per_record == 4:
        records = np.empty(len(raw) * 2, dtype=np.uint8)
        records[0::2] = raw & 0x0F
        records[1::2] = raw >> 4
    else:
        records = raw.copy()
    if len(records) < num_records:
        raise CorruptHeaderError(
            f"Block holds {len(records)} records, header says {num_records}"
        )
    records = records[:num_records]

    qbins = records >> header.bits_per_basecall
    scores = np.zeros(1 << header.bits_per_qscore, dtype=np.uint8)
    for qbin, score in header.bins.items():
        if qbin < len(scores):
            scores[qbin] = score
    bases = BASE_TABLE[records & 0x03]
    bases[qbins == 0] = NO_CALL
    return BaseCalls(
        bases=bases,
        qualities=scores[qbins],
        passed_filter=np.ones(num_records, dtype=bool),
    )


@registry.register
class CbclDecoder(BaseCallDecoder):
    name = "columnar"
    description = "CBCL, all tiles of a surface in one file per cycle"
    splits_tiles = False

    @classmethod
    def detect(cls, run_dir: Path) -> bool:
        return next(basecalls_dir(run_dir).glob("L*/C*.1/L*_*.cbcl"), None) is not None

    def cbcl_files(self, lane: int, cycle: int) -> list[Path]:
        cycle_dir = self.cycle_dir(lane, cycle)
        if not cycle_dir.is_dir():
            return []
        found = []
        for entry in cycle_dir.iterdir():
            match = CBCL_FILE_PATTERN.match(entry.name)
            if match and int(match.group("lane")) == lane:
                found.append((int(match.group("surface")), entry))
        return [entry for _, entry in sorted(found)]

    def locate(self, tile: TileUnit, cycle: int) -> tuple[Path, CbclHeader, CbclTileEntry]:
        """Find the CBCL file of ``cycle`` holding ``tile``."""
        files = self.cbcl_files(tile.lane, cycle)
        if not files:
            raise MissingCycleError(
                f"No CBCL files for cycle {cycle} of lane {tile.lane}",
                self.cycle_dir(tile.lane, cycle),
                cycle,
            )
        for path in files:
            header = read_cbcl_header(path)
            entry = header.entry(tile.tile)
            if entry is not None:
                return path, header, entry
        raise MissingCycleError(
            f"Tile {tile.tile} not found at cycle {cycle}", self.cycle_dir(tile.lane, cycle), cycle
        )

    def filter_path(self, tile: TileUnit) -> Path:
        return self.lane_dir(tile.lane) / f"s_{tile.lane}_{tile.tile}.filter"

    def available_tiles(self, lane: int) -> list[str]:
        tiles = []
        for path in self.cbcl_files(lane, 1):
            tiles.extend(entry.tile for entry in read_cbcl_header(path).tiles)
        return tiles

    def length(self, tile: TileUnit) -> int:
        _, _, entry = self.locate(tile, tile.first_cycle)
        return entry.num_records

    def decode(self, tile: TileUnit, cycle: int, limit: int | None = None) -> BaseCalls:
        path, header, entry = self.locate(tile, cycle)
        with path.open("rb") as f:
            f.seek(entry.offset)
            block = f.read(entry.compressed_size)
        if len(block) < entry.compressed_size:
            raise CorruptHeaderError(f"Truncated block of tile {tile.tile} in {path}", path)
        try:
            payload = gzip.decompress(block) if entry.compressed_size else b""
        except (gzip.BadGzipFile, EOFError, zlib.error) as e:
            raise CorruptHeaderError(f"Problem decompressing tile {tile.tile} in {path}: {e}", path) from e

        try:
            calls = unpack_records(payload, entry.num_records, header)
        except CorruptHeaderError as e:
            raise CorruptHeaderError(f"{path}: {e}", path) from e
        if limit is not None:
            calls = calls.head(limit)
        if header.non_pf_excluded:
            return calls
        passed = read_filter_file(self.filter_path(tile), len(calls))
        if passed is None:
            return calls
        return BaseCalls(bases=calls.bases, qualities=calls.qualities, passed_filter=passed)
