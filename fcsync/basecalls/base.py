"""Abstract base class for base call decoders."""

from __future__ import annotations

import abc
import logging
import re
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator

import numpy as np

from fcsync.errors import CorruptHeaderError, MissingCycleError
from fcsync.rundir import RunDescriptor, basecalls_dir

logger = logging.getLogger(__name__)

# Base codes 0..3 as ASCII
BASE_TABLE = np.frombuffer(b"ACGT", dtype=np.uint8)
NO_CALL = ord("N")

FILTER_HEADER = struct.Struct("<III")
COUNT_HEADER = struct.Struct("<I")

TILE_FILE_PATTERN = re.compile(r"^s_(?P<lane>\d+)_(?P<tile>\d+)\.bcl(?P<suffix>\.gz)?$")


@dataclass(frozen=True)
class TileUnit:
    """A tile of a lane together with the cycles available for it."""

    lane: int
    tile: str
    first_cycle: int
    last_cycle: int

    @property
    def cycles(self) -> range:
        return range(self.first_cycle, self.last_cycle + 1)


@dataclass(frozen=True, eq=False)
class BaseCalls:
    """Decoded base calls of one tile and cycle.

    ``bases`` holds ASCII codes (A, C, G, T, N), ``qualities`` the quality
    values and ``passed_filter`` the instrument's pass-filter flags.
    """

    bases: np.ndarray
    qualities: np.ndarray
    passed_filter: np.ndarray

    def __len__(self) -> int:
        return len(self.bases)

    def __iter__(self) -> Iterator[tuple[str, int, bool]]:
        for base, quality, passed in zip(
            self.bases.tobytes().decode("ascii"),
            self.qualities.tolist(),
            self.passed_filter.tolist(),
        ):
            yield base, quality, passed

    def head(self, count: int) -> BaseCalls:
        return BaseCalls(
            bases=self.bases[:count],
            qualities=self.qualities[:count],
            passed_filter=self.passed_filter[:count],
        )


def decode_bcl_bytes(payload: bytes, passed_filter: np.ndarray | None = None) -> BaseCalls:
    """Decode classic BCL records: bits 0-1 base, bits 2-7 quality, 0 = no-call."""
    raw = np.frombuffer(payload, dtype=np.uint8)
    bases = BASE_TABLE[raw & 0x03]
    bases[raw == 0] = NO_CALL
    if passed_filter is None:
        passed_filter = np.ones(len(raw), dtype=bool)
    return BaseCalls(bases=bases, qualities=raw >> 2, passed_filter=passed_filter)


def read_bcl_records(stream: BinaryIO, path: Path, limit: int | None = None) -> bytes:
    """Read the record count header and up to ``limit`` records."""
    count = read_record_count(stream, path)
    wanted = count if limit is None else min(count, limit)
    payload = stream.read(wanted)
    if len(payload) < wanted:
        raise CorruptHeaderError(
            f"Truncated payload in {path}: expected {wanted} records, got {len(payload)}", path
        )
    return payload


def read_record_count(stream: BinaryIO, path: Path) -> int:
    header = stream.read(COUNT_HEADER.size)
    if len(header) < COUNT_HEADER.size:
        raise CorruptHeaderError(f"Problem reading record count of {path}", path)
    return COUNT_HEADER.unpack(header)[0]


def read_filter_file(path: Path, count: int, offset: int = 0) -> np.ndarray | None:
    """Read pass-filter flags for ``count`` reads starting at ``offset``.

    Returns None when there is no filter file, meaning that every read
    passed.
    """
    if not path.exists():
        return None
    data = path.read_bytes()
    if len(data) < FILTER_HEADER.size:
        raise CorruptHeaderError(f"Problem reading filter header of {path}", path)
    _, _, num_reads = FILTER_HEADER.unpack_from(data)
    flags = np.frombuffer(data, dtype=np.uint8, offset=FILTER_HEADER.size)
    if len(flags) < num_reads or offset + count > num_reads:
        raise CorruptHeaderError(f"Filter file {path} does not cover all reads", path)
    return (flags[offset:offset + count] & 0x01).astype(bool)


def order_tiles(found: list[str], preferred: list[str] | None = None) -> list[str]:
    """Order tiles as listed in the run info, unknown ones numerically after."""
    def numeric(tile: str) -> tuple[int, str]:
        return (int(tile), tile) if tile.isdigit() else (1 << 62, tile)

    preferred = preferred or []
    known = [tile for tile in preferred if tile in found]
    rest = sorted((tile for tile in found if tile not in known), key=numeric)
    return known + rest


class BaseCallDecoder(abc.ABC):
    """Abstract base class for a base call file encoding.

    Subclasses must implement:
    - `name` (class attribute): unique decoder name used in the registry.
    - `detect()`: whether a run directory uses this encoding.
    - `available_tiles()`: tiles found on disk for a lane.
    - `length()`: number of records of a tile.
    - `decode()`: base calls of one tile and cycle.

    Decoders hold no mutable state; decoding the same bytes always yields
    the same base calls.
    """

    name: str = ""
    description: str = ""

    # Whether every tile lives in files of its own
    splits_tiles: bool = True

    def __init__(self, descriptor: RunDescriptor) -> None:
        self.descriptor = descriptor
        self.run_dir = Path(descriptor.path)
        self.basecalls_dir = basecalls_dir(self.run_dir)

    @classmethod
    @abc.abstractmethod
    def detect(cls, run_dir: Path) -> bool:
        """Return True if the run directory holds files in this encoding."""
        ...

    def lane_dir(self, lane: int) -> Path:
        return self.basecalls_dir / f"L{lane:03d}"

    def cycle_dir(self, lane: int, cycle: int) -> Path:
        return self.lane_dir(lane) / f"C{cycle}.1"

    @abc.abstractmethod
    def available_tiles(self, lane: int) -> list[str]:
        """Tile identifiers with data for ``lane``, in any order."""
        ...

    def tiles(self, lane: int) -> list[TileUnit]:
        """Tiles of ``lane`` in lane order."""
        last_cycle = self.descriptor.cycles_available
        if self.descriptor.is_complete:
            last_cycle = max(last_cycle, self.descriptor.total_cycles)
        ordered = order_tiles(self.available_tiles(lane), self.descriptor.tiles.get(lane))
        return [
            TileUnit(lane=lane, tile=tile, first_cycle=1, last_cycle=last_cycle)
            for tile in ordered
        ]

    @abc.abstractmethod
    def length(self, tile: TileUnit) -> int:
        """Number of records stored for ``tile``."""
        ...

    @abc.abstractmethod
    def decode(self, tile: TileUnit, cycle: int, limit: int | None = None) -> BaseCalls:
        """Decode the base calls of ``tile`` at ``cycle``.

        Args:
            tile: The tile to decode
            cycle: 1-based cycle number
            limit: Decode at most this many records

        Raises:
            MissingCycleError: The file for this cycle does not exist
            CorruptHeaderError: The file is damaged
            UnsupportedFormatError: The file uses an unknown version
        """
        ...


def tiles_in_cycle_dir(cycle_dir: Path, suffix: str) -> list[str]:
    """Tile IDs of files ``s_<lane>_<tile>.bcl<suffix>`` in ``cycle_dir``."""
    if not cycle_dir.is_dir():
        return []
    tiles = []
    for entry in cycle_dir.iterdir():
        match = TILE_FILE_PATTERN.match(entry.name)
        if match and (match.group("suffix") or "") == suffix:
            tiles.append(match.group("tile"))
    return tiles


class PerTileBclDecoder(BaseCallDecoder):
    """Shared logic of the per-tile per-cycle encodings."""

    suffix: str = ""

    def open_stream(self, path: Path):
        return path.open("rb")

    def tile_path(self, tile: TileUnit, cycle: int) -> Path:
        return self.cycle_dir(tile.lane, cycle) / f"s_{tile.lane}_{tile.tile}.bcl{self.suffix}"

    def filter_path(self, tile: TileUnit) -> Path:
        return self.lane_dir(tile.lane) / f"s_{tile.lane}_{tile.tile}.filter"

    def available_tiles(self, lane: int) -> list[str]:
        return tiles_in_cycle_dir(self.cycle_dir(lane, 1), self.suffix)

    def length(self, tile: TileUnit) -> int:
        path = self.tile_path(tile, tile.first_cycle)
        if not path.exists():
            raise MissingCycleError(f"Missing {path}", path, tile.first_cycle)
        with self.open_stream(path) as stream:
            return read_record_count(stream, path)

    def decode(self, tile: TileUnit, cycle: int, limit: int | None = None) -> BaseCalls:
        path = self.tile_path(tile, cycle)
        if not path.exists():
            raise MissingCycleError(f"Missing {path}", path, cycle)
        with self.open_stream(path) as stream:
            payload = read_bcl_records(stream, path, limit)
        passed = read_filter_file(self.filter_path(tile), len(payload))
        return decode_bcl_bytes(payload, passed)
