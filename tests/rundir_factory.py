"""Builders for synthetic run directories used across the tests."""

from __future__ import annotations

import gzip
import struct
from pathlib import Path

BASE_CODES = {"A": 0, "C": 1, "G": 2, "T": 3}

# Read structure as (cycles, is_index) pairs
SINGLE_INDEX = [(4, False), (3, True), (4, False)]
DUAL_INDEX = [(4, False), (3, True), (2, True), (4, False)]

CBCL_BINS = {0: 0, 1: 12, 2: 24, 3: 36}


def compose(structure: list[tuple[int, bool]], *indexes: str, template: str = "A") -> str:
    """Build a full-length read with ``indexes`` at the index reads."""
    parts = []
    remaining = list(indexes)
    for num_cycles, is_index in structure:
        if is_index:
            parts.append(remaining.pop(0) if remaining else "N" * num_cycles)
        else:
            parts.append((template * num_cycles)[:num_cycles])
    return "".join(parts)


def _reads_xml(structure: list[tuple[int, bool]], tag: str = "Read") -> str:
    return "\n".join(
        f'      <{tag} Number="{i}" NumCycles="{n}" IsIndexedRead="{"Y" if idx else "N"}" />'
        for i, (n, idx) in enumerate(structure, start=1)
    )


def write_run_info(
    root: Path,
    structure: list[tuple[int, bool]] = SINGLE_INDEX,
    *,
    run_id: str = "180101_M01234_0042_000000000-ABCDE",
    run_number: int = 42,
    flowcell: str = "000000000-ABCDE",
    instrument: str = "M01234",
    date: str = "180101",
    lane_count: int = 1,
    tiles: dict[int, list[str]] | None = None,
) -> None:
    tiles_xml = ""
    if tiles:
        entries = "\n".join(
            f"            <Tile>{lane}_{tile}</Tile>"
            for lane, lane_tiles in tiles.items()
            for tile in lane_tiles
        )
        tiles_xml = f"""
        <TileSet TileNamingConvention="FourDigit">
          <Tiles>
{entries}
          </Tiles>
        </TileSet>"""
    root.mkdir(parents=True, exist_ok=True)
    (root / "RunInfo.xml").write_text(
        f"""<?xml version="1.0"?>
<RunInfo xmlns:xsd="http://www.w3.org/2001/XMLSchema" Version="2">
  <Run Id="{run_id}" Number="{run_number}">
    <Flowcell>{flowcell}</Flowcell>
    <Instrument>{instrument}</Instrument>
    <Date>{date}</Date>
    <Reads>
{_reads_xml(structure)}
    </Reads>
    <FlowcellLayout LaneCount="{lane_count}" SurfaceCount="2" SwathCount="1" TileCount="2">{tiles_xml}
    </FlowcellLayout>
  </Run>
</RunInfo>
"""
    )


def write_miseq_parameters(
    root: Path,
    structure: list[tuple[int, bool]] = SINGLE_INDEX,
    *,
    rta_version: str = "1.18.54",
    scan_number: int = 42,
    position: str | None = "A",
    experiment: str = "Experiment",
) -> None:
    position_xml = f"<FCPosition>{position}</FCPosition>" if position else ""
    (root / "runParameters.xml").write_text(
        f"""<?xml version="1.0"?>
<RunParameters>
  <Reads>
{_reads_xml(structure, "RunInfoRead")}
  </Reads>
  <RTAVersion>{rta_version}</RTAVersion>
  <ScanNumber>{scan_number}</ScanNumber>
  {position_xml}
  <ExperimentName>{experiment}</ExperimentName>
</RunParameters>
"""
    )


def write_miniseq_parameters(
    root: Path,
    structure: list[tuple[int, bool]] = SINGLE_INDEX,
    *,
    rta_version: str = "v2.4.11",
    run_number: int = 42,
    experiment: str = "Experiment",
) -> None:
    templates = [n for n, is_index in structure if not is_index] + [0, 0]
    indexes = [n for n, is_index in structure if is_index] + [0, 0]
    (root / "RunParameters.xml").write_text(
        f"""<?xml version="1.0"?>
<RunParameters>
  <RunNumber>{run_number}</RunNumber>
  <ExperimentName>{experiment}</ExperimentName>
  <RtaVersion>{rta_version}</RtaVersion>
  <PlannedRead1Cycles>{templates[0]}</PlannedRead1Cycles>
  <PlannedIndex1ReadCycles>{indexes[0]}</PlannedIndex1ReadCycles>
  <PlannedIndex2ReadCycles>{indexes[1]}</PlannedIndex2ReadCycles>
  <PlannedRead2Cycles>{templates[1]}</PlannedRead2Cycles>
</RunParameters>
"""
    )


def bcl_records(column: str, quality: int = 30) -> bytes:
    """Encode one cycle of bases as classic BCL bytes."""
    return bytes(0 if base == "N" else (quality << 2) | BASE_CODES[base] for base in column)


def bcl_file(column: str) -> bytes:
    return struct.pack("<I", len(column)) + bcl_records(column)


def filter_file(passed: list[bool]) -> bytes:
    return struct.pack("<III", 0, 3, len(passed)) + bytes(int(flag) for flag in passed)


def columns(sequences: list[str], cycle: int) -> str:
    """Bases of all reads at 1-based ``cycle``."""
    return "".join(sequence[cycle - 1] for sequence in sequences)


def lane_dir(root: Path, lane: int) -> Path:
    path = root / "Data" / "Intensities" / "BaseCalls" / f"L{lane:03d}"
    path.mkdir(parents=True, exist_ok=True)
    return path


def write_per_tile(
    root: Path,
    lane: int,
    tile: str,
    sequences: list[str],
    cycles: int,
    *,
    compressed: bool = False,
    passed: list[bool] | None = None,
) -> None:
    """Write ``s_<lane>_<tile>.bcl[.gz]`` files for cycles 1..cycles."""
    base = lane_dir(root, lane)
    for cycle in range(1, cycles + 1):
        cycle_dir = base / f"C{cycle}.1"
        cycle_dir.mkdir(exist_ok=True)
        data = bcl_file(columns(sequences, cycle))
        if compressed:
            (cycle_dir / f"s_{lane}_{tile}.bcl.gz").write_bytes(gzip.compress(data))
        else:
            (cycle_dir / f"s_{lane}_{tile}.bcl").write_bytes(data)
    if passed is not None:
        (base / f"s_{lane}_{tile}.filter").write_bytes(filter_file(passed))


def write_bgzf_lane(
    root: Path,
    lane: int,
    tiles: dict[str, list[str]],
    cycles: int,
    *,
    with_bci: bool = True,
    passed: list[bool] | None = None,
) -> None:
    """Write ``NNNN.bcl.bgzf`` files holding all tiles of the lane in order."""
    base = lane_dir(root, lane)
    for cycle in range(1, cycles + 1):
        column = "".join(columns(sequences, cycle) for sequences in tiles.values())
        (base / f"{cycle:04d}.bcl.bgzf").write_bytes(gzip.compress(bcl_file(column)))
    if with_bci:
        (base / f"s_{lane}.bci").write_bytes(
            b"".join(struct.pack("<II", int(tile), len(seqs)) for tile, seqs in tiles.items())
        )
    if passed is not None:
        (base / f"s_{lane}.filter").write_bytes(filter_file(passed))


def pack_cbcl_records(column: str) -> bytes:
    """Pack 4-bit records two per byte, low nibble first."""
    records = [0 if base == "N" else (3 << 2) | BASE_CODES[base] for base in column]
    if len(records) % 2:
        records.append(0)
    return bytes(records[i] | (records[i + 1] << 4) for i in range(0, len(records), 2))


def cbcl_file(
    tiles: dict[str, str], *, version: int = 1, non_pf_excluded: bool = False
) -> bytes:
    """Build a CBCL file from one column of bases per tile."""
    blocks = []
    entries = b""
    for tile, column in tiles.items():
        packed = pack_cbcl_records(column)
        block = gzip.compress(packed)
        blocks.append(block)
        entries += struct.pack("<IIII", int(tile), len(column), len(packed), len(block))
    bins = b"".join(struct.pack("<II", qbin, score) for qbin, score in CBCL_BINS.items())
    header_size = 12 + len(bins) + 4 + len(entries) + 1
    header = (
        struct.pack("<HIBBI", version, header_size, 2, 2, len(CBCL_BINS))
        + bins
        + struct.pack("<I", len(tiles))
        + entries
        + struct.pack("<B", int(non_pf_excluded))
    )
    return header + b"".join(blocks)


def write_cbcl_lane(
    root: Path,
    lane: int,
    tiles: dict[str, list[str]],
    cycles: int,
    *,
    surface: int = 1,
    non_pf_excluded: bool = False,
    passed: dict[str, list[bool]] | None = None,
) -> None:
    base = lane_dir(root, lane)
    for cycle in range(1, cycles + 1):
        cycle_dir = base / f"C{cycle}.1"
        cycle_dir.mkdir(exist_ok=True)
        data = cbcl_file(
            {tile: columns(seqs, cycle) for tile, seqs in tiles.items()},
            non_pf_excluded=non_pf_excluded,
        )
        (cycle_dir / f"L{lane:03d}_{surface}.cbcl").write_bytes(data)
    for tile, flags in (passed or {}).items():
        (base / f"s_{lane}_{tile}.filter").write_bytes(filter_file(flags))


def make_run(
    root: Path,
    lanes: dict[int, dict[str, list[str]]],
    *,
    encoding: str = "raw",
    structure: list[tuple[int, bool]] = SINGLE_INDEX,
    planned: list[tuple[int, bool]] | None = None,
    cycles: int | None = None,
    complete: bool = True,
    **run_info,
) -> Path:
    """Create a run directory with base calls for ``lanes`` (lane -> tile -> reads).

    ``encoding`` is one of raw, gz (MiSeq layout), bgzf (MiniSeq layout) or
    cbcl (NovaSeq layout).
    """
    total = sum(n for n, _ in structure)
    cycles = total if cycles is None else cycles
    write_run_info(root, structure, lane_count=max(lanes), **run_info)
    if encoding in ("raw", "gz"):
        write_miseq_parameters(root, planned or structure)
    else:
        write_miniseq_parameters(root, planned or structure)

    for lane, tiles in lanes.items():
        if encoding == "bgzf":
            write_bgzf_lane(root, lane, tiles, cycles)
        elif encoding == "cbcl":
            write_cbcl_lane(root, lane, tiles, cycles)
        else:
            for tile, sequences in tiles.items():
                write_per_tile(root, lane, tile, sequences, cycles, compressed=encoding == "gz")
    if complete:
        (root / "RTAComplete.txt").write_text("RTA complete\n")
    return root
