"""Reader for instrument run directories.

Parses ``RunInfo.xml`` and the run parameters file into a RunDescriptor and
inspects the base call folders to find out how far sequencing has progressed.
"""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path

from fcsync.errors import IoError, ParseError, UnsupportedFormatError
from fcsync.rundir.models import (
    FolderLayout,
    ReadSegment,
    RunDescriptor,
    RunInfo,
    RunParameters,
    SegmentType,
    truncate_segments,
)

logger = logging.getLogger(__name__)


RUN_INFO_FILE = "RunInfo.xml"
RTA_COMPLETE_FILE = "RTAComplete.txt"

# Parameters file name per layout
PARAMETERS_FILES = {
    FolderLayout.MISEQ: "runParameters.xml",
    FolderLayout.MINISEQ: "RunParameters.xml",
    FolderLayout.NOVASEQ: "RunParameters.xml",
    FolderLayout.HISEQX: "RunParameters.xml",
}

# Known formats of <Date> in RunInfo.xml
DATE_FORMATS = [
    "%y%m%d",
    "%Y%m%d",
    "%m/%d/%Y %I:%M:%S %p",
    "%Y-%m-%dT%H:%M:%SZ",
]

# Planned reads in MiniSeq/NextSeq/NovaSeq parameters, in sequencing order
PLANNED_READ_TAGS = [
    ("PlannedRead1Cycles", SegmentType.TEMPLATE),
    ("PlannedIndex1ReadCycles", SegmentType.INDEX),
    ("PlannedIndex2ReadCycles", SegmentType.INDEX),
    ("PlannedRead2Cycles", SegmentType.TEMPLATE),
]


def basecalls_dir(path: Path) -> Path:
    """Return the ``Data/Intensities/BaseCalls`` folder of a run directory."""
    return path / "Data" / "Intensities" / "BaseCalls"


def guess_folder_layout(path: Path) -> FolderLayout:
    """Guess the folder layout from marker files."""
    lane_dir = basecalls_dir(path) / "L001"
    first_cycle = lane_dir / "C1.1"
    upper_params = path / "RunParameters.xml"
    lower_params = path / "runParameters.xml"

    if upper_params.exists() and any(
        (first_cycle / f"L001_{surface}.cbcl").exists() for surface in (1, 2)
    ):
        return FolderLayout.NOVASEQ
    if first_cycle.exists() and lower_params.exists():
        return FolderLayout.MISEQ
    if lane_dir.exists() and upper_params.exists():
        return FolderLayout.MINISEQ
    if (path / "Data" / "Intensities" / "s.locs").exists() and upper_params.exists():
        return FolderLayout.HISEQX
    raise ParseError(f"Could not guess folder layout from {path}", path)


def _load_xml(path: Path) -> ET.Element:
    try:
        text = path.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise IoError(f"Problem reading {path.name}: {e}", path) from e
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise ParseError(f"Problem parsing XML from {path.name}: {e}", path) from e


def _find_text(root: ET.Element, tag: str) -> str | None:
    elem = root.find(f".//{tag}")
    if elem is None or elem.text is None:
        return None
    return elem.text.strip()


def _require_int(value: str | None, what: str) -> int:
    if value is None or value == "":
        raise ParseError(f"Missing {what}")
    try:
        return int(value)
    except ValueError as e:
        raise ParseError(f"Malformed {what}: {value!r}") from e


def _parse_date(value: str) -> str:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date().isoformat()
        except ValueError:
            continue
    raise ParseError(f"Could not parse date from string {value!r}")


def parse_read_elements(root: ET.Element) -> list[ReadSegment]:
    """Parse ``Read``/``RunInfoRead`` elements in document order.

    Reads with zero cycles are dropped.
    """
    reads = []
    for elem in root.iter():
        if elem.tag not in ("Read", "RunInfoRead"):
            continue
        num_cycles = _require_int(elem.get("NumCycles"), "NumCycles attribute")
        if num_cycles <= 0:
            continue
        number = _require_int(elem.get("Number"), "Number attribute")
        is_indexed = elem.get("IsIndexedRead")
        if is_indexed not in ("Y", "N"):
            raise ParseError(f"Malformed IsIndexedRead attribute: {is_indexed!r}")
        reads.append(
            ReadSegment(
                number=number,
                num_cycles=num_cycles,
                type=SegmentType.INDEX if is_indexed == "Y" else SegmentType.TEMPLATE,
            )
        )
    return reads


def _parse_tiles(root: ET.Element) -> dict[int, list[str]]:
    tiles: dict[int, list[str]] = {}
    for elem in root.iterfind(".//FlowcellLayout/TileSet/Tiles/Tile"):
        if not elem.text or "_" not in elem.text:
            continue
        lane, tile = elem.text.strip().split("_", 1)
        tiles.setdefault(_require_int(lane, "tile lane"), []).append(tile)
    return tiles


def parse_run_info(root: ET.Element) -> RunInfo:
    """Extract RunInfo from the parsed ``RunInfo.xml``."""
    run = root.find(".//Run")
    if run is None:
        raise ParseError("Missing Run element")
    flowcell = _find_text(root, "Flowcell")
    if not flowcell:
        raise ParseError("Missing flow cell ID")
    instrument = _find_text(root, "Instrument")
    if not instrument:
        raise ParseError("Missing instrument ID")
    date = _find_text(root, "Date")
    if not date:
        raise ParseError("Missing run date")
    layout = root.find(".//FlowcellLayout")
    if layout is None:
        raise ParseError("Missing FlowcellLayout element")

    lane_count = _require_int(layout.get("LaneCount"), "lane count")
    if lane_count < 1:
        raise ParseError(f"Malformed lane count: {lane_count}")

    reads = parse_read_elements(root)
    if not reads:
        raise ParseError("Missing read structure")

    return RunInfo(
        run_id=run.get("Id", ""),
        run_number=_require_int(run.get("Number"), "run number"),
        flowcell=flowcell,
        instrument=instrument,
        date=_parse_date(date),
        lane_count=lane_count,
        reads=reads,
        tiles=_parse_tiles(root),
    )


def _parse_rta_version(root: ET.Element) -> str:
    version3 = _find_text(root, "RtaVersion")
    if version3:
        return version3[1:] if version3[0] in "vV" else version3
    return _find_text(root, "RTAVersion") or ""


def parse_run_parameters_miseq(root: ET.Element) -> RunParameters:
    """Parse ``runParameters.xml`` as written by MiSeq and HiSeq instruments."""
    scan_number = _find_text(root, "ScanNumber")
    return RunParameters(
        planned_reads=parse_read_elements(root),
        rta_version=_parse_rta_version(root),
        run_number=_require_int(scan_number, "ScanNumber") if scan_number else None,
        flowcell_slot=_find_text(root, "FCPosition") or "A",
        experiment_name=_find_text(root, "ExperimentName") or "",
    )


def parse_run_parameters_miniseq(root: ET.Element) -> RunParameters:
    """Parse ``RunParameters.xml`` as written by MiniSeq, NextSeq and NovaSeq."""
    reads = []
    for tag, segment_type in PLANNED_READ_TAGS:
        value = _find_text(root, tag)
        if value is None:
            continue
        num_cycles = _require_int(value, tag)
        if num_cycles == 0:
            continue
        reads.append(ReadSegment(number=len(reads) + 1, num_cycles=num_cycles, type=segment_type))

    run_number = _find_text(root, "RunNumber")
    return RunParameters(
        planned_reads=reads,
        rta_version=_parse_rta_version(root),
        run_number=_require_int(run_number, "RunNumber") if run_number else None,
        flowcell_slot="A",
        experiment_name=_find_text(root, "ExperimentName") or "",
    )


def count_available_cycles(path: Path) -> int:
    """Count the contiguous cycles of lane 1 that have base call output."""
    lane_dir = basecalls_dir(path) / "L001"
    if not lane_dir.is_dir():
        return 0

    cycles = 0
    while (lane_dir / f"C{cycles + 1}.1").is_dir():
        cycles += 1
    if cycles:
        return cycles
    while (lane_dir / f"{cycles + 1:04d}.bcl.bgzf").exists():
        cycles += 1
    return cycles


def read_run_directory(path: str | Path) -> RunDescriptor:
    """
    Parse a run directory into a RunDescriptor.

    Args:
        path: Path to the run directory

    Returns:
        RunDescriptor with planned, configured and current read structure

    Raises:
        IoError: If the directory or the metadata files cannot be read
        ParseError: If required metadata is missing or malformed
        UnsupportedFormatError: If the layout is known but not supported
    """
    root_path = Path(path).resolve()
    if not root_path.is_dir():
        raise IoError(f"Not a directory: {root_path}", root_path)
    if not (root_path / RUN_INFO_FILE).exists():
        raise IoError(f"{RUN_INFO_FILE} missing in {root_path}", root_path)

    layout = guess_folder_layout(root_path)
    logger.info("Guessed folder layout of %s to be %s", root_path, layout.value)
    if layout == FolderLayout.HISEQX:
        raise UnsupportedFormatError(f"Cannot handle {layout.value} layout yet", root_path)

    try:
        run_info = parse_run_info(_load_xml(root_path / RUN_INFO_FILE))
    except ParseError as e:
        raise ParseError(f"{RUN_INFO_FILE}: {e}", root_path) from e
    logger.debug("RunInfo => %r", run_info)

    params_file = root_path / PARAMETERS_FILES[layout]
    if not params_file.exists():
        raise IoError(f"{params_file.name} missing in {root_path}", root_path)
    params_root = _load_xml(params_file)
    try:
        if layout == FolderLayout.MISEQ:
            run_params = parse_run_parameters_miseq(params_root)
        else:
            run_params = parse_run_parameters_miniseq(params_root)
    except ParseError as e:
        raise ParseError(f"{params_file.name}: {e}", root_path) from e
    logger.debug("RunParameters => %r", run_params)

    is_complete = (root_path / RTA_COMPLETE_FILE).exists()
    cycles_available = count_available_cycles(root_path)
    if is_complete:
        current_reads = list(run_info.reads)
    else:
        current_reads = truncate_segments(run_info.reads, cycles_available)

    return RunDescriptor(
        path=str(root_path),
        layout=layout,
        run_id=run_info.run_id,
        run_number=run_info.run_number,
        flowcell=run_info.flowcell,
        instrument=run_info.instrument,
        date=run_info.date,
        lane_count=run_info.lane_count,
        configured_reads=run_info.reads,
        tiles=run_info.tiles,
        planned_reads=run_params.planned_reads,
        rta_version=run_params.rta_version,
        flowcell_slot=run_params.flowcell_slot,
        experiment_name=run_params.experiment_name,
        current_reads=current_reads,
        cycles_available=cycles_available,
        is_complete=is_complete,
    )
