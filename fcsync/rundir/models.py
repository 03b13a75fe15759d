"""Pydantic models describing an instrument run directory."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FolderLayout(str, Enum):
    """Run folder layouts that can be detected."""

    MISEQ = "miseq"
    MINISEQ = "miniseq"
    NOVASEQ = "novaseq"
    HISEQX = "hiseqx"


class SegmentType(str, Enum):
    """Type of a read segment, rendered as in read structure strings."""

    TEMPLATE = "T"
    INDEX = "B"


class ReadSegment(BaseModel):
    """One read of the read structure (e.g. ``151T`` or ``8B``)."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(..., description="1-based read number")
    num_cycles: int = Field(..., ge=0, description="Number of cycles in this read")
    type: SegmentType = Field(..., description="Template or index read")

    @property
    def is_index(self) -> bool:
        return self.type == SegmentType.INDEX

    def describe(self) -> str:
        return f"{self.num_cycles}{self.type.value}"


def string_description(segments: list[ReadSegment]) -> str:
    """Render segments as a read structure string such as ``151T8B8B151T``."""
    return "".join(segment.describe() for segment in segments)


def truncate_segments(segments: list[ReadSegment], cycles: int) -> list[ReadSegment]:
    """Return the prefix of ``segments`` covering at most ``cycles`` cycles.

    A segment that is only partially covered is kept with the covered number
    of cycles.
    """
    result = []
    remaining = cycles
    for segment in segments:
        if remaining <= 0:
            break
        taken = min(segment.num_cycles, remaining)
        result.append(segment.model_copy(update={"num_cycles": taken}))
        remaining -= taken
    return result


class IndexSegment(BaseModel):
    """An index read together with its position in the cycle sequence."""

    model_config = ConfigDict(frozen=True)

    index_no: int = Field(..., description="1-based number among the index reads")
    first_cycle: int = Field(..., description="First cycle of the segment (1-based)")
    num_cycles: int = Field(..., description="Number of cycles in the segment")

    @property
    def cycles(self) -> range:
        return range(self.first_cycle, self.first_cycle + self.num_cycles)


class RunDescriptor(BaseModel):
    """Canonical description of one run directory."""

    path: str = Field(..., description="Absolute path to the run directory")
    layout: FolderLayout = Field(..., description="Detected folder layout / platform tag")

    # RunInfo.xml
    run_id: str = Field(..., description="Full run identifier")
    run_number: int = Field(..., description="Run number on the instrument")
    flowcell: str = Field(..., description="Flow cell vendor ID")
    instrument: str = Field(..., description="Sequencer vendor ID")
    date: str = Field(..., description="Run date in ISO format")
    lane_count: int = Field(..., ge=1, description="Number of lanes")
    configured_reads: list[ReadSegment] = Field(
        default_factory=list, description="Read structure configured on the instrument"
    )
    tiles: dict[int, list[str]] = Field(
        default_factory=dict, description="Tile identifiers per lane, in lane order"
    )

    # RunParameters.xml
    planned_reads: list[ReadSegment] = Field(
        default_factory=list, description="Read structure planned in the run parameters"
    )
    rta_version: str = Field(..., description="Real-Time Analysis software version")
    flowcell_slot: str = Field(default="A", description="Flow cell position on the instrument")
    experiment_name: str = Field(default="", description="Experiment name")

    # Directory inspection
    current_reads: list[ReadSegment] = Field(
        default_factory=list, description="Read structure of the cycles written so far"
    )
    cycles_available: int = Field(default=0, description="Contiguous cycles with output files")
    is_complete: bool = Field(default=False, description="Whether RTAComplete.txt exists")

    @property
    def rta_major(self) -> int:
        head = self.rta_version.split(".", 1)[0]
        return int(head) if head.isdigit() else 0

    @property
    def total_cycles(self) -> int:
        return sum(segment.num_cycles for segment in self.configured_reads)

    @property
    def identity_key(self) -> tuple[str, int, str]:
        return (self.instrument, self.run_number, self.flowcell)

    @property
    def reference_reads(self) -> list[ReadSegment]:
        """Planned reads when known, otherwise the configured ones."""
        return self.planned_reads or self.configured_reads

    def index_segments(self) -> list[IndexSegment]:
        """Index reads of the configured structure with their cycle ranges."""
        result = []
        cycle = 1
        for segment in self.configured_reads:
            if segment.is_index:
                result.append(
                    IndexSegment(
                        index_no=len(result) + 1,
                        first_cycle=cycle,
                        num_cycles=segment.num_cycles,
                    )
                )
            cycle += segment.num_cycles
        return result

    @property
    def index_length(self) -> int:
        return sum(segment.num_cycles for segment in self.index_segments())

    def describe_reads(self) -> dict[str, str]:
        return {
            "planned": string_description(self.planned_reads),
            "configured": string_description(self.configured_reads),
            "current": string_description(self.current_reads),
        }


class RunInfo(BaseModel):
    """Information extracted from ``RunInfo.xml``."""

    run_id: str
    run_number: int
    flowcell: str
    instrument: str
    date: str
    lane_count: int
    reads: list[ReadSegment] = Field(default_factory=list)
    tiles: dict[int, list[str]] = Field(default_factory=dict)


class RunParameters(BaseModel):
    """Information extracted from ``RunParameters.xml`` / ``runParameters.xml``."""

    planned_reads: list[ReadSegment] = Field(default_factory=list)
    rta_version: str = ""
    run_number: int | None = None
    flowcell_slot: str = "A"
    experiment_name: str = ""
