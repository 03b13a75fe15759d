"""Pydantic models for histograms, service state and reconciliation outcomes."""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field

from fcsync.rundir import ReadSegment


class Histogram(BaseModel):
    """Frequency table of index reads for one lane and index read."""

    lane: int = Field(..., description="1-based lane number")
    index_no: int = Field(..., description="1-based index read number")
    tile: str = Field(default="", description="Tile the reads were sampled from")
    sample_size: int = Field(default=0, description="Number of passing reads sampled")
    min_index_fraction: float = Field(default=0.001, description="Threshold for keeping an entry")
    counts: dict[str, int] = Field(
        default_factory=dict, description="Index sequence to number of reads"
    )
    cycles_decoded: int = Field(default=0, description="Cycles of the index read decoded")
    truncated: bool = Field(default=False, description="Whether cycles were missing")

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def top(self, count: int = 10) -> list[tuple[str, int]]:
        return sorted(self.counts.items(), key=lambda item: (-item[1], item[0]))[:count]


class LaneOutcome(BaseModel):
    """Result of sampling one lane: histograms or the reason it failed."""

    lane: int
    histograms: list[Histogram] = Field(default_factory=list)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class FlowcellStatus(str, Enum):
    """Sequencing status as tracked by the flow cell service."""

    INITIAL = "initial"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"
    CLOSED = "closed"

    @property
    def is_final(self) -> bool:
        return self in (FlowcellStatus.COMPLETE, FlowcellStatus.FAILED, FlowcellStatus.CLOSED)


class FlowcellState(BaseModel):
    """Flow cell record as known to the service."""

    uuid: str
    instrument: str
    run_number: int
    flowcell: str
    status: FlowcellStatus = FlowcellStatus.INITIAL
    num_lanes: int = 0
    planned_reads: str = ""
    index_histogram_count: int = 0

    @property
    def identity_key(self) -> tuple[str, int, str]:
        return (self.instrument, self.run_number, self.flowcell)


class MetadataAction(str, Enum):
    REGISTER = "register"
    UPDATE = "update"
    SKIP = "skip"


class AdapterAction(str, Enum):
    ANALYZE = "analyze"
    SKIP = "skip"


class MetadataDecision(BaseModel):
    action: MetadataAction
    reason: str


class AdapterDecision(BaseModel):
    action: AdapterAction
    reason: str
    expected: int = 0
    existing: int = 0


@dataclass(frozen=True)
class ReconcileFlags:
    """Switches steering the reconciliation decisions."""

    register: bool = True
    update: bool = True
    update_if_final: bool = False
    analyze_adapters: bool = True
    force_analyze_adapters: bool = False
    post_adapters: bool = True


class RunOutcome(BaseModel):
    """Report for one run directory."""

    path: str
    flowcell: str = ""
    current_reads: list[ReadSegment] = Field(default_factory=list)
    metadata: MetadataDecision | None = None
    adapters: AdapterDecision | None = None
    lanes: list[LaneOutcome] = Field(default_factory=list)
    histograms_submitted: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and all(lane.succeeded for lane in self.lanes)
