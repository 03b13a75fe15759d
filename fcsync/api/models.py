"""Wire models of the flow cell tracking REST API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from fcsync.engine.models import FlowcellState, FlowcellStatus, Histogram
from fcsync.rundir import RunDescriptor, string_description


class FlowCell(BaseModel):
    """Flow cell record as sent to and returned by the service."""

    sodar_uuid: str | None = None
    run_date: str
    run_number: int
    slot: str = "A"
    vendor_id: str
    label: str | None = None
    manual_label: str | None = None
    description: str | None = None
    sequencing_machine: str
    num_lanes: int
    operator: str | None = None
    rta_version: int = 0
    status_sequencing: FlowcellStatus = FlowcellStatus.INITIAL
    status_conversion: str = "initial"
    status_delivery: str = "initial"
    delivery_type: str = "seq"
    planned_reads: str | None = None
    current_reads: str | None = None

    def to_state(self, index_histogram_count: int = 0) -> FlowcellState:
        return FlowcellState(
            uuid=self.sodar_uuid or "",
            instrument=self.sequencing_machine,
            run_number=self.run_number,
            flowcell=self.vendor_id,
            status=self.status_sequencing,
            num_lanes=self.num_lanes,
            planned_reads=self.planned_reads or "",
            index_histogram_count=index_histogram_count,
        )


class LaneIndexHistogram(BaseModel):
    """Index histogram of one lane and index read."""

    sodar_uuid: str | None = None
    flowcell: str
    lane: int
    index_read_no: int
    sample_size: int
    min_index_fraction: float
    histogram: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_histogram(cls, flowcell_uuid: str, histogram: Histogram) -> LaneIndexHistogram:
        return cls(
            flowcell=flowcell_uuid,
            lane=histogram.lane,
            index_read_no=histogram.index_no,
            sample_size=histogram.sample_size,
            min_index_fraction=histogram.min_index_fraction,
            histogram=histogram.counts,
        )


def build_flowcell(descriptor: RunDescriptor, status: FlowcellStatus, operator: str = "") -> FlowCell:
    """Build the record registering the run of ``descriptor``."""
    return FlowCell(
        run_date=descriptor.date,
        run_number=descriptor.run_number,
        slot=descriptor.flowcell_slot,
        vendor_id=descriptor.flowcell,
        label=descriptor.experiment_name or None,
        sequencing_machine=descriptor.instrument,
        num_lanes=descriptor.lane_count,
        operator=operator or None,
        rta_version=descriptor.rta_major,
        status_sequencing=status,
        planned_reads=string_description(descriptor.reference_reads),
        current_reads=string_description(descriptor.current_reads),
    )


def build_flowcell_update(descriptor: RunDescriptor, status: FlowcellStatus) -> dict:
    """Fields refreshed on an existing record."""
    return {
        "planned_reads": string_description(descriptor.reference_reads),
        "current_reads": string_description(descriptor.current_reads),
        "status_sequencing": status.value,
    }
