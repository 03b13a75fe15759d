"""Engine for sampling index histograms and reconciling runs with the service."""

from fcsync.engine.histogram import HistogramSettings, IndexHistogramEngine
from fcsync.engine.models import (
    AdapterAction,
    AdapterDecision,
    FlowcellState,
    FlowcellStatus,
    Histogram,
    LaneOutcome,
    MetadataAction,
    MetadataDecision,
    ReconcileFlags,
    RunOutcome,
)
from fcsync.engine.pool import WorkerPool, all_succeeded

__all__ = [
    "AdapterAction",
    "AdapterDecision",
    "FlowcellState",
    "FlowcellStatus",
    "Histogram",
    "HistogramSettings",
    "IndexHistogramEngine",
    "LaneOutcome",
    "MetadataAction",
    "MetadataDecision",
    "ReconcileFlags",
    "RunOutcome",
    "WorkerPool",
    "all_succeeded",
]
