"""Flow cell service interface and its HTTP client."""

from fcsync.api.client import FlowcellService, HttpFlowcellService
from fcsync.api.models import FlowCell, LaneIndexHistogram, build_flowcell

__all__ = [
    "FlowCell",
    "FlowcellService",
    "HttpFlowcellService",
    "LaneIndexHistogram",
    "build_flowcell",
]
