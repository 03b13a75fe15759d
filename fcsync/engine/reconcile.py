"""Reconciliation of run directories with the flow cell service.

The decisions are pure functions of the service state and the flags; the
ReconciliationEngine reads each run directory, applies the decisions and
issues the service calls from the coordinating thread.
"""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from fcsync.basecalls import open_decoder
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
from fcsync.engine.pool import WorkerPool
from fcsync.errors import DecodeError, RunDirectoryError, ServiceError
from fcsync.rundir import RunDescriptor, read_run_directory, string_description

if TYPE_CHECKING:
    from fcsync.api.client import FlowcellService
    from fcsync.config import Settings

logger = logging.getLogger(__name__)


def decide_metadata(state: FlowcellState | None, flags: ReconcileFlags) -> MetadataDecision:
    """Decide whether to register, update or leave the flow cell record alone."""
    if state is None:
        if flags.register:
            return MetadataDecision(action=MetadataAction.REGISTER, reason="flow cell not known")
        return MetadataDecision(action=MetadataAction.SKIP, reason="registration disabled")

    if not flags.update:
        return MetadataDecision(action=MetadataAction.SKIP, reason="updates disabled")
    if state.status.is_final and not flags.update_if_final:
        return MetadataDecision(
            action=MetadataAction.SKIP, reason=f"status {state.status.value} is final"
        )
    return MetadataDecision(action=MetadataAction.UPDATE, reason=f"status {state.status.value}")


def expected_histograms(descriptor: RunDescriptor) -> int:
    index_reads = sum(1 for segment in descriptor.reference_reads if segment.is_index)
    return descriptor.lane_count * index_reads


def decide_adapters(
    descriptor: RunDescriptor, state: FlowcellState | None, flags: ReconcileFlags
) -> AdapterDecision:
    """Decide whether index histograms have to be computed."""
    expected = expected_histograms(descriptor)
    existing = state.index_histogram_count if state is not None else 0

    def _decision(action: AdapterAction, reason: str) -> AdapterDecision:
        return AdapterDecision(action=action, reason=reason, expected=expected, existing=existing)

    if not flags.analyze_adapters:
        return _decision(AdapterAction.SKIP, "adapter analysis disabled")
    if state is None:
        return _decision(AdapterAction.SKIP, "flow cell not registered")
    if existing == expected and not flags.force_analyze_adapters:
        return _decision(AdapterAction.SKIP, f"all {expected} histograms present")
    if existing == expected:
        return _decision(AdapterAction.ANALYZE, "analysis forced")
    return _decision(AdapterAction.ANALYZE, f"{existing} of {expected} histograms present")


def sequencing_status(
    descriptor: RunDescriptor, previous: FlowcellStatus | None = None
) -> FlowcellStatus:
    """Sequencing status to report for the run.

    Final statuses set on the service are kept. Otherwise a run is in
    progress until ``RTAComplete.txt`` appears, and failed if it completed
    with a read structure other than the planned one.
    """
    if previous is not None and previous.is_final:
        return previous
    if not descriptor.is_complete:
        return FlowcellStatus.IN_PROGRESS
    planned = string_description(descriptor.reference_reads)
    configured = string_description(descriptor.configured_reads)
    if planned != configured:
        logger.warning(
            "Run %s completed with reads %s but %s were planned", descriptor.run_id, configured, planned
        )
        return FlowcellStatus.FAILED
    return FlowcellStatus.COMPLETE


def submittable(lanes: list[LaneOutcome]) -> list[Histogram]:
    """Histograms of successful lanes that sampled at least one read.

    Truncated histograms are held back until every cycle of their index read
    is on disk, so that a later run picks them up in full.
    """
    return [
        histogram
        for lane in lanes
        if lane.succeeded
        for histogram in lane.histograms
        if histogram.sample_size > 0 and not histogram.truncated
    ]


def sample_histograms(
    descriptor: RunDescriptor,
    settings: HistogramSettings,
    pool: WorkerPool,
    on_lane: Callable[[LaneOutcome], None] | None = None,
) -> list[LaneOutcome]:
    """Sample index histograms of all lanes of a run in parallel."""
    segments = descriptor.index_segments()
    if not segments:
        logger.info("Run %s has no index reads", descriptor.run_id)
        return []
    decoder = open_decoder(descriptor)
    engine = IndexHistogramEngine(decoder, settings)
    logger.info(
        "Sampling %d index read(s) of %d lane(s) with %s decoder",
        len(segments),
        descriptor.lane_count,
        decoder.name,
    )
    tasks = {
        lane: partial(engine.sample_lane, lane, segments)
        for lane in range(1, descriptor.lane_count + 1)
    }
    return pool.run(tasks, on_done=on_lane)


class ReconciliationEngine:
    """Coordinates reading, sampling and service calls per run directory."""

    def __init__(
        self,
        service: FlowcellService,
        settings: Settings,
        pool: WorkerPool | None = None,
    ):
        self.service = service
        self.settings = settings
        self.pool = pool or WorkerPool(settings.threads)

    @property
    def project(self) -> str:
        return self.settings.ingest.project_uuid

    def sample_histograms(
        self,
        descriptor: RunDescriptor,
        on_lane: Callable[[LaneOutcome], None] | None = None,
    ) -> list[LaneOutcome]:
        return sample_histograms(
            descriptor, self.settings.ingest.histogram_settings(), self.pool, on_lane
        )

    def reconcile_metadata(
        self, descriptor: RunDescriptor, flags: ReconcileFlags
    ) -> tuple[MetadataDecision, FlowcellState | None]:
        state = self.service.find(self.project, descriptor.identity_key)
        decision = decide_metadata(state, flags)
        logger.info("Flow cell %s: %s (%s)", descriptor.flowcell, decision.action.value, decision.reason)

        if decision.action == MetadataAction.REGISTER:
            state = self.service.create(
                self.project,
                descriptor,
                sequencing_status(descriptor),
                self.settings.ingest.operator,
            )
        elif decision.action == MetadataAction.UPDATE and state is not None:
            updated = self.service.update(
                self.project,
                state.uuid,
                descriptor,
                sequencing_status(descriptor, state.status),
            )
            # The update response does not list the stored histograms
            state = updated.model_copy(
                update={"index_histogram_count": state.index_histogram_count}
            )
        return decision, state

    def process(self, path: Path | str) -> RunOutcome:
        """Reconcile one run directory; errors are reported in the outcome."""
        outcome = RunOutcome(path=str(path))
        flags = self.settings.ingest.flags()
        try:
            descriptor = read_run_directory(path)
        except (RunDirectoryError, DecodeError) as e:
            logger.error("Cannot read run directory %s: %s", path, e)
            outcome.error = str(e)
            return outcome
        outcome.flowcell = descriptor.flowcell
        outcome.current_reads = descriptor.current_reads

        try:
            outcome.metadata, state = self.reconcile_metadata(descriptor, flags)
            outcome.adapters = decide_adapters(descriptor, state, flags)
            logger.info(
                "Index histograms of %s: %s (%s)",
                descriptor.flowcell,
                outcome.adapters.action.value,
                outcome.adapters.reason,
            )
            if outcome.adapters.action != AdapterAction.ANALYZE:
                return outcome

            outcome.lanes = self.sample_histograms(descriptor)
            histograms = submittable(outcome.lanes)
            if not flags.post_adapters:
                logger.info("Not posting %d histogram(s)", len(histograms))
            elif histograms and state is not None:
                outcome.histograms_submitted = self.service.submit_histograms(
                    self.project, state.uuid, histograms
                )
        except ServiceError as e:
            logger.error("Flow cell service failed for %s: %s", path, e)
            outcome.error = str(e)
        except DecodeError as e:
            logger.error("Cannot decode base calls of %s: %s", path, e)
            outcome.error = str(e)
        return outcome

    def ingest(
        self,
        paths: list[Path | str],
        on_run: Callable[[RunOutcome], None] | None = None,
    ) -> list[RunOutcome]:
        """Process run directories one after another."""
        outcomes = []
        for path in paths:
            logger.info("Processing %s", path)
            outcome = self.process(path)
            if on_run:
                on_run(outcome)
            outcomes.append(outcome)
        return outcomes
