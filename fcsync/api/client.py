"""Client for the flow cell tracking REST API."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fcsync.api.models import (
    FlowCell,
    LaneIndexHistogram,
    build_flowcell,
    build_flowcell_update,
)
from fcsync.engine.models import FlowcellState, FlowcellStatus, Histogram
from fcsync.errors import ServiceRejected, ServiceUnavailable
from fcsync.rundir import RunDescriptor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class FlowcellService(Protocol):
    """Operations the reconciliation needs from the flow cell service."""

    def find(self, project: str, key: tuple[str, int, str]) -> FlowcellState | None:
        ...

    def create(
        self,
        project: str,
        descriptor: RunDescriptor,
        status: FlowcellStatus,
        operator: str = "",
    ) -> FlowcellState:
        ...

    def update(
        self,
        project: str,
        flowcell_uuid: str,
        descriptor: RunDescriptor,
        status: FlowcellStatus,
    ) -> FlowcellState:
        ...

    def submit_histograms(
        self, project: str, flowcell_uuid: str, histograms: list[Histogram]
    ) -> int:
        ...


class _ServerError(Exception):
    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code} from {response.request.url}")
        self.response = response


class HttpFlowcellService:
    """FlowcellService over HTTP.

    Network errors, timeouts and 5xx responses are retried with exponential
    backoff and then raised as ServiceUnavailable. Other error responses are
    raised as ServiceRejected.
    """

    def __init__(
        self,
        url: str,
        token: str = "",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        attempts: int = 3,
        backoff: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Token {token}"
        self.url = url.rstrip("/") + "/"
        self.attempts = attempts
        self.backoff = backoff
        self._client = httpx.Client(
            base_url=self.url, headers=headers, timeout=timeout, transport=transport
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFlowcellService:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        @retry(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.backoff, min=0, max=10),
            retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
            reraise=True,
        )
        def _do_request() -> httpx.Response:
            response = self._client.request(method, path, **kwargs)
            if response.status_code >= 500:
                raise _ServerError(response)
            return response

        logger.debug("%s %s%s", method, self.url, path)
        try:
            return _do_request()
        except _ServerError as exc:
            raise ServiceUnavailable(str(exc), exc.response.status_code) from exc
        except httpx.TransportError as exc:
            raise ServiceUnavailable(f"{method} {path} failed: {exc}") from exc

    def _json(self, response: httpx.Response) -> Any:
        if response.status_code >= 400:
            raise ServiceRejected(
                f"{response.request.method} {response.request.url} rejected with "
                f"HTTP {response.status_code}: {response.text[:200]}",
                response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ServiceRejected(
                f"Invalid JSON from {response.request.url}", response.status_code
            ) from exc

    def _parse_flowcell(self, data: Any) -> FlowCell:
        try:
            return FlowCell.model_validate(data)
        except ValueError as exc:
            raise ServiceRejected(f"Unexpected flow cell record: {exc}") from exc

    def list_histograms(self, project: str, flowcell_uuid: str) -> list[LaneIndexHistogram]:
        data = self._json(self._request("GET", f"api/indexhistos/{project}/{flowcell_uuid}/"))
        try:
            return [LaneIndexHistogram.model_validate(item) for item in data or []]
        except ValueError as exc:
            raise ServiceRejected(f"Unexpected index histogram record: {exc}") from exc

    def find(self, project: str, key: tuple[str, int, str]) -> FlowcellState | None:
        instrument, run_number, flowcell = key
        response = self._request(
            "GET", f"api/flowcells/resolve/{project}/{instrument}/{run_number}/{flowcell}/"
        )
        if response.status_code == 404:
            logger.info("Flow cell %s/%s/%s not known yet", instrument, run_number, flowcell)
            return None
        record = self._parse_flowcell(self._json(response))
        histograms = self.list_histograms(project, record.sodar_uuid or "")
        return record.to_state(index_histogram_count=len(histograms))

    def create(
        self,
        project: str,
        descriptor: RunDescriptor,
        status: FlowcellStatus,
        operator: str = "",
    ) -> FlowcellState:
        payload = build_flowcell(descriptor, status, operator)
        logger.debug("Registering flow cell as %r", payload)
        data = self._json(
            self._request(
                "POST",
                f"api/flowcells/{project}/",
                json=payload.model_dump(mode="json", exclude={"sodar_uuid"}),
            )
        )
        return self._parse_flowcell(data).to_state()

    def update(
        self,
        project: str,
        flowcell_uuid: str,
        descriptor: RunDescriptor,
        status: FlowcellStatus,
    ) -> FlowcellState:
        payload = build_flowcell_update(descriptor, status)
        logger.debug("Updating flow cell %s with %r", flowcell_uuid, payload)
        data = self._json(
            self._request("PATCH", f"api/flowcells/{project}/{flowcell_uuid}/", json=payload)
        )
        return self._parse_flowcell(data).to_state()

    def submit_histograms(
        self, project: str, flowcell_uuid: str, histograms: list[Histogram]
    ) -> int:
        """Post histograms, replacing those stored for the same lane and index read.

        Returns the number of histograms posted.
        """
        existing = {
            (item.lane, item.index_read_no): item
            for item in self.list_histograms(project, flowcell_uuid)
        }
        posted = 0
        for histogram in histograms:
            previous = existing.get((histogram.lane, histogram.index_no))
            if previous is not None and previous.sodar_uuid:
                logger.info(
                    "Replacing histogram of lane %d index %d", histogram.lane, histogram.index_no
                )
                self._json(
                    self._request(
                        "DELETE",
                        f"api/indexhistos/{project}/{flowcell_uuid}/{previous.sodar_uuid}/",
                    )
                )
            record = LaneIndexHistogram.from_histogram(flowcell_uuid, histogram)
            self._json(
                self._request(
                    "POST",
                    f"api/indexhistos/{project}/{flowcell_uuid}/",
                    json=record.model_dump(mode="json", exclude={"sodar_uuid"}),
                )
            )
            posted += 1
        return posted
