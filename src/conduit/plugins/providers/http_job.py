"""HTTP job provider: a vendor-async provider over a generic job REST API.

The vendor API is expected to look like:

    POST {submit_url}             -> {"job_id": "..."}
    GET  {status_url}             -> {"status": "RUNNING", "message": "..."}
    GET  {result_url}             -> {"result_urls": ["https://..."], ...}

status_url and result_url are templates formatted with {job_id}. Field
names and the state vocabulary are configurable, since every vendor
spells them differently.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from pydantic import Field, field_validator

from conduit.contracts.enums import VendorJobState
from conduit.contracts.results import VendorJobStatus
from conduit.core.canonical import normalize
from conduit.core.logging import get_logger
from conduit.plugins.base import BaseVendorProvider
from conduit.plugins.config_base import ProviderConfig

if TYPE_CHECKING:
    from conduit.plugins.context import ProviderContext

logger = get_logger(__name__)

DEFAULT_STATE_MAP: dict[str, VendorJobState] = {
    "queued": VendorJobState.PENDING,
    "pending": VendorJobState.PENDING,
    "submitted": VendorJobState.PENDING,
    "running": VendorJobState.RUNNING,
    "processing": VendorJobState.RUNNING,
    "in_progress": VendorJobState.RUNNING,
    "success": VendorJobState.SUCCEEDED,
    "succeeded": VendorJobState.SUCCEEDED,
    "completed": VendorJobState.SUCCEEDED,
    "failed": VendorJobState.FAILED,
    "error": VendorJobState.FAILED,
    "cancelled": VendorJobState.FAILED,
}


class HttpJobConfig(ProviderConfig):
    """Options for HttpJobProvider."""

    submit_url: str
    status_url: str
    result_url: str | None = None  # None: the result is read from the final status payload
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=30.0, gt=0)
    job_id_field: str = "job_id"
    state_field: str = "status"
    message_field: str = "message"
    progress_field: str = "progress"
    result_field: str = "result"
    state_map: dict[str, VendorJobState] = Field(default_factory=lambda: dict(DEFAULT_STATE_MAP))

    @field_validator("state_map", mode="before")
    @classmethod
    def _lower_state_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k).lower(): v for k, v in value.items()}
        return value


class HttpJobProvider(BaseVendorProvider):
    """Submit, poll and fetch a vendor job over HTTP.

    One httpx.Client is shared by every task; httpx.Client is thread-safe
    and its pool handles concurrent branch threads.
    """

    name = "http_job"

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        super().__init__(options)
        self._config = HttpJobConfig.from_dict(self.options)
        self._client = httpx.Client(
            timeout=self._config.timeout_seconds,
            headers=self._config.headers,
        )

    def close(self) -> None:
        """Close the underlying httpx client and release connections."""
        self._client.close()

    def _json_object(self, response: httpx.Response, what: str) -> dict[str, Any]:
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError(f"{self.name}: {what} response must be a JSON object, got {type(body).__name__}")
        return body

    def submit(self, ctx: ProviderContext) -> str:
        payload = {
            "task_id": ctx.task_id,
            "node_id": ctx.node_id,
            "input": normalize(dict(ctx.values)),
            "options": normalize(dict(ctx.options)),
        }
        body = self._json_object(self._client.post(self._config.submit_url, json=payload), "submit")
        job_id = body.get(self._config.job_id_field)
        if job_id is None or job_id == "":
            raise ValueError(f"{self.name}: submit response has no '{self._config.job_id_field}'")
        logger.debug("vendor_job_submitted", task_id=ctx.task_id, node_id=ctx.node_id, vendor_job_id=str(job_id))
        return str(job_id)

    def poll(self, job_id: str, ctx: ProviderContext) -> VendorJobStatus:
        url = self._config.status_url.format(job_id=job_id)
        body = self._json_object(self._client.get(url), "status")
        raw_state = str(body.get(self._config.state_field, "")).lower()
        if raw_state not in self._config.state_map:
            raise ValueError(f"{self.name}: unknown job state '{raw_state}' for job {job_id}")
        state = self._config.state_map[raw_state]
        progress = body.get(self._config.progress_field)
        return VendorJobStatus(
            state=state,
            message=body.get(self._config.message_field),
            progress=float(progress) if isinstance(progress, int | float) else None,
        )

    def fetch_result(self, job_id: str, ctx: ProviderContext) -> dict[str, Any]:
        if self._config.result_url is None:
            status_body = self._json_object(self._client.get(self._config.status_url.format(job_id=job_id)), "status")
            result = status_body.get(self._config.result_field)
            if not isinstance(result, dict):
                raise ValueError(f"{self.name}: status payload for job {job_id} has no '{self._config.result_field}' object")
        else:
            result = self._json_object(self._client.get(self._config.result_url.format(job_id=job_id)), "result")

        urls = result.get("result_urls", [])
        if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
            raise ValueError(f"{self.name}: result_urls for job {job_id} must be a list of strings")
        return result
