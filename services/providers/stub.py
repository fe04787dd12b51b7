"""Stub provider that completes jobs deterministically without external services."""

from __future__ import annotations

from shared.config import config
from shared.enums import ErrorCode
from shared.exceptions import TerminalProviderError
from shared.models import JobSpec, JobStatusSnapshot, ResultReference
from shared.utils import new_id

from .base import ProviderClient


class StubProviderClient(ProviderClient):
    """Report PROCESSING for ``steps_to_complete - 1`` polls, then a terminal status.

    A payload containing ``{"simulate": "fail"}`` makes the job end FAILED.
    """

    name = "stub"

    def __init__(self, steps_to_complete: int | None = None) -> None:
        configured = config.get_pipeline_value("providers.stub.steps_to_complete", 3)
        self.steps_to_complete = max(1, int(steps_to_complete or configured))
        self._polls: dict[str, int] = {}
        self._fail: set[str] = set()

    async def submit(self, spec: JobSpec) -> str:
        external_job_id = f"stub-{new_id()}"
        self._polls[external_job_id] = 0
        if spec.payload.get("simulate") == "fail":
            self._fail.add(external_job_id)
        return external_job_id

    async def poll_status(self, external_job_id: str) -> JobStatusSnapshot:
        if external_job_id not in self._polls:
            raise TerminalProviderError(f"Unknown stub job {external_job_id}", status_code=404)
        self._polls[external_job_id] += 1
        polls = self._polls[external_job_id]
        if polls < self.steps_to_complete:
            progress = polls * 100 // self.steps_to_complete
            return JobStatusSnapshot.processing(progress=progress, stage="rendering")
        if external_job_id in self._fail:
            return JobStatusSnapshot.failed(ErrorCode.PROVIDER_FAILED, "Simulated provider failure")
        return JobStatusSnapshot.completed(
            ResultReference(url=f"stub://results/{external_job_id}", duration_seconds=0.0, size_bytes=0)
        )
