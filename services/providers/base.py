"""Base classes for external job providers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from shared.enums import JobStatus
from shared.exceptions import TerminalProviderError
from shared.models import JobSpec, JobStatusSnapshot, ResultReference


class ProviderClient(ABC):
    """Abstract client for a provider that runs jobs asynchronously.

    ``submit`` returns the provider's job id immediately; completion is observed
    through ``poll_status`` or through webhook callbacks. Network failures,
    5xx responses and throttling raise ``TransientProviderError``; rejected
    requests raise ``TerminalProviderError``.
    """

    name: str = "base"

    @abstractmethod
    async def submit(self, spec: JobSpec) -> str:
        """Start a job and return the provider's job id."""

    @abstractmethod
    async def poll_status(self, external_job_id: str) -> JobStatusSnapshot:
        """Return the provider's current view of a job."""

    async def fetch_result(self, external_job_id: str) -> ResultReference:
        """Return the result of a completed job."""
        snapshot = await self.poll_status(external_job_id)
        if snapshot.status != JobStatus.COMPLETED:
            raise TerminalProviderError(
                f"Job {external_job_id} on {self.name} is {snapshot.status.value}, no result available"
            )
        return snapshot.result or ResultReference()

    async def close(self) -> None:
        """Release any resources held by the client."""
