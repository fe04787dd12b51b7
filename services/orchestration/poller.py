"""Single status read for a provider job."""

from services.providers import ProviderClient
from shared.enums import JobStatus
from shared.exceptions import InvalidRequestError, TerminalProviderError
from shared.models import JobError, JobHandle, JobStatusSnapshot


async def poll_job_status(client: ProviderClient, handle: JobHandle) -> JobStatusSnapshot:
    """Ask the provider for the current status of ``handle``.

    A rejected status request (unknown job, 4xx) is reported as a FAILED
    snapshot. Transient failures propagate as ``TransientProviderError`` so the
    caller can spend another attempt.
    """
    if not handle.external_job_id:
        raise InvalidRequestError(f"Handle {handle.handle_id} has no external job id to poll")
    try:
        return await client.poll_status(handle.external_job_id)
    except TerminalProviderError as exc:
        return JobStatusSnapshot(status=JobStatus.FAILED, error=JobError.from_exception(exc))
