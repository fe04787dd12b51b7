"""Follow-up actions run once a provider job has completed."""

import asyncio
import weakref
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import aiohttp

from services.storage import JobStore
from shared.config import config
from shared.exceptions import TerminalProviderError, TransientProviderError
from shared.http_client import AsyncHTTPClient
from shared.models import TrackedJob
from shared.utils import ensure_directory, sanitize_filename, setup_logging, truncate

logger = setup_logging("result-actions")


class ResultAction(ABC):
    """Idempotent side effect applied to a completed job's result."""

    name: str = "base"

    @abstractmethod
    async def execute(self, job: TrackedJob) -> None:
        """Apply the action; raise to report failure."""


class NoopResultAction(ResultAction):
    name = "noop"

    async def execute(self, job: TrackedJob) -> None:
        logger.debug(f"No follow-up configured for job {job.handle.handle_id}")


class MediaDownloadAction(ResultAction):
    """Copy a completed job's result file into the local media root."""

    name = "media_download"

    def __init__(self, media_root: str | Path | None = None, timeout: float = 300) -> None:
        self.media_root = Path(media_root or config.get("media_root", "./media"))
        self.timeout = timeout

    def destination_for(self, job: TrackedJob) -> Path:
        handle = job.handle
        url = job.result.url if job.result else ""
        suffix = PurePosixPath(urlparse(url or "").path).suffix or ".bin"
        filename = sanitize_filename(f"{handle.subject_id}_{handle.handle_id}{suffix}")
        return self.media_root / handle.kind.value / filename

    async def execute(self, job: TrackedJob) -> None:
        url = job.result.url if job.result else None
        if not url or urlparse(url).scheme not in ("http", "https"):
            logger.info(f"Job {job.handle.handle_id} has no downloadable result, skipping")
            return

        destination = self.destination_for(job)
        if destination.exists() and destination.stat().st_size > 0:
            logger.info(f"Result for job {job.handle.handle_id} already stored at {destination}")
            return

        ensure_directory(str(destination.parent))
        partial = destination.with_suffix(destination.suffix + ".part")
        try:
            async with AsyncHTTPClient(timeout=self.timeout) as client:
                size = await client.download(url, partial)
        except aiohttp.ClientResponseError as exc:
            partial.unlink(missing_ok=True)
            if exc.status == 429 or exc.status >= 500:
                raise TransientProviderError(f"Result download failed with HTTP {exc.status}", status_code=exc.status) from exc
            raise TerminalProviderError(f"Result download failed with HTTP {exc.status}", status_code=exc.status) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            partial.unlink(missing_ok=True)
            raise TransientProviderError(f"Result download failed: {exc or type(exc).__name__}") from exc
        partial.replace(destination)
        logger.info(f"Stored {size} bytes for job {job.handle.handle_id} at {destination}")


def build_result_action(name: str | None = None) -> ResultAction:
    name = (name or config.get("result_action", "media_download")).lower()
    actions: dict[str, type[ResultAction]] = {
        NoopResultAction.name: NoopResultAction,
        MediaDownloadAction.name: MediaDownloadAction,
    }
    action_cls = actions.get(name)
    if action_cls is None:
        logger.warning(f"Unknown result action '{name}', falling back to noop")
        action_cls = NoopResultAction
    return action_cls()


class FollowUpRunner:
    """
    Run the result action for completed jobs, at most once per job.

    Both the poller and the webhook reconciler call :meth:`run`; a per-job
    lock plus the stored ``follow_up_completed`` flag make the second caller
    a no-op. A failed action is recorded on the job and retried only when the
    job is reported complete again.
    """

    def __init__(self, job_store: JobStore, action: ResultAction) -> None:
        self.job_store = job_store
        self.action = action
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, handle_id: str) -> asyncio.Lock:
        lock = self._locks.get(handle_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[handle_id] = lock
        return lock

    async def run(self, job: TrackedJob) -> TrackedJob:
        handle_id = job.handle.handle_id
        lock = self._lock_for(handle_id)
        async with lock:
            current = self.job_store.get(handle_id) or job
            if not current.needs_follow_up:
                return current
            try:
                await self.action.execute(current)
            except Exception as exc:
                message = truncate(str(exc) or type(exc).__name__)
                logger.error(f"Follow-up '{self.action.name}' failed for job {handle_id}: {message}")
                return self.job_store.record_follow_up(handle_id, message)
            logger.info(f"Follow-up '{self.action.name}' completed for job {handle_id}")
            return self.job_store.record_follow_up(handle_id, None)
