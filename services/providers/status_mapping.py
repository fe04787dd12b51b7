"""Translation of provider status vocabularies and response bodies onto JobStatus."""

from typing import Any

from shared.enums import ErrorCode, JobStatus
from shared.models import JobError, JobStatusSnapshot, ResultReference
from shared.utils import setup_logging, truncate

logger = setup_logging("provider-status")

STATUS_ALIASES: dict[str, JobStatus] = {
    "pending": JobStatus.PENDING,
    "queued": JobStatus.PENDING,
    "waiting": JobStatus.PENDING,
    "submitted": JobStatus.PENDING,
    "processing": JobStatus.PROCESSING,
    "in_progress": JobStatus.PROCESSING,
    "running": JobStatus.PROCESSING,
    "rendering": JobStatus.PROCESSING,
    "fetching": JobStatus.PROCESSING,
    "importing": JobStatus.PROCESSING,
    "saving": JobStatus.PROCESSING,
    "completed": JobStatus.COMPLETED,
    "complete": JobStatus.COMPLETED,
    "success": JobStatus.COMPLETED,
    "succeeded": JobStatus.COMPLETED,
    "done": JobStatus.COMPLETED,
    "ready": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "failure": JobStatus.FAILED,
    "error": JobStatus.FAILED,
    "cancelled": JobStatus.CANCELLED,
    "canceled": JobStatus.CANCELLED,
}

RESULT_URL_KEYS = ("video_url", "url", "result_url", "output_url", "source")
JOB_ID_KEYS = ("video_id", "job_id", "render_id", "id")
METADATA_KEYS = ("thumbnail_url", "gif_url", "poster", "caption_url", "video_url_caption")


def map_status(raw_status: Any) -> JobStatus:
    """Map a provider status string onto JobStatus; unknown values count as PROCESSING."""
    if isinstance(raw_status, JobStatus):
        return raw_status
    normalized = str(raw_status or "").strip().lower().replace("-", "_").replace(" ", "_")
    status = STATUS_ALIASES.get(normalized)
    if status is None:
        logger.warning(f"Unknown provider status '{raw_status}', treating as processing")
        return JobStatus.PROCESSING
    return status


def unwrap_body(body: Any) -> dict[str, Any]:
    """Return the object that carries the job fields (HeyGen ``data``, Shotstack ``response``)."""
    if not isinstance(body, dict):
        return {}
    for envelope in ("data", "response", "event_data"):
        inner = body.get(envelope)
        if isinstance(inner, dict):
            return inner
    return body


def extract_job_id(body: Any) -> str | None:
    data = unwrap_body(body)
    for key in JOB_ID_KEYS:
        value = data.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def extract_error_message(data: dict[str, Any]) -> str:
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message") or error.get("detail") or error.get("code")
        if message:
            return truncate(str(message))
    elif error:
        return truncate(str(error))
    for key in ("msg", "message", "failure_reason", "reason"):
        if data.get(key):
            return truncate(str(data[key]))
    return "Provider reported failure"


def _coerce_progress(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return max(0, min(100, int(round(number))))


def _coerce_number(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def result_from_data(data: dict[str, Any]) -> ResultReference:
    url = next((str(data[key]) for key in RESULT_URL_KEYS if data.get(key)), None)
    size = _coerce_number(data.get("size") or data.get("file_size"))
    return ResultReference(
        url=url,
        duration_seconds=_coerce_number(data.get("duration")),
        size_bytes=int(size) if size is not None else None,
        metadata={key: data[key] for key in METADATA_KEYS if data.get(key) and data[key] != url},
    )


def snapshot_from_status(status: JobStatus, data: dict[str, Any]) -> JobStatusSnapshot:
    if status == JobStatus.COMPLETED:
        return JobStatusSnapshot.completed(result_from_data(data))
    if status == JobStatus.FAILED:
        return JobStatusSnapshot.failed(ErrorCode.PROVIDER_FAILED, extract_error_message(data))
    if status == JobStatus.CANCELLED:
        return JobStatusSnapshot.cancelled()
    stage = data.get("stage") or data.get("status")
    return JobStatusSnapshot(
        status=status,
        progress=_coerce_progress(data.get("progress")),
        stage=str(stage) if stage else None,
    )


def parse_status_response(body: Any) -> JobStatusSnapshot:
    """Build a snapshot from a provider status response body."""
    data = unwrap_body(body)
    return snapshot_from_status(map_status(data.get("status")), data)
