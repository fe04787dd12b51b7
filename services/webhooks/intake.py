"""Webhook intake: parse provider callbacks, persist them, and wake the reconciler."""

import json
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from services.providers.status_mapping import extract_job_id, map_status, snapshot_from_status
from services.storage import WebhookEventStore
from shared.enums import JobStatus
from shared.exceptions import MalformedEventError
from shared.models import JobStatusSnapshot, WebhookEvent
from shared.utils import setup_logging

from .queue import QueueManager

logger = setup_logging("webhook-intake")


class ParsedEvent(BaseModel):
    external_job_id: str
    event_type: str
    snapshot: JobStatusSnapshot
    payload: dict[str, Any]


def decode_body(raw: Any) -> dict[str, Any]:
    """Accept bytes, str or an already decoded mapping; anything else is malformed."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEventError("Webhook body is not valid UTF-8") from exc
    if isinstance(raw, str):
        if not raw.strip():
            raise MalformedEventError("Webhook body is empty")
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedEventError(f"Webhook body is not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise MalformedEventError("Webhook body must be a JSON object")
    return raw


def _parse_heygen(body: dict[str, Any]) -> ParsedEvent:
    event_type = body.get("event_type")
    event_data = body.get("event_data")
    if not event_type or not isinstance(event_data, dict):
        raise MalformedEventError("HeyGen webhook requires event_type and event_data")
    external_job_id = extract_job_id(event_data)
    if not external_job_id:
        raise MalformedEventError("HeyGen webhook has no video_id")

    outcome = str(event_type).rsplit(".", 1)[-1].lower()
    if outcome in ("success", "completed"):
        status = JobStatus.COMPLETED
    elif outcome in ("fail", "failed", "error"):
        status = JobStatus.FAILED
    else:
        status = map_status(event_data.get("status"))
    return ParsedEvent(
        external_job_id=external_job_id,
        event_type=str(event_type),
        snapshot=snapshot_from_status(status, event_data),
        payload=body,
    )


def _parse_shotstack(body: dict[str, Any]) -> ParsedEvent:
    external_job_id = body.get("id")
    status = body.get("status")
    if not external_job_id or not status:
        raise MalformedEventError("Shotstack webhook requires id and status")
    event_type = ".".join(str(part) for part in (body.get("type"), body.get("action")) if part) or "render"
    return ParsedEvent(
        external_job_id=str(external_job_id),
        event_type=event_type,
        snapshot=snapshot_from_status(map_status(status), body),
        payload=body,
    )


def _parse_generic(body: dict[str, Any]) -> ParsedEvent:
    external_job_id = body.get("external_job_id") or extract_job_id(body)
    status = body.get("status")
    if not external_job_id or not status:
        raise MalformedEventError("Webhook requires a job id and a status")
    return ParsedEvent(
        external_job_id=str(external_job_id),
        event_type=str(body.get("event_type") or f"job.{status}"),
        snapshot=snapshot_from_status(map_status(status), body),
        payload=body,
    )


PARSERS: dict[str, Callable[[dict[str, Any]], ParsedEvent]] = {
    "heygen": _parse_heygen,
    "shotstack": _parse_shotstack,
}


def parse_event(provider: str, raw: Any) -> ParsedEvent:
    body = decode_body(raw)
    parser = PARSERS.get(provider.lower(), _parse_generic)
    return parser(body)


class WebhookIntake:
    """Store every well-formed callback before anything else happens to it."""

    def __init__(self, event_store: WebhookEventStore, queue: QueueManager | None = None) -> None:
        self.event_store = event_store
        self.queue = queue

    async def ingest(self, provider: str, raw: Any) -> WebhookEvent:
        if not provider or not provider.strip():
            raise MalformedEventError("Webhook provider is required")
        provider = provider.strip().lower()
        try:
            parsed = parse_event(provider, raw)
        except MalformedEventError as exc:
            logger.warning(f"Rejected malformed {provider} webhook: {exc.message}")
            raise

        event = self.event_store.add(
            WebhookEvent(
                provider=provider,
                external_job_id=parsed.external_job_id,
                event_type=parsed.event_type,
                snapshot=parsed.snapshot,
                payload=parsed.payload,
            )
        )
        logger.info(
            f"Stored {provider} webhook {event.event_id} ({event.event_type}) for job {event.external_job_id}"
        )

        if self.queue is not None:
            try:
                await self.queue.enqueue(event.event_id)
            except ConnectionError as exc:
                logger.error(f"Could not queue webhook event {event.event_id}, sweep will pick it up: {exc}")
        return event
