"""Provider client for JSON-over-HTTP job APIs (HeyGen, Shotstack and compatible services)."""

from __future__ import annotations

import asyncio
from typing import Any
from urllib.parse import quote

import aiohttp

from shared.config import config
from shared.exceptions import TerminalProviderError, TransientProviderError
from shared.http_client import AsyncHTTPClient
from shared.models import JobSpec, JobStatusSnapshot
from shared.utils import setup_logging

from .base import ProviderClient
from .status_mapping import extract_job_id, parse_status_response

logger = setup_logging("provider-http")


class HttpProviderClient(ProviderClient):
    """Submit and poll jobs against a provider's REST API."""

    def __init__(
        self,
        name: str,
        base_url: str,
        submit_path: str,
        status_path: str,
        api_key: str | None = None,
        auth_header: str = "X-Api-Key",
        timeout: float = 30,
    ) -> None:
        self.name = name
        self.base_url = base_url
        self.submit_path = submit_path
        self.status_path = status_path
        self.api_key = api_key
        self.auth_header = auth_header
        self.timeout = timeout

    @classmethod
    def from_config(cls, name: str) -> "HttpProviderClient":
        settings = config.get_pipeline_section(f"providers.{name}")
        if not settings.get("base_url"):
            raise ValueError(f"Provider '{name}' has no base_url configured")
        api_key_setting = settings.get("api_key_setting")
        return cls(
            name=name,
            base_url=settings["base_url"],
            submit_path=settings.get("submit_path", "/jobs"),
            status_path=settings.get("status_path", "/jobs/{job_id}"),
            api_key=config.get(api_key_setting) if api_key_setting else None,
            auth_header=settings.get("auth_header", "X-Api-Key"),
            timeout=float(settings.get("timeout_seconds", 30)),
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers[self.auth_header] = self.api_key
        return headers

    async def _request(self, method: str, path: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            async with AsyncHTTPClient(self.base_url, timeout=self.timeout, headers=self._headers()) as client:
                if method == "POST":
                    return await client.post(path, data=data)
                return await client.get(path)
        except aiohttp.ClientResponseError as exc:
            message = f"{self.name} returned HTTP {exc.status} for {method} {path}"
            if exc.status == 429 or exc.status >= 500:
                raise TransientProviderError(message, status_code=exc.status) from exc
            raise TerminalProviderError(message, status_code=exc.status) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientProviderError(f"{self.name} request failed: {exc or type(exc).__name__}") from exc

    async def submit(self, spec: JobSpec) -> str:
        body = await self._request("POST", self.submit_path, data=spec.payload)
        external_job_id = extract_job_id(body)
        if not external_job_id:
            raise TerminalProviderError(f"{self.name} accepted the request but returned no job id")
        logger.info(f"Submitted {spec.kind.value} job for {spec.subject_id} to {self.name}: {external_job_id}")
        return external_job_id

    async def poll_status(self, external_job_id: str) -> JobStatusSnapshot:
        path = self.status_path.format(job_id=quote(external_job_id, safe=""))
        body = await self._request("GET", path)
        return parse_status_response(body)
