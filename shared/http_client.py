"""
HTTP client utilities for talking to external providers.
"""

import asyncio
from pathlib import Path
from typing import Any

import aiohttp


class AsyncHTTPClient:
    """Async JSON client bound to one provider base URL."""

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 30,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.default_headers = dict(headers or {})
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "AsyncHTTPClient":
        """Enter async context manager."""
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self.session:
            await self.session.close()
            self.session = None

    def build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def _merge_headers(self, headers: dict[str, Any] | None) -> dict[str, Any] | None:
        if not self.default_headers and headers is None:
            return None
        merged: dict[str, Any] = dict(self.default_headers)
        merged.update(headers or {})
        return merged

    @staticmethod
    async def _prepare_request(coro_or_ctx: Any) -> Any:
        """Normalize aiohttp request result to an async context manager."""
        if asyncio.iscoroutine(coro_or_ctx):
            return await coro_or_ctx
        return coro_or_ctx

    @staticmethod
    async def _ensure_response_ok(response: Any) -> None:
        """Invoke raise_for_status, awaiting when necessary."""
        result = response.raise_for_status()
        if asyncio.iscoroutine(result):
            await result

    def _require_session(self) -> aiohttp.ClientSession:
        if not self.session:
            raise RuntimeError("HTTP client not initialized. Use async context manager.")
        return self.session

    async def get(self, path: str, headers: dict[str, Any] | None = None) -> dict[str, Any]:
        """Perform GET request and decode the JSON body."""
        session = self._require_session()
        request_ctx = await self._prepare_request(
            session.get(self.build_url(path), headers=self._merge_headers(headers))
        )
        async with request_ctx as response:
            await self._ensure_response_ok(response)
            return await response.json()

    async def post(
        self,
        path: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform POST request with a JSON body."""
        session = self._require_session()
        request_ctx = await self._prepare_request(
            session.post(self.build_url(path), json=data, headers=self._merge_headers(headers))
        )
        async with request_ctx as response:
            await self._ensure_response_ok(response)
            return await response.json()

    async def download(self, url: str, destination: Path, chunk_size: int = 64 * 1024) -> int:
        """Stream a remote file to ``destination`` and return the number of bytes written."""
        session = self._require_session()
        request_ctx = await self._prepare_request(session.get(self.build_url(url)))
        written = 0
        async with request_ctx as response:
            await self._ensure_response_ok(response)
            destination.parent.mkdir(parents=True, exist_ok=True)
            with destination.open("wb") as handle:
                async for chunk in response.content.iter_chunked(chunk_size):
                    handle.write(chunk)
                    written += len(chunk)
        return written
