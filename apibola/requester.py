"""
HTTP replay of generated requests with throttling, retry and a bounded
worker pool.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp

from .classifier import ResultPair
from .config import ScanConfig

STRIPPED_HEADERS = ["authorization", "cookie"]


@dataclass
class Response:
    """What came back for one replayed request."""
    status_code: int
    headers: dict
    body: str
    elapsed: float
    url: str
    method: str
    reason: str = ""
    http_version: str = ""
    content_length: Optional[int] = None

    @classmethod
    async def capture(cls, resp: aiohttp.ClientResponse, method: str, started: float) -> "Response":
        body = await resp.text(errors="replace")
        version = resp.version
        return cls(
            status_code=resp.status,
            headers=dict(resp.headers),
            body=body,
            elapsed=time.monotonic() - started,
            url=str(resp.url),
            method=method,
            reason=resp.reason or "",
            http_version=f"HTTP/{version.major}.{version.minor}" if version else "",
            content_length=resp.content_length,
        )

    @classmethod
    def failed(cls, url, method: str, error: Optional[str]) -> "Response":
        """Status 0 marks a request that never got an answer."""
        return cls(status_code=0, headers={}, body=f"Request failed: {error}", elapsed=0.0, url=str(url), method=method)


class Requester:
    """
    Async HTTP client that replays GeneratedRequests under one identity.
    """

    def __init__(self, config: ScanConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        self._sent = 0
        self._next_slot = 0.0
        self._slot_lock = asyncio.Lock()

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        """Start the client session (connection limit follows the worker count)."""
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            connector=aiohttp.TCPConnector(ssl=self.config.verify_ssl, limit=self.config.threads),
        )

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _build_headers(self, request) -> dict:
        """Request headers with the configured identity applied."""
        headers = dict(request.headers)
        present = {name.lower(): name for name in headers}

        if self.config.no_auth:
            for name in STRIPPED_HEADERS:
                if name in present:
                    del headers[present[name]]
        elif self.config.auth_token and self.config.auth_header.lower() not in present:
            headers[self.config.auth_header] = f"Bearer {self.config.auth_token}"

        return headers

    async def _wait_turn(self):
        """Space request starts at least ``delay`` seconds apart."""
        if self.config.delay <= 0:
            return
        async with self._slot_lock:
            wait = self._next_slot - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_slot = time.monotonic() + self.config.delay

    async def _attempt(self, request, url, options: dict) -> Response:
        started = time.monotonic()
        async with self._session.request(request.method, url, **options) as resp:
            response = await Response.capture(resp, request.method, started)
        self._sent += 1
        return response

    async def replay(self, request) -> Response:
        """
        Send one GeneratedRequest.

        Timeouts and client errors are retried with a linear backoff, up to
        ``max_retries`` attempts in total.

        Returns:
            Response snapshot, or ``Response.failed`` when no attempt got an
            answer
        """
        await self.open()
        await self._wait_turn()

        url = request.full_url
        options = {"headers": self._build_headers(request)}
        if request.body:
            options["data"] = request.body
        if self.config.proxy:
            options["proxy"] = self.config.proxy

        error = None
        attempts = max(1, self.config.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(request, url, options)
            except asyncio.TimeoutError:
                error = "Request timed out"
            except aiohttp.ClientError as e:
                error = str(e)

            if attempt < attempts:
                await asyncio.sleep(attempt)

        return Response.failed(url, request.method, error)

    async def replay_all(self, requests) -> list[ResultPair]:
        """Replay every request through a bounded pool, preserving order."""
        pool = asyncio.Semaphore(max(1, self.config.threads))

        async def worker(request) -> ResultPair:
            async with pool:
                return ResultPair(request, await self.replay(request))

        return list(await asyncio.gather(*(worker(r) for r in requests)))

    @property
    def request_count(self) -> int:
        """Requests that got an HTTP answer."""
        return self._sent
