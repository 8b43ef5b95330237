"""
HTTP content-generation client.

Implements the ContentGenerator collaborator against a chunk generation
service. Requests are paced by an injected RateLimitPolicy and retried with
exponential backoff on timeouts, transport errors and 5xx responses.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from loguru import logger

from .errors import CollaboratorError
from .models import ChunkType, LexicalChunk
from .stores import ChunkGenerationRequest


class RateLimitPolicy(Protocol):
    """Waits as needed before each outbound request."""

    async def acquire(self) -> None:
        ...


class NoRateLimit:
    async def acquire(self) -> None:
        return None


class MinIntervalRateLimit:
    """Enforces a minimum gap between requests made through this instance."""

    def __init__(
        self,
        min_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._last_request: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                if elapsed < self.min_interval_seconds:
                    await self._sleep(self.min_interval_seconds - elapsed)
            self._last_request = self._clock()


@dataclass
class ContentClientConfig:
    api_url: str = "http://localhost:8200"
    api_key: str = ""
    timeout_ms: int = 30000
    retry_attempts: int = 3
    min_request_interval_ms: int = 500
    backoff_seconds: float = 1.0  # doubled after each failed attempt


def parse_chunk(data: dict[str, Any], request: ChunkGenerationRequest) -> LexicalChunk | None:
    """Build a LexicalChunk from one generated item; None if it is unusable."""
    chunk_id = data.get("id")
    text = (data.get("text") or "").strip()
    translation = (data.get("translation") or "").strip()
    if not chunk_id or not text or not translation:
        return None

    try:
        chunk_type = ChunkType(data.get("chunk_type", ChunkType.POLYWORD.value))
    except ValueError:
        chunk_type = ChunkType.POLYWORD

    try:
        difficulty = float(data.get("difficulty", request.difficulty))
        frequency = int(data.get("frequency", 0))
        base_interval = max(1, int(data.get("base_interval", 1)))
    except (TypeError, ValueError):
        return None
    if not 1.0 <= difficulty <= 5.0:
        return None

    return LexicalChunk(
        id=str(chunk_id),
        text=text,
        translation=translation,
        chunk_type=chunk_type,
        target_language=request.target_language,
        native_language=request.native_language,
        difficulty=difficulty,
        topic_ids=list(data.get("topic_ids") or [request.topic]),
        frequency=frequency,
        base_interval=base_interval,
        notes=data.get("notes"),
    )


class HttpContentGenerator:
    """ContentGenerator backed by an HTTP chunk generation service."""

    def __init__(
        self,
        config: ContentClientConfig | None = None,
        rate_limit: RateLimitPolicy | None = None,
    ):
        """
        Initialize the client.

        Args:
            config: Endpoint, credentials and retry settings
            rate_limit: Pacing policy (a MinIntervalRateLimit from config if None)
        """
        self.config = config or ContentClientConfig()
        self.api_url = self.config.api_url.rstrip("/")
        self.rate_limit = rate_limit or MinIntervalRateLimit(
            self.config.min_request_interval_ms / 1000.0
        )
        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_ms / 1000.0),
            headers=headers,
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def generate(self, request: ChunkGenerationRequest) -> list[LexicalChunk]:
        """
        Request new chunks for a topic and level.

        Raises:
            httpx.HTTPStatusError: On 4xx responses (not retried)
            CollaboratorError: When all retries are exhausted
        """
        last_error: Exception | None = None
        attempts = self.config.retry_attempts

        for attempt in range(attempts):
            await self.rate_limit.acquire()
            try:
                response = await self.client.post(
                    f"{self.api_url}/chunks/generate",
                    json=request.to_dict(),
                )
                response.raise_for_status()
                return self._parse(response.json(), request)

            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    logger.error(f"Content generation rejected: {e.response.status_code}")
                    raise
                last_error = e
                logger.warning(
                    f"Content generation server error {e.response.status_code} "
                    f"on attempt {attempt + 1}/{attempts}"
                )

            except (httpx.TimeoutException, httpx.RequestError) as e:
                last_error = e
                logger.warning(f"Content generation failed on attempt {attempt + 1}/{attempts}: {e}")

            if attempt < attempts - 1:
                await asyncio.sleep(self.config.backoff_seconds * 2**attempt)

        raise CollaboratorError(
            "content-generator", f"failed after {attempts} attempts: {last_error}"
        ) from last_error

    def _parse(self, payload: dict[str, Any], request: ChunkGenerationRequest) -> list[LexicalChunk]:
        chunks = []
        for item in payload.get("chunks", []):
            chunk = parse_chunk(item, request)
            if chunk is None:
                logger.warning(f"Skipping invalid generated chunk: {item!r}")
                continue
            chunks.append(chunk)
        logger.debug(f"Generated {len(chunks)} chunks for {request.topic}")
        return chunks
