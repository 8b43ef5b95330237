"""
Unit tests for the HTTP content generator.
"""

import pytest
import pytest_asyncio
from httpx import HTTPStatusError, Request, Response, TimeoutException

from src.pedagogy.content_client import (
    ContentClientConfig,
    HttpContentGenerator,
    MinIntervalRateLimit,
    NoRateLimit,
    parse_chunk,
)
from src.pedagogy.errors import CollaboratorError
from src.pedagogy.models import ChunkType
from src.pedagogy.stores import ChunkGenerationRequest


class CountingRateLimit:
    def __init__(self):
        self.calls = 0

    async def acquire(self):
        self.calls += 1


@pytest.fixture
def generation_request():
    """Sample generation request."""
    return ChunkGenerationRequest(
        target_language="es",
        native_language="en",
        cefr_level="A2",
        internal_level=30,
        difficulty=2,
        topic="food",
        count=3,
        interests=["cooking"],
    )


@pytest.fixture
def generated_payload():
    return {
        "chunks": [
            {"id": "g1", "text": "tengo hambre", "translation": "I'm hungry", "chunk_type": "utterance", "difficulty": 1.5},
            {"id": "g2", "text": "para llevar", "translation": "to go", "frequency": 120},
            {"id": "g3", "text": "sin traducción"},
            {"id": "g4", "text": "demasiado", "translation": "too much", "difficulty": 7},
        ]
    }


@pytest_asyncio.fixture
async def client():
    """Content generator with no pacing and no backoff delay."""
    client = HttpContentGenerator(
        ContentClientConfig(api_url="http://localhost:8200/", retry_attempts=3, backoff_seconds=0),
        rate_limit=NoRateLimit(),
    )
    yield client
    await client.close()


class TestParseChunk:
    def test_fills_defaults_from_request(self, generation_request):
        chunk = parse_chunk({"id": "g2", "text": "para llevar", "translation": "to go"}, generation_request)

        assert chunk.difficulty == 2.0
        assert chunk.topic_ids == ["food"]
        assert chunk.target_language == "es"
        assert chunk.chunk_type == ChunkType.POLYWORD

    def test_rejects_incomplete_items(self, generation_request):
        assert parse_chunk({"id": "g3", "text": "hola"}, generation_request) is None
        assert parse_chunk({"text": "hola", "translation": "hi"}, generation_request) is None
        assert parse_chunk({"id": "g", "text": "x", "translation": "y", "difficulty": "hard"}, generation_request) is None

    def test_rejects_non_numeric_counts(self, generation_request):
        base = {"id": "g", "text": "x", "translation": "y"}

        assert parse_chunk({**base, "frequency": "common"}, generation_request) is None
        assert parse_chunk({**base, "base_interval": None}, generation_request) is None

    def test_unknown_chunk_type_falls_back(self, generation_request):
        chunk = parse_chunk(
            {"id": "g5", "text": "a ver", "translation": "let's see", "chunk_type": "idiom"}, generation_request
        )
        assert chunk.chunk_type == ChunkType.POLYWORD


class TestHttpContentGenerator:
    @pytest.mark.asyncio
    async def test_generate_success(self, client, generation_request, generated_payload, monkeypatch):
        calls = []

        async def mock_post(url, **kwargs):
            calls.append((url, kwargs))
            return Response(200, json=generated_payload, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        chunks = await client.generate(generation_request)

        assert [c.id for c in chunks] == ["g1", "g2"]
        assert chunks[0].chunk_type == ChunkType.UTTERANCE
        assert chunks[1].frequency == 120
        url, kwargs = calls[0]
        assert url == "http://localhost:8200/chunks/generate"
        assert kwargs["json"]["topic"] == "food"
        assert kwargs["json"]["cefr_level"] == "A2"

    @pytest.mark.asyncio
    async def test_timeout_retry(self, client, generation_request, generated_payload, monkeypatch):
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise TimeoutException("Timeout")
            return Response(200, json=generated_payload, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        chunks = await client.generate(generation_request)

        assert call_count == 2
        assert len(chunks) == 2

    @pytest.mark.asyncio
    async def test_server_error_retry(self, client, generation_request, generated_payload, monkeypatch):
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            request = Request("POST", url)
            if call_count < 2:
                return Response(503, json={"error": "unavailable"}, request=request)
            return Response(200, json=generated_payload, request=request)

        monkeypatch.setattr(client.client, "post", mock_post)

        chunks = await client.generate(generation_request)

        assert call_count == 2
        assert len(chunks) == 2

    @pytest.mark.asyncio
    async def test_client_error_no_retry(self, client, generation_request, monkeypatch):
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            return Response(400, json={"error": "bad request"}, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(HTTPStatusError):
            await client.generate(generation_request)

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_all_retries_exhausted(self, client, generation_request, monkeypatch):
        call_count = 0

        async def mock_post(url, **kwargs):
            nonlocal call_count
            call_count += 1
            raise TimeoutException("Timeout")

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(CollaboratorError) as exc_info:
            await client.generate(generation_request)

        assert call_count == 3
        assert exc_info.value.collaborator == "content-generator"
        assert isinstance(exc_info.value.__cause__, TimeoutException)

    @pytest.mark.asyncio
    async def test_rate_limit_consulted_per_attempt(self, generation_request, monkeypatch):
        policy = CountingRateLimit()
        client = HttpContentGenerator(ContentClientConfig(retry_attempts=2, backoff_seconds=0), rate_limit=policy)

        async def mock_post(url, **kwargs):
            raise TimeoutException("Timeout")

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(CollaboratorError):
            await client.generate(generation_request)
        await client.close()

        assert policy.calls == 2

    @pytest.mark.asyncio
    async def test_api_key_sent_as_bearer(self):
        client = HttpContentGenerator(ContentClientConfig(api_key="secret"), rate_limit=NoRateLimit())
        try:
            assert client.client.headers["Authorization"] == "Bearer secret"
        finally:
            await client.close()


class TestMinIntervalRateLimit:
    @pytest.mark.asyncio
    async def test_waits_out_the_remaining_interval(self):
        times = iter([0.0, 0.2, 0.5])
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        limiter = MinIntervalRateLimit(0.5, clock=lambda: next(times), sleep=fake_sleep)

        await limiter.acquire()
        await limiter.acquire()

        assert sleeps == [pytest.approx(0.3)]

    @pytest.mark.asyncio
    async def test_no_wait_when_interval_elapsed(self):
        times = iter([0.0, 1.0, 1.0])
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        limiter = MinIntervalRateLimit(0.5, clock=lambda: next(times), sleep=fake_sleep)

        await limiter.acquire()
        await limiter.acquire()

        assert sleeps == []
