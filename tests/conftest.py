"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import random
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.pedagogy.engine import PedagogyEngine  # noqa: E402
from src.pedagogy.memory_store import InMemoryChunkStore, InMemoryProfileStore  # noqa: E402
from src.pedagogy.models import (  # noqa: E402
    ActivityResult,
    ActivityType,
    ChunkStatus,
    LearnerProfile,
    LexicalChunk,
    UserChunk,
)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """Fixed reference time."""
    return datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def sample_profile():
    """Provide a mid-level learner profile."""
    return LearnerProfile(
        learner_id="learner-1",
        chunks_acquired=160,
        average_confidence=0.6,
        filter_risk_score=0.1,
        explicit_interests=["food"],
    )


@pytest.fixture
def chunk_library():
    """Provide a small chunk library spread over levels and topics."""
    return [
        LexicalChunk(id="c1", text="buenos días", translation="good morning", difficulty=1.0, topic_ids=["greetings"], frequency=1),
        LexicalChunk(id="c2", text="por favor", translation="please", difficulty=1.5, topic_ids=["greetings"], frequency=2),
        LexicalChunk(id="c3", text="me llamo", translation="my name is", difficulty=1.5, topic_ids=["greetings"], frequency=3),
        LexicalChunk(id="c4", text="tengo que", translation="I have to", difficulty=2.0, topic_ids=["greetings"], frequency=4),
        LexicalChunk(id="c5", text="me gustaría", translation="I would like", difficulty=2.0, topic_ids=["greetings"], frequency=5),
        LexicalChunk(id="c6", text="sin embargo", translation="however", difficulty=2.5, topic_ids=["greetings"], frequency=6),
        LexicalChunk(id="f1", text="la cuenta", translation="the check", difficulty=1.5, topic_ids=["food"], frequency=7),
        LexicalChunk(id="f2", text="para llevar", translation="to go", difficulty=2.0, topic_ids=["food"], frequency=8),
        LexicalChunk(id="f3", text="tengo hambre", translation="I'm hungry", difficulty=1.0, topic_ids=["food"], frequency=9),
        LexicalChunk(id="x1", text="hacer la maleta", translation="pack a suitcase", difficulty=4.5, topic_ids=["travel"], frequency=10),
    ]


@pytest.fixture
def profile_store():
    return InMemoryProfileStore()


@pytest.fixture
def chunk_store(chunk_library):
    return InMemoryChunkStore(chunk_library)


@pytest.fixture
def engine(profile_store, chunk_store):
    """Engine over in-memory stores with a seeded random source."""
    return PedagogyEngine(profile_store, chunk_store, rng=random.Random(42))


@pytest.fixture
def make_activity(now):
    """Factory for activity results."""
    counter = {"n": 0}

    def _make(correct=True, used_help=False, chunk_ids=("c1",), response_time_ms=5000, is_review=False, attempts=1):
        counter["n"] += 1
        return ActivityResult(
            id=f"act-{counter['n']}",
            activity_type=ActivityType.MULTIPLE_CHOICE,
            chunk_ids=list(chunk_ids),
            correct=correct,
            response_time_ms=response_time_ms,
            used_help=used_help,
            attempts=attempts,
            is_review=is_review,
            timestamp=now,
        )

    return _make


@pytest.fixture
def make_record(now):
    """Factory for acquisition records."""

    def _make(chunk_id="c1", learner_id="learner-1", status=ChunkStatus.LEARNING, **kwargs):
        defaults = {
            "ease_factor": 2.5,
            "interval": 1,
            "repetitions": 0,
            "next_review_date": now,
            "first_encountered_at": now,
            "last_encountered_at": now,
        }
        defaults.update(kwargs)
        return UserChunk(
            id=f"rec-{learner_id}-{chunk_id}",
            learner_id=learner_id,
            chunk_id=chunk_id,
            status=status,
            **defaults,
        )

    return _make
