"""
Collaborator protocols.

The control loop reads and writes learner state only through these
interfaces. Persistence and content authoring live behind them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from .models import ChunkStatus, ChunkType, LearnerProfile, LexicalChunk, UserChunk


@dataclass
class ChunkQuery:
    """Filter for library lookups."""

    target_language: str
    min_difficulty: float = 1.0
    max_difficulty: float = 5.0
    topic: str | None = None
    exclude_ids: set[str] = field(default_factory=set)
    sort_by: str = "frequency"


@dataclass
class ChunkGenerationRequest:
    """Request sent to the content-generation collaborator."""

    target_language: str
    native_language: str
    cefr_level: str
    internal_level: int
    difficulty: int
    topic: str
    count: int
    interests: list[str] = field(default_factory=list)
    chunk_types: list[ChunkType] = field(default_factory=lambda: list(ChunkType))

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_language": self.target_language,
            "native_language": self.native_language,
            "cefr_level": self.cefr_level,
            "internal_level": self.internal_level,
            "difficulty": self.difficulty,
            "topic": self.topic,
            "count": self.count,
            "interests": list(self.interests),
            "chunk_types": [t.value for t in self.chunk_types],
        }


class ProfileStore(Protocol):
    """Learner profile persistence."""

    async def get(self, learner_id: str) -> LearnerProfile | None:
        ...

    async def update(self, learner_id: str, fields: dict[str, Any]) -> LearnerProfile:
        ...

    async def get_or_create(
        self, learner_id: str, defaults: dict[str, Any] | None = None
    ) -> LearnerProfile:
        ...


class ChunkStore(Protocol):
    """Chunk library plus per-learner acquisition records."""

    async def find_by_level_and_topic(
        self, query: ChunkQuery, limit: int
    ) -> list[LexicalChunk]:
        ...

    async def find_due(
        self, learner_id: str, now: datetime, limit: int
    ) -> list[UserChunk]:
        ...

    async def find_by_status(
        self, learner_id: str, status: ChunkStatus, limit: int
    ) -> list[UserChunk]:
        ...

    async def get_by_id(self, chunk_id: str) -> LexicalChunk | None:
        ...

    async def get_acquisition_record(
        self, learner_id: str, chunk_id: str
    ) -> UserChunk | None:
        ...

    async def list_acquisition_records(self, learner_id: str) -> list[UserChunk]:
        ...

    async def create_acquisition_record(self, record: UserChunk) -> UserChunk:
        ...

    async def update_acquisition_record(
        self, record_id: str, fields: dict[str, Any]
    ) -> UserChunk:
        ...

    async def count_by_status(self, learner_id: str) -> dict[ChunkStatus, int]:
        ...


class ContentGenerator(Protocol):
    """Produces new candidate chunks when the library runs short."""

    async def generate(self, request: ChunkGenerationRequest) -> list[LexicalChunk]:
        ...
