"""
In-memory implementations of the store protocols.

Used by the CLI simulator and tests, and by callers that keep their own
persistence elsewhere and only need the control loop.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import fields as dataclass_fields
from dataclasses import replace
from datetime import datetime
from typing import Any

from .errors import InvalidInputError, NotFoundError, ProfileNotFoundError
from .models import ChunkStatus, LearnerProfile, LexicalChunk, UserChunk, utc_now
from .stores import ChunkQuery

_PROFILE_FIELDS = {f.name for f in dataclass_fields(LearnerProfile)} - {"learner_id"}
_RECORD_FIELDS = {f.name for f in dataclass_fields(UserChunk)} - {"id", "learner_id", "chunk_id"}


def _check_fields(fields: dict[str, Any], allowed: set[str], kind: str) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise InvalidInputError(f"Unknown {kind} fields: {', '.join(sorted(unknown))}")


class InMemoryProfileStore:
    """Dict-backed learner profiles."""

    def __init__(self, profiles: list[LearnerProfile] | None = None):
        self._profiles: dict[str, LearnerProfile] = {p.learner_id: p for p in profiles or []}

    async def get(self, learner_id: str) -> LearnerProfile | None:
        return self._profiles.get(learner_id)

    async def update(self, learner_id: str, fields: dict[str, Any]) -> LearnerProfile:
        profile = self._profiles.get(learner_id)
        if profile is None:
            raise ProfileNotFoundError(learner_id)
        _check_fields(fields, _PROFILE_FIELDS, "profile")

        updated = replace(profile, **{**fields, "updated_at": utc_now()})
        self._profiles[learner_id] = updated
        return updated

    async def get_or_create(
        self, learner_id: str, defaults: dict[str, Any] | None = None
    ) -> LearnerProfile:
        profile = self._profiles.get(learner_id)
        if profile is None:
            defaults = defaults or {}
            _check_fields(defaults, _PROFILE_FIELDS, "profile")
            profile = LearnerProfile(learner_id=learner_id, **defaults)
            self._profiles[learner_id] = profile
        return profile


class InMemoryChunkStore:
    """Dict-backed chunk library and acquisition records."""

    def __init__(self, chunks: list[LexicalChunk] | None = None):
        self._library: dict[str, LexicalChunk] = {c.id: c for c in chunks or []}
        self._records: dict[str, UserChunk] = {}

    def add_chunk(self, chunk: LexicalChunk) -> None:
        self._library[chunk.id] = chunk

    def _learner_records(self, learner_id: str) -> list[UserChunk]:
        return [r for r in self._records.values() if r.learner_id == learner_id]

    async def find_by_level_and_topic(self, query: ChunkQuery, limit: int) -> list[LexicalChunk]:
        matches = [
            chunk
            for chunk in self._library.values()
            if chunk.target_language == query.target_language
            and query.min_difficulty <= chunk.difficulty <= query.max_difficulty
            and (query.topic is None or query.topic in chunk.topic_ids)
            and chunk.id not in query.exclude_ids
        ]
        matches.sort(key=lambda chunk: getattr(chunk, query.sort_by))
        return matches[:limit]

    async def find_due(self, learner_id: str, now: datetime, limit: int) -> list[UserChunk]:
        due = [r for r in self._learner_records(learner_id) if r.is_due(now)]
        due.sort(key=lambda r: r.next_review_date)
        return due[:limit]

    async def find_by_status(
        self, learner_id: str, status: ChunkStatus, limit: int
    ) -> list[UserChunk]:
        return [r for r in self._learner_records(learner_id) if r.status == status][:limit]

    async def get_by_id(self, chunk_id: str) -> LexicalChunk | None:
        return self._library.get(chunk_id)

    async def get_acquisition_record(self, learner_id: str, chunk_id: str) -> UserChunk | None:
        for record in self._learner_records(learner_id):
            if record.chunk_id == chunk_id:
                return record
        return None

    async def list_acquisition_records(self, learner_id: str) -> list[UserChunk]:
        return self._learner_records(learner_id)

    async def create_acquisition_record(self, record: UserChunk) -> UserChunk:
        self._records[record.id] = record
        return record

    async def update_acquisition_record(self, record_id: str, fields: dict[str, Any]) -> UserChunk:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"Acquisition record not found: {record_id}")
        _check_fields(fields, _RECORD_FIELDS, "acquisition record")

        updated = replace(record, **fields)
        self._records[record_id] = updated
        return updated

    async def count_by_status(self, learner_id: str) -> dict[ChunkStatus, int]:
        counts = Counter(r.status for r in self._learner_records(learner_id))
        return {status: counts.get(status, 0) for status in ChunkStatus}
