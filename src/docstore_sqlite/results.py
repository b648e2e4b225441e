"""Write-operation results."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class InsertOneResult:
    inserted_id: str


@dataclass(frozen=True)
class InsertManyResult:
    inserted_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class UpdateResult:
    """
    Outcome of an update.

    ``modified_count`` counts rows whose body was rewritten. An upsert
    reports the new document through ``upserted_id`` and leaves both counts
    at zero.
    """

    matched_count: int = 0
    modified_count: int = 0
    upserted_id: str | None = None


@dataclass(frozen=True)
class DeleteResult:
    deleted_count: int = 0
