"""Domain models for the hybridrag database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ColumnType(str, Enum):
    """Closed set of column types inferred for tabular sources."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: ColumnType

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type.value}


@dataclass
class Document:
    id: str
    title: str
    url: str = ""
    schema: list[ColumnSpec] | None = None
    created_at: str | None = None

    @property
    def is_structured(self) -> bool:
        return self.schema is not None

    def schema_json(self) -> str | None:
        if self.schema is None:
            return None
        return json.dumps([c.to_dict() for c in self.schema])

    @staticmethod
    def parse_schema(raw: str | None) -> list[ColumnSpec] | None:
        if raw is None:
            return None
        return [ColumnSpec(name=c["name"], type=ColumnType(c["type"])) for c in json.loads(raw)]


@dataclass(frozen=True)
class ChunkMetadata:
    """Required chunk keys plus a string-typed extension map."""

    document_id: str
    chunk_index: int
    extra: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "extra": dict(self.extra),
        }


@dataclass
class Chunk:
    document_id: str
    chunk_index: int
    content: str
    extra: dict[str, str] = field(default_factory=dict)
    embedding: list[float] | None = None
    id: int | None = None  # set after insert; None for unsaved chunks

    @property
    def metadata(self) -> ChunkMetadata:
        return ChunkMetadata(
            document_id=self.document_id,
            chunk_index=self.chunk_index,
            extra=self.extra,
        )


@dataclass
class StructuredRow:
    dataset_id: str
    row_data: dict[str, Any]
    id: int | None = None


@dataclass
class Watermark:
    document_id: str
    content_hash: str
    last_modified: str | None = None
    ingested_at: str | None = None
