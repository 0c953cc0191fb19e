"""hybridrag ingest pipeline — watcher, extraction, chunking, tabular parsing, coordinator."""

from hybridrag.ingest.chunker import TextChunker
from hybridrag.ingest.coordinator import (
    IngestionAborted,
    IngestionCoordinator,
    IngestReport,
    IngestResult,
    IngestStatus,
)
from hybridrag.ingest.extract import PlainTextExtractor, TextExtractor
from hybridrag.ingest.tabular import Dataset, build_dataset, infer_schema
from hybridrag.ingest.watcher import DirectoryWatcher, SourceDescriptor, SourceWatcher, StaticWatcher

__all__ = [
    "Dataset",
    "DirectoryWatcher",
    "IngestReport",
    "IngestResult",
    "IngestStatus",
    "IngestionAborted",
    "IngestionCoordinator",
    "PlainTextExtractor",
    "SourceDescriptor",
    "SourceWatcher",
    "StaticWatcher",
    "TextChunker",
    "TextExtractor",
    "build_dataset",
    "infer_schema",
]
