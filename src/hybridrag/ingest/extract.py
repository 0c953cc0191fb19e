"""Text extraction interface.

Format-specific extractors (PDF, DOCX, ...) live outside this package and
plug in through the ``TextExtractor`` protocol.
"""

from __future__ import annotations

from typing import Protocol

from hybridrag.errors import ExtractionError
from hybridrag.ingest.watcher import SourceDescriptor

_BINARY_PROBE = 8192


class TextExtractor(Protocol):
    def extract(self, descriptor: SourceDescriptor) -> str:
        """Return the plain text of *descriptor* or raise ExtractionError."""
        ...


class PlainTextExtractor:
    """Pass-through for ``str`` content; UTF-8 decode for ``bytes``."""

    def extract(self, descriptor: SourceDescriptor) -> str:
        content = descriptor.content
        if isinstance(content, str):
            return content
        if isinstance(content, bytes):
            if b"\x00" in content[:_BINARY_PROBE]:
                raise ExtractionError(
                    f"'{descriptor.id}' looks like a binary file; no extractor for it"
                )
            try:
                return content.decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise ExtractionError(
                    f"'{descriptor.id}' is not valid UTF-8 text: {exc}"
                ) from exc
        raise ExtractionError(f"'{descriptor.id}' has neither text content nor rows")
