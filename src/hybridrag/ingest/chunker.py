"""Text chunker — fixed character window with overlap."""

from __future__ import annotations

from hybridrag.db.models import Chunk


class TextChunker:
    """Split text into ordered windows of at most ``chunk_size`` characters.

    Consecutive windows share exactly ``overlap`` characters. When a window
    would cut through a word, its end is pulled back to the last whitespace
    in the window's second half (if there is one). Output depends only on
    ``(text, chunk_size, overlap)``, which the ingestion fingerprint relies on.

    Each chunk records its start offset in ``extra["start"]`` so the full text
    can be rebuilt from the stored chunks.
    """

    def __init__(self, chunk_size: int = 2_000, overlap: int = 200) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, document_id: str, text: str) -> list[Chunk]:
        """Split *text* into Chunk objects for *document_id*.

        Returns:
            Ordered list of Chunk objects with sequential ``chunk_index``.
        """
        return [
            Chunk(
                document_id=document_id,
                chunk_index=i,
                content=segment,
                extra={"start": str(start)},
            )
            for i, (start, segment) in enumerate(self.spans(text))
        ]

    def split(self, text: str) -> list[str]:
        """Return the chunk texts for *text* in source order."""
        return [segment for _, segment in self.spans(text)]

    def spans(self, text: str) -> list[tuple[int, str]]:
        """Return ``(start_offset, segment)`` pairs covering *text*."""
        if not text.strip():
            return []
        if len(text) <= self.chunk_size:
            return [(0, text)]

        spans: list[tuple[int, str]] = []
        pos = 0
        length = len(text)

        while pos < length:
            end = min(pos + self.chunk_size, length)
            if end < length:
                end = self._soft_end(text, pos, end)
            segment = text[pos:end]
            if segment.strip():
                spans.append((pos, segment))
            if end >= length:
                break
            pos = max(pos + 1, end - self.overlap)

        return spans

    def _soft_end(self, text: str, pos: int, end: int) -> int:
        """Move *end* back to just after the last whitespace in the window's second half."""
        floor = pos + max(self.overlap + 1, self.chunk_size // 2)
        for i in range(end - 1, floor - 1, -1):
            if text[i].isspace():
                return i + 1
        return end
