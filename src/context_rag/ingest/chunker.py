"""Character-bounded semantic chunking at paragraph and sentence boundaries."""

from __future__ import annotations

import re
from dataclasses import dataclass

from context_rag.config import ChunkingConfig
from context_rag.types import Section, TextChunk, estimate_tokens

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class _Segment:
    # Whitespace that preceded the segment in the source text.
    separator: str
    text: str


class SemanticChunker:
    """Packs boundary segments into overlapping, size-bounded chunks.

    Design notes:
    1. Boundaries first.
       Text is split at blank lines. A section that is a single paragraph
       falls back to sentence boundaries so long prose still breaks cleanly.
       Each segment keeps the whitespace that preceded it in the source, so
       rejoined segments reproduce the original text.

    2. Greedy packing second.
       Segments accumulate in a buffer. When the next segment would push the
       buffer past `max_size`, the buffer is emitted as-is. When the buffer
       reaches `target_size` without passing `max_size`, it is emitted early.
       Either way, the trailing `overlap` characters of the emitted text seed
       the next buffer so context survives the cut. Whatever is left in the
       buffer at the end is emitted as the last chunk.

    3. Oversized segments.
       A single segment too long to fit next to an overlap seed is split at
       whitespace first, so every emitted chunk stays within `max_size`.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(
        self,
        text: str,
        section_header: str | None = None,
        page_number: int | None = None,
    ) -> list[TextChunk]:
        """Split one section of text into ordered chunks.

        Args:
            text: Raw section text.
            section_header: Header copied onto every chunk of this section.
            page_number: Page copied onto every chunk of this section.

        Returns:
            Chunks indexed from 0 within this section. Empty or whitespace-only
            text yields no chunks.
        """

        chunks: list[TextChunk] = []
        buffer = ""

        def emit(content: str) -> None:
            chunks.append(
                TextChunk(
                    content=content.strip(),
                    chunk_index=len(chunks),
                    token_count=estimate_tokens(content.strip()),
                    section_header=section_header,
                    page_number=page_number,
                )
            )

        for segment in self._boundary_segments(text):
            candidate = f"{buffer}{segment.separator}{segment.text}" if buffer else segment.text

            if len(candidate) > self.config.max_size and buffer:
                emit(buffer)
                buffer = f"{self._overlap_tail(buffer)}{segment.separator}{segment.text}"
            elif len(candidate) >= self.config.target_size:
                emit(candidate)
                buffer = self._overlap_tail(candidate)
            else:
                buffer = candidate

        if buffer.strip():
            emit(buffer)

        return chunks

    def chunk_with_sections(self, sections: list[Section]) -> list[TextChunk]:
        """Chunk every section, numbering chunks globally across sections."""

        all_chunks: list[TextChunk] = []
        for section in sections:
            for chunk in self.chunk(section.content, section.header, section.page_number):
                all_chunks.append(
                    TextChunk(
                        content=chunk.content,
                        chunk_index=len(all_chunks),
                        token_count=chunk.token_count,
                        section_header=chunk.section_header,
                        page_number=chunk.page_number,
                    )
                )
        return all_chunks

    def _boundary_segments(self, text: str) -> list[_Segment]:
        spans = _content_spans(text, _PARAGRAPH_SPLIT)
        if len(spans) <= 1:
            spans = _content_spans(text, _SENTENCE_SPLIT)

        bounded: list[tuple[int, int]] = []
        previous_end: int | None = None
        for start, end in spans:
            separator = "" if previous_end is None else text[previous_end:start]
            bounded.extend(self._split_long_span(text, start, end, separator))
            previous_end = end

        segments: list[_Segment] = []
        previous_end = None
        for start, end in bounded:
            separator = "" if previous_end is None else text[previous_end:start]
            segments.append(_Segment(separator=separator, text=text[start:end]))
            previous_end = end
        return segments

    def _split_long_span(
        self, text: str, start: int, end: int, separator: str
    ) -> list[tuple[int, int]]:
        pieces: list[tuple[int, int]] = []
        while True:
            limit = max(1, self.config.max_size - self.config.overlap - len(separator))
            if end - start <= limit:
                pieces.append((start, end))
                return pieces

            gaps = [
                gap
                for gap in _WHITESPACE.finditer(text, start, start + limit + 1)
                if gap.start() > start
            ]
            if gaps:
                piece_end = gaps[-1].start()
                next_start = _WHITESPACE.match(text, piece_end).end()
            else:
                piece_end = next_start = start + limit
            pieces.append((start, piece_end))
            separator = text[piece_end:next_start]
            start = next_start

    def _overlap_tail(self, text: str) -> str:
        return text[max(0, len(text) - self.config.overlap) :]


def _content_spans(text: str, boundary: re.Pattern[str]) -> list[tuple[int, int]]:
    """Return (start, end) offsets of the non-blank parts between boundaries."""

    spans: list[tuple[int, int]] = []
    start = 0
    for match in [*boundary.finditer(text), None]:
        end = match.start() if match else len(text)
        part = text[start:end]
        if part.strip():
            spans.append(
                (start + len(part) - len(part.lstrip()), end - (len(part) - len(part.rstrip())))
            )
        if match:
            start = match.end()
    return spans
