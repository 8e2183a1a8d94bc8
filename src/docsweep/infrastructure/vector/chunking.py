from __future__ import annotations

from dataclasses import dataclass

DEFAULT_CHUNK_CHARS = 1000


@dataclass(slots=True)
class ChunkDraft:
    chunk_index: int
    start_offset: int
    end_offset: int
    text_content: str


class TextChunker:
    """Split text into chunks of at most ``max_chars``, preferring to break on spaces."""

    def __init__(self, *, max_chars: int = DEFAULT_CHUNK_CHARS) -> None:
        self.max_chars = max(1, max_chars)

    def build_chunks(self, text: str) -> list[ChunkDraft]:
        if not text.strip():
            return []
        if len(text) <= self.max_chars:
            return [ChunkDraft(chunk_index=0, start_offset=0, end_offset=len(text), text_content=text)]

        out: list[ChunkDraft] = []
        start = 0
        while start < len(text):
            end = min(start + self.max_chars, len(text))
            cut = end
            resume = end
            if end < len(text):
                space = text.rfind(" ", start + 1, end)
                if space > start:
                    cut = space
                    resume = space + 1
            piece = text[start:cut]
            if piece.strip():
                out.append(
                    ChunkDraft(
                        chunk_index=len(out),
                        start_offset=start,
                        end_offset=cut,
                        text_content=piece,
                    )
                )
            start = resume
        return out
