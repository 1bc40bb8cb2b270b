"""Text chunking utilities for legal documents and reference material."""

import re
from typing import Any

SECTION_MIN_CHARS = 100
CLAUSE_MIN_CHARS = 50
CLAUSE_MAX_CHARS = 2000
SENTENCES_PER_CHUNK = 5
SEMANTIC_MIN_CHARS = 100
OVERLAP_MIN_CHARS = 50
PREAMBLE_HEADING = "Preamble"

_SECTION_RE = re.compile(r"^##\s+(.+)$", re.MULTILINE)
_CLAUSE_RE = re.compile(r"(?:^|\n)(?:\d+\.|\-|\*)\s+(.+?)(?=\n(?:##|\d+\.|\-|\*)|$)", re.DOTALL)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+\s+")


def _chunk(index: int, content: str, metadata: dict[str, Any]) -> dict[str, Any]:
    return {"chunk_index": index, "content": content, "metadata": metadata}


def _section_chunk(
    index: int, content: str, title: str | None, base: dict[str, Any]
) -> dict[str, Any]:
    return _chunk(
        index,
        content,
        {
            **base,
            "section": title,
            "heading": title or PREAMBLE_HEADING,
            "chunk_type": "section",
        },
    )


def chunk_legal_document(
    text: str,
    metadata: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """
    Split a legal document hierarchically into section and clause chunks.

    Sections start at ``## `` headings and run to the next heading; text
    before the first heading becomes a preamble section. A section at or
    under the length floor is folded into the next one (or the last one), so
    no text is dropped once the document has a heading. Clauses
    are numbered or bulleted items, tagged with the section they sit in.
    Both strategies run independently; only when neither yields anything
    does the text fall back to groups of sentences.

    Args:
        text: Document text (markdown-ish)
        metadata: Metadata copied into every chunk

    Returns:
        List of chunk dicts with chunk_index, content, metadata
    """
    base = metadata or {}
    chunks: list[dict[str, Any]] = []

    headings = list(_SECTION_RE.finditer(text))
    sections = []
    for i, match in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(text)
        sections.append((match.group(1).strip(), match.start(), end))

    # Text before the first heading is kept as a preamble piece
    pieces: list[tuple[str | None, int, int]] = list(sections)
    if headings and text[: headings[0].start()].strip():
        pieces.insert(0, (None, 0, headings[0].start()))

    carried = ""
    carried_title: str | None = None
    for title, start, end in pieces:
        content = text[start:end].strip()
        if carried:
            content = f"{carried}\n\n{content}"
        if len(content) > SECTION_MIN_CHARS:
            chunks.append(_section_chunk(len(chunks), content, title, base))
            carried, carried_title = "", None
        else:
            if not carried:
                carried_title = title
            carried = content

    if carried:
        if chunks:
            chunks[-1]["content"] = f"{chunks[-1]['content']}\n\n{carried}"
        else:
            chunks.append(_section_chunk(0, carried, carried_title, base))

    clause_index = len(chunks)
    for match in _CLAUSE_RE.finditer(text):
        clause = match.group(1).strip()
        if not CLAUSE_MIN_CHARS < len(clause) < CLAUSE_MAX_CHARS:
            continue
        section = next(
            (title for title, start, end in sections if start <= match.start() < end),
            None,
        )
        chunks.append(
            _chunk(
                clause_index,
                clause,
                {**base, "section": section, "clause": clause[:50], "chunk_type": "clause"},
            )
        )
        clause_index += 1

    if chunks:
        return chunks

    sentences = _SENTENCE_SPLIT_RE.split(text)
    for i in range(0, len(sentences), SENTENCES_PER_CHUNK):
        content = ". ".join(sentences[i : i + SENTENCES_PER_CHUNK]).strip()
        if len(content) > SEMANTIC_MIN_CHARS:
            chunks.append(
                _chunk(i // SENTENCES_PER_CHUNK, content, {**base, "chunk_type": "semantic"})
            )

    return chunks


def chunk_with_overlap(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
    metadata: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """
    Split text into overlapping windows, preferring sentence or line breaks.

    A window is cut back to its last ``.`` or newline when that boundary lies
    beyond 70% of ``chunk_size``; otherwise the hard window edge is used.

    Raises:
        ValueError: If chunk_size <= overlap
    """
    if chunk_size <= overlap:
        raise ValueError(f"chunk_size ({chunk_size}) must be greater than overlap ({overlap})")

    base = metadata or {}
    chunks: list[dict[str, Any]] = []
    index = 0
    chunk_index = 0
    text_length = len(text)

    while index < text_length:
        start = index
        end = min(index + chunk_size, text_length)
        content = text[index:end]

        if end < text_length:
            break_point = max(content.rfind("."), content.rfind("\n"))
            if break_point > chunk_size * 0.7:
                content = content[: break_point + 1]
                index = index + break_point + 1 - overlap
            else:
                index = end - overlap
            if index <= start:
                index = end - overlap
        else:
            index = end

        if len(content.strip()) > OVERLAP_MIN_CHARS:
            chunks.append(
                _chunk(
                    chunk_index,
                    content.strip(),
                    {**base, "chunk_type": "overlap", "start_char": start},
                )
            )
            chunk_index += 1

    return chunks

