"""Markdown chunker — heading-aware sections, paragraph packing with tail overlap.

Strategy:
- Split the document on H1/H2 heading lines. Each heading plus the lines up
  to the next H1/H2 is a *section*; content before the first heading is a
  heading-less section. Lines inside fenced code blocks never start a section.
- A section that fits in ``max_chars`` becomes one chunk.
- Larger sections are split into blank-line separated paragraphs which are
  packed greedily. Each new chunk starts with up to ``overlap_chars`` of the
  previous chunk's tail (whole paragraphs first, a paragraph tail as a last
  resort) so context survives the boundary.
- A single paragraph larger than ``max_chars`` is kept whole.

Every chunk carries its section heading and the 1-indexed, inclusive line
range of the source it covers.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field

DEFAULT_MAX_CHARS = 1600  # ~400 tokens
DEFAULT_OVERLAP_CHARS = 320  # ~80 tokens

# A partial paragraph is only carried over when at least this much room is left.
_MIN_PARTIAL_OVERLAP = 50

_HEADING_RE = re.compile(r"^(#{1,2})\s+(.+)$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


def hash_text(text: str) -> str:
    """SHA-256 hex digest of *text* (UTF-8)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_bytes(data: bytes) -> str:
    """SHA-256 hex digest of raw file bytes (change detection)."""
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class ChunkResult:
    """One chunk produced by the chunker, before it is stored."""

    text: str
    heading: str | None
    start_line: int
    end_line: int
    content_hash: str


@dataclass
class _Section:
    heading: str | None
    start_line: int
    lines: list[str] = field(default_factory=list)


@dataclass
class _Paragraph:
    text: str
    start_line: int
    end_line: int


class MarkdownChunker:
    """Split markdown into ordered, overlapping, heading-attributed chunks.

    Args:
        max_chars: Maximum chunk size, in characters.
        overlap_chars: Maximum tail of the previous chunk repeated at the start
            of the next one when a section has to be split.
    """

    def __init__(
        self,
        max_chars: int = DEFAULT_MAX_CHARS,
        overlap_chars: int = DEFAULT_OVERLAP_CHARS,
    ) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        if overlap_chars < 0:
            raise ValueError("overlap_chars must be >= 0")
        if overlap_chars >= max_chars:
            raise ValueError("overlap_chars must be smaller than max_chars")
        self.max_chars = max_chars
        self.overlap_chars = overlap_chars

    def chunk(self, content: str) -> list[ChunkResult]:
        """Chunk *content*. Returns an empty list for blank documents."""
        if not content.strip():
            return []

        lines = [line.rstrip("\r") for line in content.split("\n")]
        chunks: list[ChunkResult] = []
        for section in _split_sections(lines):
            chunks.extend(self._chunk_section(section))
        return chunks

    # ------------------------------------------------------------------
    # Section → chunks
    # ------------------------------------------------------------------

    def _chunk_section(self, section: _Section) -> list[ChunkResult]:
        text = "\n".join(section.lines)
        if len(text) <= self.max_chars:
            stripped = text.strip()
            if not stripped:
                return []
            return [
                _make_chunk(
                    stripped,
                    section.heading,
                    section.start_line,
                    section.start_line + len(section.lines) - 1,
                )
            ]

        chunks: list[ChunkResult] = []
        current: list[_Paragraph] = []
        length = 0

        for para in _split_paragraphs(section.lines, section.start_line):
            if current and length + len(para.text) > self.max_chars:
                chunks.append(self._emit(current, section.heading))
                current = self._overlap(current)
                length = sum(len(p.text) + 2 for p in current)
            current.append(para)
            length += len(para.text) + 2  # paragraph separator

        if current:
            chunks.append(self._emit(current, section.heading))
        return [c for c in chunks if c.text]

    def _emit(self, paragraphs: list[_Paragraph], heading: str | None) -> ChunkResult:
        text = "\n\n".join(p.text for p in paragraphs).strip()
        return _make_chunk(text, heading, paragraphs[0].start_line, paragraphs[-1].end_line)

    def _overlap(self, paragraphs: list[_Paragraph]) -> list[_Paragraph]:
        """Return the tail of *paragraphs* that fits in ``overlap_chars``."""
        carried: list[_Paragraph] = []
        used = 0
        for para in reversed(paragraphs):
            sep = 2 if carried else 0
            if used + sep + len(para.text) <= self.overlap_chars:
                carried.insert(0, para)
                used += sep + len(para.text)
                continue
            remaining = self.overlap_chars - used - sep
            if remaining > _MIN_PARTIAL_OVERLAP:
                offset = len(para.text) - remaining
                start = para.start_line + para.text.count("\n", 0, offset)
                carried.insert(0, _Paragraph(para.text[offset:], start, para.end_line))
            break
        return carried


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _make_chunk(text: str, heading: str | None, start: int, end: int) -> ChunkResult:
    return ChunkResult(
        text=text,
        heading=heading,
        start_line=start,
        end_line=end,
        content_hash=hash_text(text),
    )


def _split_sections(lines: list[str]) -> list[_Section]:
    """Group *lines* into sections starting at H1/H2 headings."""
    sections: list[_Section] = []
    current = _Section(heading=None, start_line=1)
    in_fence = False

    for i, line in enumerate(lines):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        match = None if in_fence else _HEADING_RE.match(line)
        if match:
            if current.lines:
                sections.append(current)
            current = _Section(heading=match.group(2).strip(), start_line=i + 1, lines=[line])
        else:
            current.lines.append(line)

    if current.lines:
        sections.append(current)
    return sections


def _split_paragraphs(lines: list[str], first_line: int) -> list[_Paragraph]:
    """Split *lines* on blank lines, keeping 1-indexed source line numbers."""
    paragraphs: list[_Paragraph] = []
    buf: list[str] = []
    start = first_line

    for offset, line in enumerate(lines):
        line_no = first_line + offset
        if not line.strip():
            if buf:
                paragraphs.append(_Paragraph("\n".join(buf), start, line_no - 1))
                buf = []
            continue
        if not buf:
            start = line_no
        buf.append(line)

    if buf:
        paragraphs.append(_Paragraph("\n".join(buf), start, start + len(buf) - 1))
    return paragraphs
