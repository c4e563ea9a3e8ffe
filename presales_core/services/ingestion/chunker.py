"""Text chunking with bounded windows and paragraph boundary preservation.

Splits extracted document text into :class:`~presales_core.models.document.Chunk`
objects of at most ``max_chars`` characters, numbered 0, 1, 2, ... in
document order.

1. **Paragraph-preserving** -- boundaries fall on paragraph breaks (double
   newlines) wherever possible.
2. **Overlapping windows** -- each chunk after the first starts with up to
   ``overlap`` characters of trailing paragraphs/sentences from the
   previous one, so a passage straddling a boundary is whole in at least
   one chunk.
3. **Hard bound** -- a paragraph longer than ``max_chars`` is split at
   sentence boundaries (abbreviation-aware), and a sentence longer than
   ``max_chars`` is split at the last whitespace inside the window.  No
   chunk ever exceeds ``max_chars``, overlap included.

The output depends only on the input text and the two settings, so
re-chunking a version reproduces the same ordinals and boundaries.
"""

from __future__ import annotations

import re
from typing import NamedTuple

import structlog

from presales_core.models.document import Chunk
from presales_core.utils.errors import ChunkingFailure

logger = structlog.get_logger(logger_name=__name__)

_ABBREVIATIONS = frozenset(
    {
        "Dr", "Mr", "Mrs", "Ms", "Prof", "Jr", "Sr", "St", "No", "vs", "etc",
        "approx", "dept", "est", "govt", "inc", "Inc", "ltd", "Ltd", "co", "Co",
        "e.g", "i.e", "Corp", "Fig",
    }
)

_PARAGRAPH_SEP = "\n\n"
_SENTENCE_SEP = " "


class _Piece(NamedTuple):
    text: str
    # Separator used when this piece follows another one in a chunk.
    sep: str


class TextChunker:
    """Splits text into bounded, overlapping chunks.

    Parameters
    ----------
    max_chars:
        Hard upper bound on chunk length in characters (default 1000).
    overlap:
        Target characters of trailing context carried into the next chunk
        (default 100).  Must be smaller than *max_chars*.
    """

    def __init__(self, max_chars: int = 1000, overlap: int = 100) -> None:
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        if not 0 <= overlap < max_chars:
            raise ValueError("overlap must be >= 0 and smaller than max_chars")
        self._max_chars = max_chars
        self._overlap = overlap

    @property
    def max_chars(self) -> int:
        return self._max_chars

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str, version_id: str) -> list[Chunk]:
        """Split *text* into ordered :class:`Chunk` objects for *version_id*.

        Raises
        ------
        ChunkingFailure
            If *text* is empty or whitespace only.
        """
        if not text or not text.strip():
            raise ChunkingFailure(message=f"No text to chunk for version {version_id}")

        pieces = self._split_pieces(text)
        windows = self._accumulate(pieces)
        chunks = [
            Chunk(version_id=version_id, ordinal=ordinal, text=window)
            for ordinal, window in enumerate(windows)
        ]

        logger.debug(
            "chunking_complete",
            version_id=version_id,
            num_chunks=len(chunks),
            text_length=len(text),
            max_chars=self._max_chars,
        )
        return chunks

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    def _split_pieces(self, text: str) -> list[_Piece]:
        """Break *text* into pieces no longer than ``max_chars``."""
        pieces: list[_Piece] = []
        for paragraph in self._split_paragraphs(text):
            if len(paragraph) <= self._max_chars:
                pieces.append(_Piece(paragraph, _PARAGRAPH_SEP))
                continue
            first = True
            for sentence in self._split_sentences(paragraph):
                for part in self._hard_split(sentence):
                    if first:
                        sep = _PARAGRAPH_SEP
                        first = False
                    else:
                        sep = _SENTENCE_SEP
                    pieces.append(_Piece(part, sep))
        return pieces

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        """Split *text* on blank lines, discarding empty paragraphs."""
        parts = re.split(r"\n\s*\n", text)
        return [p.strip() for p in parts if p.strip()]

    @staticmethod
    def _split_sentences(text: str) -> list[str]:
        """Split at ``.``/``!``/``?`` + whitespace, ignoring known abbreviations.

        Periods after abbreviations are masked with ``\\x00`` (same length,
        so indices stay aligned) before looking for boundaries.
        """
        masked = text
        for abbr in _ABBREVIATIONS:
            masked = re.sub(rf"\b{re.escape(abbr)}\.", f"{abbr}\x00", masked)

        sentences: list[str] = []
        last = 0
        for match in re.finditer(r"[.!?](?:\s|$)", masked):
            end = match.end()
            sentence = text[last:end].strip()
            if sentence:
                sentences.append(sentence)
            last = end

        remainder = text[last:].strip()
        if remainder:
            sentences.append(remainder)
        return sentences or [text]

    def _hard_split(self, sentence: str) -> list[str]:
        """Cut an over-long sentence into windows, preferring whitespace breaks."""
        if len(sentence) <= self._max_chars:
            return [sentence]
        parts: list[str] = []
        rest = sentence
        while len(rest) > self._max_chars:
            cut = rest.rfind(" ", 0, self._max_chars + 1)
            if cut <= 0:
                cut = self._max_chars
            part = rest[:cut].rstrip()
            if part:
                parts.append(part)
            rest = rest[cut:].lstrip()
        if rest:
            parts.append(rest)
        return parts

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    @staticmethod
    def _joined_length(pieces: list[_Piece]) -> int:
        if not pieces:
            return 0
        return sum(len(p.text) for p in pieces) + sum(len(p.sep) for p in pieces[1:])

    @staticmethod
    def _join(pieces: list[_Piece]) -> str:
        out = pieces[0].text
        for piece in pieces[1:]:
            out += piece.sep + piece.text
        return out

    def _accumulate(self, pieces: list[_Piece]) -> list[str]:
        """Greedily pack pieces into windows of at most ``max_chars``."""
        windows: list[str] = []
        current: list[_Piece] = []
        # Number of leading pieces in `current` that were carried over.
        carried = 0

        for piece in pieces:
            candidate_len = self._joined_length(current) + len(piece.sep) + len(piece.text)
            if current and candidate_len > self._max_chars:
                if len(current) > carried:
                    windows.append(self._join(current))
                    current = self._overlap_tail(current)
                else:
                    current = []
                # Drop carried context until the new piece fits.
                while current and (
                    self._joined_length(current) + len(piece.sep) + len(piece.text)
                    > self._max_chars
                ):
                    current.pop(0)
                carried = len(current)
            current.append(piece)

        if len(current) > carried:
            windows.append(self._join(current))
        return windows

    def _overlap_tail(self, pieces: list[_Piece]) -> list[_Piece]:
        """Trailing pieces of *pieces* whose joined length stays within ``overlap``."""
        if self._overlap == 0:
            return []
        tail: list[_Piece] = []
        for piece in reversed(pieces):
            if self._joined_length([piece, *tail]) > self._overlap:
                break
            tail.insert(0, piece)
        return tail
