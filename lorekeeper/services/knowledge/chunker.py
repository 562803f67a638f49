"""Sliding-window text chunking with whitespace-aware cut points.

Splits a document's text into :class:`~lorekeeper.models.knowledge.TextChunk`
windows sized for embedding models (~500 tokens each, 50-token overlap).

Token budgets are converted to character budgets with a fixed
characters-per-token estimate, so the output depends only on the text and
the configuration.  Identical input always yields an identical chunk
sequence, which makes re-ingestion reproducible.

Each window:

1. spans at most ``chunk_size * chars_per_token`` characters;
2. ends just after the last whitespace inside a short lookback region before
   the budget edge, so words are not split; with no whitespace there it is
   cut hard at the edge;
3. starts ``overlap * chars_per_token`` characters before the previous
   window's end, so a sentence straddling a boundary is whole in at least
   one window.

The last window always ends at the end of the text.  A tail shorter than
:data:`MIN_TAIL_CHARS` is folded into the preceding window instead of
becoming a fragment too small to store.

Guarantees: positions are ``0, 1, 2, ...``; the ``[start_index, end_index)``
ranges cover the whole text with no gaps; every window advances by at least
one character; with texts of at least :data:`MIN_TAIL_CHARS` characters no
window is shorter than that.
"""

from __future__ import annotations

import math

import structlog

from lorekeeper.models.knowledge import MIN_FRAGMENT_LENGTH, TextChunk
from lorekeeper.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_CHUNK_SIZE = 500
DEFAULT_OVERLAP = 50
DEFAULT_CHARS_PER_TOKEN = 4

MIN_TAIL_CHARS = MIN_FRAGMENT_LENGTH

# Fraction of the character budget searched backwards for whitespace.
_LOOKBACK_DIVISOR = 10


class TextChunker:
    """Splits text into overlapping, position-numbered windows.

    Parameters
    ----------
    chunk_size:
        Target maximum tokens per chunk (default 500).
    overlap:
        Tokens shared by consecutive chunks (default 50).  Must be smaller
        than *chunk_size*.
    chars_per_token:
        Characters-per-token estimate used for both budgets and the
        per-chunk ``tokens`` figure (default 4).
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
    ) -> None:
        if chunk_size <= 0:
            raise ConfigurationError(message=f"chunk_size must be positive, got {chunk_size}")
        if chars_per_token <= 0:
            raise ConfigurationError(
                message=f"chars_per_token must be positive, got {chars_per_token}"
            )
        if overlap < 0 or overlap >= chunk_size:
            raise ConfigurationError(
                message=f"overlap must be in [0, chunk_size); got {overlap} with chunk_size {chunk_size}"
            )
        if chunk_size * chars_per_token < MIN_FRAGMENT_LENGTH:
            # Smaller windows could never be stored as fragments.
            raise ConfigurationError(
                message=(
                    f"chunk_size * chars_per_token must be at least {MIN_FRAGMENT_LENGTH} "
                    f"characters; got {chunk_size} * {chars_per_token}"
                )
            )
        self._chunk_size = chunk_size
        self._overlap = overlap
        self._chars_per_token = chars_per_token
        self._char_budget = chunk_size * chars_per_token
        self._overlap_chars = overlap * chars_per_token
        self._lookback = max(1, self._char_budget // _LOOKBACK_DIVISOR)

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    @property
    def chars_per_token(self) -> int:
        return self._chars_per_token

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into ordered :class:`TextChunk` windows.

        Empty or whitespace-only input returns an empty list.
        """
        if not text or not text.strip():
            return []

        chunks: list[TextChunk] = []
        text_length = len(text)
        start = 0

        while True:
            end = self._window_end(text, start)
            content = text[start:end]
            chunks.append(
                TextChunk(
                    content=content,
                    position=len(chunks),
                    tokens=self.estimate_tokens(content),
                    start_index=start,
                    end_index=end,
                )
            )
            if end >= text_length:
                break
            start = max(end - self._overlap_chars, start + 1)

        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            text_length=text_length,
            char_budget=self._char_budget,
            overlap_chars=self._overlap_chars,
        )
        return chunks

    def estimate_tokens(self, text: str) -> int:
        """Return ``ceil(len(text) / chars_per_token)``."""
        return math.ceil(len(text) / self._chars_per_token)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _window_end(self, text: str, start: int) -> int:
        """Return the exclusive end offset of the window beginning at *start*."""
        text_length = len(text)
        edge = start + self._char_budget
        if edge >= text_length:
            return text_length

        end = self._find_cut(text, start, edge)
        if text_length - end < MIN_TAIL_CHARS:
            return text_length
        return end

    def _find_cut(self, text: str, start: int, edge: int) -> int:
        """Cut just after the last whitespace in ``[edge - lookback, edge]``.

        ``text[edge]`` is the first character past the budget; whitespace
        there means the window can end exactly at the edge.
        """
        floor = max(start + 1, edge - self._lookback)
        for i in range(edge, floor - 1, -1):
            if text[i].isspace():
                return min(i + 1, edge)
        return edge
