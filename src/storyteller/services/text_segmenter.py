"""
Sentence Segmenter for the Streaming Story Pipeline.

Turns the arbitrarily chunked text stream of the story model into a title
unit followed by sentence units, as soon as each one is complete.

Architecture:
    LLM fragments → SentenceSegmenter.feed() → title / sentence units

Splitting rules:
    - A buffer starting with "Title: " and holding a line break yields a
      title unit (the prefix is removed).
    - The first '.', '?' or '!' is always a split point, even when that makes
      a very short sentence. Steady speech cadence matters more than perfect
      sentence boundaries.
    - Prose without terminal punctuation is forced out once the buffer holds
      ``max_buffer_chars`` characters, at the last space inside that window.

Usage:
    segmenter = SentenceSegmenter()

    async for fragment in stream:
        for unit in segmenter.feed(fragment):
            ...

    for unit in segmenter.flush():
        ...
"""

from dataclasses import dataclass
from typing import List, Literal

DEFAULT_MAX_BUFFER_CHARS = 200
TITLE_PREFIX = "Title: "
SENTENCE_TERMINATORS = ".?!"

UnitKind = Literal["title", "sentence"]


@dataclass(frozen=True)
class StoryUnit:
    """One segmented piece of narrative ready for display and synthesis."""

    kind: UnitKind
    text: str


def _title_from_line(line: str) -> str:
    return line.removeprefix(TITLE_PREFIX).strip()


class SentenceSegmenter:
    """
    Stateful splitter that promotes buffered text into story units.

    The accumulation buffer only ever holds text that has not been emitted
    yet; every unit is emitted exactly once.

    Attributes:
        max_buffer_chars: Buffer length that forces a split when no
            terminal punctuation has arrived (default: 200)
    """

    def __init__(self, max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS):
        if max_buffer_chars < 1:
            raise ValueError("max_buffer_chars must be positive")
        self.max_buffer_chars = max_buffer_chars
        self._buffer = ""
        self._total_emitted = 0

    def feed(self, fragment: str) -> List[StoryUnit]:
        """
        Append a fragment and return every unit it completes, in order.

        Args:
            fragment: Text fragment from the streaming story response

        Returns:
            Title and sentence units completed by this fragment
        """
        units: List[StoryUnit] = []
        if not fragment:
            return units

        self._buffer += fragment

        if self._buffer.startswith(TITLE_PREFIX) and "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            units.append(self._emit("title", _title_from_line(line)))

        while True:
            split_at = self._find_split(self._buffer)
            if split_at is None:
                break

            piece = self._buffer[:split_at].strip()
            self._buffer = self._buffer[split_at:]
            units.extend(self._promote(piece))

        return units

    def flush(self) -> List[StoryUnit]:
        """
        Emit whatever is left in the buffer once the stream has ended.

        Returns:
            Zero, one or two units (a stray title line may precede the
            final sentence)
        """
        piece = self._buffer.strip()
        self._buffer = ""
        return self._promote(piece)

    def reset(self) -> None:
        """Reset segmenter state for reuse."""
        self._buffer = ""
        self._total_emitted = 0

    @property
    def buffer_size(self) -> int:
        """Current buffer size in characters."""
        return len(self._buffer)

    @property
    def total_emitted_chars(self) -> int:
        """Total characters emitted across all units."""
        return self._total_emitted

    def _find_split(self, text: str) -> int | None:
        """Return the end index of the next unit, or None to wait for input."""
        for index, char in enumerate(text):
            if char in SENTENCE_TERMINATORS:
                return index + 1

        if len(text) < self.max_buffer_chars:
            return None

        space_idx = text.rfind(" ", 0, self.max_buffer_chars)
        if space_idx > 0:
            return space_idx
        return self.max_buffer_chars

    def _promote(self, piece: str) -> List[StoryUnit]:
        if not piece:
            return []

        # The title's line break can arrive after a '.' inside the title
        if piece.startswith(TITLE_PREFIX):
            line, newline, rest = piece.partition("\n")
            units = [self._emit("title", _title_from_line(line))]
            rest = rest.strip()
            if newline and rest:
                units.append(self._emit("sentence", rest))
            return units

        return [self._emit("sentence", piece)]

    def _emit(self, kind: UnitKind, text: str) -> StoryUnit:
        self._total_emitted += len(text)
        return StoryUnit(kind=kind, text=text)


__all__ = [
    "DEFAULT_MAX_BUFFER_CHARS",
    "SentenceSegmenter",
    "StoryUnit",
    "TITLE_PREFIX",
]
