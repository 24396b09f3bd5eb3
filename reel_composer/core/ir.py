"""Timeline dataclasses exchanged between the scheduler and the renderer.

WHY: The transcription provider returns a flat list of timed words and
the renderer needs two very different views of the same clip: caption
batches with per-word highlight windows, and a slideshow schedule. A
small set of typed dataclasses is the stable contract between the pure
scheduler and everything that consumes its output.

HOW: Word is the input unit. The scheduler produces:
  CaptionBatch / HighlightWindow — grouped words and intra-batch emphasis
  CaptionTimeline                — all batches plus the inputs used
  ImageSlot / ImageSchedule      — cyclic slideshow appearances
Every output type has a to_dict() used for the render manifest.

RULES:
- All times are float seconds
- Word.start >= 0 and Word.end >= Word.start (validated on construction)
- Output objects are created by one scheduler call and never mutated
- to_dict() output is plain JSON-serializable data
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Word:
    """A single transcribed token with timing in seconds.

    RULES:
    - text: the token as recognized
    - punctuated_word: display form with punctuation/casing, falls back to text
    - start / end: seconds from the start of the audio, end >= start >= 0
    - confidence: 0.0–1.0 as reported by the provider
    """

    text: str
    start: float
    end: float
    confidence: float = 1.0
    punctuated_word: Optional[str] = None

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"Word '{self.text}' starts before 0: {self.start}")
        if self.end < self.start:
            raise ValueError(
                f"Word '{self.text}' ends before it starts: {self.start} > {self.end}"
            )

    @property
    def display_text(self) -> str:
        return self.punctuated_word or self.text

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Word:
        """Parse a provider word dict (Deepgram shape) into a Word."""
        return cls(
            text=data["word"] if "word" in data else data["text"],
            start=float(data["start"]),
            end=float(data["end"]),
            confidence=float(data.get("confidence", 1.0)),
            punctuated_word=data.get("punctuated_word"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.display_text,
            "start": self.start,
            "end": self.end,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class HighlightWindow:
    """Emphasis range of one word, relative to its batch's display start.

    RULES:
    - word_index: position of the word inside its batch (0-based)
    - start_offset <= end_offset, both >= 0
    - gap_after: clamped non-negative wait before the next word in the
      batch is highlighted; 0 for the last word
    """

    word_index: int
    start_offset: float
    end_offset: float
    gap_after: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wordIndex": self.word_index,
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
            "gapAfter": self.gap_after,
        }


@dataclass(frozen=True)
class CaptionBatch:
    """Up to B consecutive words shown together as one caption.

    RULES:
    - lead_wait: silence before the batch becomes visible (>= 0)
    - trail_pad: extra hold after the last word, non-zero only for the
      final batch
    - start_s / span_s / end_s: absolute placement on the output timeline;
      end_s = start_s + span_s + trail_pad
    - is_placeholder: True only for the empty-transcript fallback batch,
      which carries no words and no highlights
    """

    index: int
    words: List[Word]
    lead_wait: float
    trail_pad: float
    highlights: List[HighlightWindow]
    start_s: float
    span_s: float
    is_placeholder: bool = False

    @property
    def end_s(self) -> float:
        return round(self.start_s + self.span_s + self.trail_pad, 6)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "words": [w.to_dict() for w in self.words],
            "leadWait": self.lead_wait,
            "trailPad": self.trail_pad,
            "highlights": [h.to_dict() for h in self.highlights],
            "start": self.start_s,
            "span": self.span_s,
            "end": self.end_s,
            "placeholder": self.is_placeholder,
        }


@dataclass(frozen=True)
class CaptionTimeline:
    """The complete caption schedule for one clip."""

    batches: List[CaptionBatch]
    batch_size: int
    total_duration: Optional[float] = None

    @property
    def is_placeholder(self) -> bool:
        return len(self.batches) == 1 and self.batches[0].is_placeholder

    @property
    def word_count(self) -> int:
        return sum(len(b.words) for b in self.batches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchSize": self.batch_size,
            "totalDuration": self.total_duration,
            "placeholder": self.is_placeholder,
            "batches": [b.to_dict() for b in self.batches],
        }


@dataclass(frozen=True)
class ImageSlot:
    """One scheduled appearance of an image in the slideshow.

    RULES:
    - image_index: index into the resolved image list (cyclic)
    - duration_s: display time, equal to the slot length except for a
      truncated final slot
    - offset_s: cumulative start offset from the schedule start
    """

    image_index: int
    duration_s: float
    offset_s: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imageIndex": self.image_index,
            "duration": self.duration_s,
            "offset": self.offset_s,
        }


@dataclass(frozen=True)
class ImageSchedule:
    """Ordered slideshow slots covering exactly the target duration."""

    slots: List[ImageSlot] = field(default_factory=list)
    image_count: int = 0
    total_duration: float = 0.0
    slot_length: float = 3.0

    @property
    def covered_duration(self) -> float:
        return round(sum(s.duration_s for s in self.slots), 6)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imageCount": self.image_count,
            "totalDuration": self.total_duration,
            "slotLength": self.slot_length,
            "slots": [s.to_dict() for s in self.slots],
        }
