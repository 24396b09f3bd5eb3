"""Caption batching and slideshow scheduling from word timestamps.

WHY: The renderer paints captions and slides but must not re-derive any
timing: it walks a precomputed timeline. Captions are shown in batches
of a few words with the spoken word highlighted, and the top half of
the frame cycles through the supplied images in fixed slots. Both
schedules must be exact, deterministic, and safe for any transcript,
including empty ones and ones whose word timestamps overlap.

HOW: build_caption_timeline() splits the words into consecutive batches
of ``batch_size``, computes each batch's lead wait from the previous
batch's last word, per-word highlight windows relative to the batch's
first word, and the final hold. build_image_schedule() lays out
fixed-length slots, cycling image indexes, and truncates the last slot
to the exact remainder. Both functions are pure.

RULES:
- Batch count is ceil(N / batch_size) and batches preserve word order
- Every wait, pad and gap is clamped to >= 0 (overlapping words are
  tolerated, never assumed away)
- Only the final batch gets a trail pad (default 1.0 s)
- An empty transcript yields one placeholder batch spanning
  min(total_duration, fallback_s), or fallback_s when the duration is unknown
- Image slots always start from image 0; the final slot never overruns
- All computed values are rounded to microseconds
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

from reel_composer.core.ir import (
    CaptionBatch,
    CaptionTimeline,
    HighlightWindow,
    ImageSchedule,
    ImageSlot,
    Word,
)

DEFAULT_BATCH_SIZE = 4
DEFAULT_FALLBACK_S = 5.0
DEFAULT_FINAL_HOLD_S = 1.0
DEFAULT_SLOT_LENGTH_S = 3.0

# Remainders below this are float noise, not a real slot.
_EPSILON = 1e-9


def _round_s(value: float) -> float:
    return round(value, 6)


def _non_negative(value: float) -> float:
    return _round_s(max(0.0, value))


def _check_ordered(words: Sequence[Word]) -> None:
    for prev, cur in zip(words, words[1:]):
        if cur.start < prev.start:
            raise ValueError(
                "Words must be ordered by start time: "
                f"'{cur.text}' at {cur.start} follows '{prev.text}' at {prev.start}"
            )


def _make_batches(words: Sequence[Word], batch_size: int) -> List[List[Word]]:
    """Divide words into consecutive groups of up to batch_size words.

    The final group gets the remainder (1 to batch_size words).
    """
    return [
        list(words[i:i + batch_size])
        for i in range(0, len(words), batch_size)
    ]


def _highlight_windows(batch: Sequence[Word]) -> List[HighlightWindow]:
    """Compute per-word emphasis windows relative to the batch's first word."""
    batch_start = batch[0].start
    windows: List[HighlightWindow] = []
    for i, word in enumerate(batch):
        start_offset = _non_negative(word.start - batch_start)
        end_offset = max(start_offset, _non_negative(word.end - batch_start))
        if i + 1 < len(batch):
            gap_after = _non_negative(batch[i + 1].start - word.end)
        else:
            gap_after = 0.0
        windows.append(HighlightWindow(
            word_index=i,
            start_offset=start_offset,
            end_offset=end_offset,
            gap_after=gap_after,
        ))
    return windows


def _placeholder_timeline(
    batch_size: int,
    total_duration: Optional[float],
    fallback_s: float,
) -> CaptionTimeline:
    if total_duration is None:
        span = fallback_s
    else:
        span = min(total_duration, fallback_s)
    placeholder = CaptionBatch(
        index=0,
        words=[],
        lead_wait=0.0,
        trail_pad=0.0,
        highlights=[],
        start_s=0.0,
        span_s=_non_negative(span),
        is_placeholder=True,
    )
    return CaptionTimeline(
        batches=[placeholder],
        batch_size=batch_size,
        total_duration=total_duration,
    )


def build_caption_timeline(
    words: Sequence[Word],
    batch_size: int = DEFAULT_BATCH_SIZE,
    total_duration: Optional[float] = None,
    fallback_s: float = DEFAULT_FALLBACK_S,
    final_hold_s: float = DEFAULT_FINAL_HOLD_S,
) -> CaptionTimeline:
    """Group words into caption batches with lead waits and highlight windows.

    WHY: Captions appear a few words at a time, each batch becoming
    visible when its first word is spoken and the current word
    highlighted while it is spoken. The renderer just waits and shows.

    HOW: For batch k the lead wait is the first word's start (k = 0) or
    the silence since batch k-1's last word ended, clamped to zero. The
    batch is placed at ``cursor + lead_wait`` where the cursor is the end
    of the previous batch's spoken span, so overlapping timestamps push
    batches later instead of making them overlap.

    Args:
        words: Transcript words ordered by non-decreasing start.
        batch_size: Maximum words shown simultaneously (must be > 0).
        total_duration: Clip duration in seconds, if known.
        fallback_s: Placeholder length when there are no words.
        final_hold_s: Trail pad added to the final batch.

    Returns:
        CaptionTimeline with ceil(N / batch_size) batches, or a single
        placeholder batch for an empty transcript.

    Raises:
        ValueError: batch_size is not positive, total_duration is
            negative, or words are not ordered by start time.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    if total_duration is not None and total_duration < 0:
        raise ValueError(f"total_duration must be >= 0, got {total_duration}")

    if not words:
        return _placeholder_timeline(batch_size, total_duration, fallback_s)

    _check_ordered(words)

    groups = _make_batches(words, batch_size)
    batches: List[CaptionBatch] = []
    cursor = 0.0
    previous_end = 0.0

    for k, group in enumerate(groups):
        first, last = group[0], group[-1]
        lead_wait = _non_negative(first.start - previous_end)
        span = _non_negative(last.end - first.start)
        trail_pad = _round_s(final_hold_s) if k == len(groups) - 1 else 0.0
        start_s = _round_s(cursor + lead_wait)

        batches.append(CaptionBatch(
            index=k,
            words=list(group),
            lead_wait=lead_wait,
            trail_pad=trail_pad,
            highlights=_highlight_windows(group),
            start_s=start_s,
            span_s=span,
        ))

        cursor = _round_s(start_s + span)
        previous_end = last.end

    return CaptionTimeline(
        batches=batches,
        batch_size=batch_size,
        total_duration=total_duration,
    )


def build_image_schedule(
    image_count: int,
    total_duration: float,
    slot_length: float = DEFAULT_SLOT_LENGTH_S,
) -> ImageSchedule:
    """Lay out fixed-length slideshow slots covering total_duration exactly.

    WHY: The top half of the frame shows each image for a fixed time,
    looping back to the first image until the clip ends. The last slot
    must stop exactly at the clip end rather than overrun it.

    HOW: Slot i shows image ``i mod image_count`` at offset
    ``i * slot_length`` (multiplied, not accumulated, so no float drift)
    for ``min(slot_length, total_duration - offset)`` seconds. The
    function keeps no state, so calling it again with a shorter duration
    restarts from image 0.

    Args:
        image_count: Number of resolved images.
        total_duration: Seconds to cover.
        slot_length: Seconds per image (must be > 0).

    Returns:
        ImageSchedule; empty when there are no images or nothing to cover.

    Raises:
        ValueError: On negative counts/durations or non-positive slot_length.
    """
    if image_count < 0:
        raise ValueError(f"image_count must be >= 0, got {image_count}")
    if total_duration < 0:
        raise ValueError(f"total_duration must be >= 0, got {total_duration}")
    if slot_length <= 0:
        raise ValueError(f"slot_length must be positive, got {slot_length}")

    if image_count == 0 or total_duration <= 0:
        return ImageSchedule(
            slots=[],
            image_count=image_count,
            total_duration=total_duration,
            slot_length=slot_length,
        )

    full_slots = int(math.floor(total_duration / slot_length + _EPSILON))
    remainder = total_duration - full_slots * slot_length
    slot_count = full_slots + (1 if remainder > _EPSILON else 0)

    slots: List[ImageSlot] = []
    for i in range(slot_count):
        offset = i * slot_length
        duration = min(slot_length, total_duration - offset)
        slots.append(ImageSlot(
            image_index=i % image_count,
            duration_s=_non_negative(duration),
            offset_s=_round_s(offset),
        ))

    return ImageSchedule(
        slots=slots,
        image_count=image_count,
        total_duration=total_duration,
        slot_length=slot_length,
    )
