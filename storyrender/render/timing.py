"""Segment timing resolution.

The narration track is the clock: when a segment has narration, its measured
length is the segment duration and everything visual is stretched to fit.
Clips joined by crossfades overlap, so N clips with N-1 transitions of length
X need ``D + (N-1)X`` seconds of raw footage to cover ``D`` seconds. The raw
runtime is split evenly across clips.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Sequence

from storyrender.exceptions import InvalidTimelineError
from storyrender.schemas.timeline import Segment, WordTiming

logger = logging.getLogger(__name__)

_TRAILING_PUNCTUATION = re.compile(r"[.,;!?]+$")


@dataclass
class ResolvedSegment:
    """Authoritative timing for one segment."""

    duration: float
    clip_durations: list[float]
    crossfade: float
    word_timings: list[WordTiming] = field(default_factory=list)
    duration_source: str = "declared"  # narration | declared

    @property
    def composed_duration(self) -> float:
        """Length of the crossfaded clip chain."""
        overlap = self.crossfade * max(0, len(self.clip_durations) - 1)
        return sum(self.clip_durations) - overlap


def clip_durations(duration: float, transitions: Sequence[float]) -> list[float]:
    """Split ``duration`` across ``len(transitions) + 1`` clips.

    Each transition consumes its own length of overlap, so every clip gets
    ``(D + sum(X_i)) / N`` seconds.
    """
    if duration <= 0:
        raise ValueError(f"Segment duration must be positive, got {duration}")
    num_clips = len(transitions) + 1
    raw_total = duration + sum(transitions)
    return [raw_total / num_clips] * num_clips


def per_clip_duration(duration: float, num_clips: int, crossfade: float) -> float:
    """Uniform-crossfade form: ``L = (D + (N-1)X) / N``."""
    if num_clips < 1:
        raise ValueError("A segment needs at least one clip")
    return clip_durations(duration, [crossfade] * (num_clips - 1))[0]


def effective_crossfade(duration: float, num_clips: int, crossfade: float) -> float:
    """Clamp the crossfade so each clip outlasts its transitions.

    With the even split, ``L > X`` holds exactly when ``D > X``; capping X
    at ``D / 2`` keeps very short segments renderable.
    """
    if num_clips < 2:
        return 0.0
    return max(0.0, min(crossfade, duration / 2))


def rescale_word_timings(
    timings: Sequence[WordTiming],
    actual: float,
    estimated: float | None = None,
    tolerance: float = 0.05,
) -> list[WordTiming]:
    """Stretch word timings estimated for ``estimated`` seconds onto ``actual``.

    Scaling only happens when the two lengths differ by more than
    ``tolerance``; the result is always non-decreasing and the last word
    always ends at ``actual``.
    """
    if not timings:
        return []
    if actual <= 0:
        raise ValueError(f"Actual duration must be positive, got {actual}")

    if estimated is None:
        estimated = timings[-1].end

    ratio = 1.0
    if estimated > 0 and abs(actual - estimated) > tolerance:
        ratio = actual / estimated

    rescaled: list[WordTiming] = []
    prev_start = 0.0
    for timing in timings:
        start = min(max(timing.start * ratio, prev_start), actual)
        end = min(max(timing.end * ratio, start), actual)
        rescaled.append(WordTiming(word=timing.word, start=start, end=end))
        prev_start = start

    rescaled[-1] = rescaled[-1].model_copy(update={"end": actual})
    return rescaled


def _word_weight(word: str) -> int:
    weight = len(word)
    # Punctuation stands in for the pause a speaker makes
    if _TRAILING_PUNCTUATION.search(word):
        if re.search(r"[.,;]", word):
            weight += 3
        if re.search(r"[!?]", word) or word.endswith("."):
            weight += 6
    return weight


def estimate_word_timings(text: str, duration: float) -> list[WordTiming]:
    """Spread the words of ``text`` over ``duration`` by length and punctuation."""
    words = text.split()
    if not words or duration <= 0:
        return []

    weights = [_word_weight(w) for w in words]
    total_weight = sum(weights)

    timings: list[WordTiming] = []
    current = 0.0
    for word, weight in zip(words, weights):
        length = weight / total_weight * duration
        timings.append(WordTiming(word=word, start=current, end=current + length))
        current += length

    # Avoid float drift on the last word
    timings[-1] = timings[-1].model_copy(update={"end": duration})
    return timings


def resolve_segment(
    segment: Segment,
    measured_duration: float | None,
    default_crossfade: float = 0.5,
    default_duration: float = 3.0,
    tolerance: float = 0.05,
    index: int | None = None,
) -> ResolvedSegment:
    """Derive the authoritative duration and clip lengths of a segment.

    ``measured_duration`` is the probed narration length, or ``None`` when
    there is no narration or probing failed.
    """
    if measured_duration is not None and measured_duration > 0:
        duration = measured_duration
        source = "narration"
    else:
        duration = default_duration if segment.duration is None else segment.duration
        source = "declared"

    if duration <= 0:
        raise InvalidTimelineError(
            f"Segment {index} has no usable duration ({duration})", segment_index=index
        )

    num_clips = len(segment.clips)
    requested = default_crossfade if segment.transition_duration is None else segment.transition_duration
    crossfade = effective_crossfade(duration, num_clips, requested)
    if num_clips > 1 and crossfade < requested:
        logger.info(
            f"[TIMING] Segment {index}: crossfade {requested}s clamped to {crossfade}s "
            f"for {duration:.3f}s segment"
        )

    durations = clip_durations(duration, [crossfade] * (num_clips - 1))
    timings = rescale_word_timings(segment.word_timings, duration, tolerance=tolerance)

    logger.info(
        f"[TIMING] Segment {index}: duration={duration:.3f}s ({source}), "
        f"clips={num_clips}, per_clip={durations[0]:.3f}s, crossfade={crossfade}s"
    )
    return ResolvedSegment(
        duration=duration,
        clip_durations=durations,
        crossfade=crossfade,
        word_timings=timings,
        duration_source=source,
    )
