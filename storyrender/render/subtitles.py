"""Caption cue compilation and ASS subtitle output.

Cue layout uses a character budget instead of real text shaping: an average
glyph is assumed to be 0.6 of the font size wide, so a line of the safe area
holds ``safe_area_width / (font_size * 0.6)`` characters. The estimate is
cheap and deterministic, which is what a burned-in caption needs.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from storyrender.schemas.timeline import CaptionStyle, WordTiming

logger = logging.getLogger(__name__)

AVG_CHAR_WIDTH_RATIO = 0.6

# ASS numpad alignment: 2 = bottom center, 5 = middle center, 8 = top center
_ALIGNMENT = {"bottom": 2, "center": 5, "top": 8}

# Font sizes in the editor are authored against a 720p preview
_REFERENCE_HEIGHT = 720


@dataclass
class CaptionCue:
    """A group of words shown together."""

    start: float
    end: float
    words: list[WordTiming] = field(default_factory=list)
    # Only set for untimed captions, where there are no words to join
    raw_text: str | None = None

    @property
    def text(self) -> str:
        if self.raw_text is not None:
            return self.raw_text
        return " ".join(w.word for w in self.words)

    @property
    def char_count(self) -> int:
        return sum(len(w.word) + 1 for w in self.words)

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "text": self.text}


def char_budget(style: CaptionStyle) -> float:
    """Characters that fit in one cue for this style."""
    chars_per_line = style.safe_area_width / (style.font_size * AVG_CHAR_WIDTH_RATIO)
    return chars_per_line * style.max_lines


def pack_cues(timings: Sequence[WordTiming], budget: float) -> list[CaptionCue]:
    """Greedily pack words into cues of at most ``budget`` characters.

    The word that would push a cue past the budget starts the next cue. A
    single word longer than the budget gets a cue of its own.
    """
    cues: list[CaptionCue] = []
    current: list[WordTiming] = []
    current_len = 0

    def close() -> None:
        cues.append(CaptionCue(start=current[0].start, end=current[-1].end, words=list(current)))

    for timing in timings:
        if current and current_len + len(timing.word) > budget:
            close()
            current = []
            current_len = 0
        current.append(timing)
        current_len += len(timing.word) + 1  # trailing space

    if current:
        close()
    return cues


def merge_cues(cues: Sequence[CaptionCue], threshold: float = 1.0) -> list[CaptionCue]:
    """Close short gaps between neighbouring cues to avoid flicker.

    A cue whose successor starts less than ``threshold`` seconds after it
    ends is held until that start. Running this twice changes nothing.
    """
    merged = [CaptionCue(start=c.start, end=c.end, words=list(c.words), raw_text=c.raw_text) for c in cues]
    for current, following in zip(merged, merged[1:]):
        if following.start - current.end < threshold:
            current.end = following.start
    return merged


def compile_captions(
    text: str,
    timings: Sequence[WordTiming],
    duration: float,
    style: CaptionStyle,
    merge_threshold: float = 1.0,
) -> list[CaptionCue]:
    """Turn narration text and word timings into ordered caption cues."""
    if not timings:
        if not text.strip():
            return []
        return [CaptionCue(start=0.0, end=duration, raw_text=text.strip())]

    cues = merge_cues(pack_cues(timings, char_budget(style)), merge_threshold)

    # Keep the last cue up through the last word
    last = cues[-1]
    last.end = last.words[-1].end
    return cues


# =============================================================================
# ASS output
# =============================================================================


def format_ass_time(seconds: float) -> str:
    """Format seconds as ``H:MM:SS.cc``."""
    centis = max(0, int(round(seconds * 100)))
    hours, rem = divmod(centis, 360000)
    minutes, rem = divmod(rem, 6000)
    secs, cs = divmod(rem, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{cs:02d}"


def ass_color(hex_color: str) -> str:
    """Convert ``#RRGGBB`` to ASS ``&H00BBGGRR``; falls back to white."""
    value = hex_color.lstrip("#")
    if len(value) == 3:
        value = "".join(ch * 2 for ch in value)
    if len(value) != 6 or any(ch not in "0123456789abcdefABCDEF" for ch in value):
        logger.warning("Invalid caption color '%s', using white", hex_color)
        value = "FFFFFF"
    rr, gg, bb = value[0:2], value[2:4], value[4:6]
    return f"&H00{bb}{gg}{rr}".upper()


def _escape_ass_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("{", "\\{").replace("}", "\\}").replace("\n", "\\N")


def build_ass_script(cues: Sequence[CaptionCue], style: CaptionStyle, width: int, height: int) -> str:
    """Render cues as an Advanced SubStation Alpha script."""
    font_size = round(style.font_size * height / _REFERENCE_HEIGHT)
    margin_v = round(height * 0.08)
    margin_h = max(10, round(width * 0.05))
    alignment = _ALIGNMENT.get(style.position, 2)

    lines = [
        "[Script Info]",
        "ScriptType: v4.00+",
        f"PlayResX: {width}",
        f"PlayResY: {height}",
        "WrapStyle: 0",
        "",
        "[V4+ Styles]",
        "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, "
        "Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, "
        "Shadow, Alignment, MarginL, MarginR, MarginV, Encoding",
        f"Style: Default,{style.font_family},{font_size},{ass_color(style.color)},&H000000FF,"
        f"&H00000000,&H80000000,-1,0,0,0,100,100,0,0,1,2,1,{alignment},"
        f"{margin_h},{margin_h},{margin_v},1",
        "",
        "[Events]",
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text",
    ]
    for cue in cues:
        lines.append(
            f"Dialogue: 0,{format_ass_time(cue.start)},{format_ass_time(cue.end)},"
            f"Default,,0,0,0,,{_escape_ass_text(cue.text)}"
        )
    return "\n".join(lines) + "\n"


def write_ass_file(
    path: str | Path,
    cues: Sequence[CaptionCue],
    style: CaptionStyle,
    width: int,
    height: int,
) -> Path:
    path = Path(path)
    path.write_text(build_ass_script(cues, style, width, height), encoding="utf-8")
    return path
