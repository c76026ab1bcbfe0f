"""FFmpeg filter graph construction for segments and the timeline concat.

Per-segment stage order is fixed and must not be rearranged:

1. each clip is letterboxed to the output frame, panned/zoomed, trimmed to
   its resolved duration and re-timestamped
2. clips are chained with crossfades
3. captions are burned in on top of the composed picture
4. narration is normalized (or silence is synthesized)
5. the encode is pinned to the resolved duration
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from storyrender.config import get_settings
from storyrender.render.audio_mixer import AudioMixer
from storyrender.render.encoder import EncodeSpec
from storyrender.render.timing import ResolvedSegment
from storyrender.schemas.timeline import Transform


@dataclass
class ClipInput:
    """A clip whose media is already on local disk."""

    path: str
    type: str  # image | video
    duration: float
    transform: Transform = field(default_factory=Transform)


def _even(value: float) -> int:
    rounded = int(round(value))
    return rounded + (rounded % 2)


def escape_filter_path(path: str | Path) -> str:
    """Quote a path for use as a filter option value."""
    return str(path).replace("\\", "/").replace(":", "\\:").replace("'", "\\'")


def crossfade_offsets(durations: Sequence[float], crossfade: float) -> list[float]:
    """Start time of each transition within the composed stream.

    Transition k begins ``crossfade`` seconds before the end of everything
    composed so far, i.e. the prior clip durations minus the overlap already
    consumed by earlier transitions.
    """
    offsets: list[float] = []
    composed = durations[0] if durations else 0.0
    for duration in durations[1:]:
        offsets.append(composed - crossfade)
        composed += duration - crossfade
    return offsets


def concat_list_content(segment_files: Sequence[str | Path]) -> str:
    """Concat demuxer list, in segment order."""
    lines = []
    for segment_file in segment_files:
        # Absolute and escaped: relative entries are read against the list file's directory
        escaped = str(Path(segment_file).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


class FilterGraphBuilder:
    """Builds the ffmpeg invocations for one render."""

    def __init__(
        self,
        width: int,
        height: int,
        fps: int | None = None,
        audio_mixer: AudioMixer | None = None,
    ):
        self.settings = get_settings()
        self.width = width
        self.height = height
        self.fps = fps or self.settings.render_fps
        self.audio_mixer = audio_mixer or AudioMixer()

    # ------------------------------------------------------------------
    # Stage 1: clip normalization
    # ------------------------------------------------------------------

    def clip_input_args(self, clip: ClipInput) -> list[str]:
        if clip.type == "image":
            return ["-loop", "1", "-framerate", str(self.fps), "-t", f"{clip.duration:.6f}", "-i", clip.path]
        return ["-i", clip.path]

    def _pan_zoom(self, transform: Transform) -> list[str]:
        """Zoom by scaling up, then pan by moving the crop window.

        Zoom below 1.0 is treated as 1.0: the frame is always filled by the
        letterboxed clip.
        """
        scale = max(1.0, transform.scale)
        if scale == 1.0 and transform.x == 0 and transform.y == 0:
            return []

        scaled_w = _even(self.width * scale)
        scaled_h = _even(self.height * scale)
        # Moving the image right means moving the window left
        crop_x = min(max((scaled_w - self.width) / 2 - transform.x, 0), scaled_w - self.width)
        crop_y = min(max((scaled_h - self.height) / 2 - transform.y, 0), scaled_h - self.height)
        filters = []
        if scaled_w != self.width or scaled_h != self.height:
            filters.append(f"scale={scaled_w}:{scaled_h}")
        filters.append(f"crop={self.width}:{self.height}:{int(crop_x)}:{int(crop_y)}")
        return filters

    def build_clip_filter(self, index: int, clip: ClipInput, output_label: str | None = None) -> str:
        output_label = output_label or f"v{index}"
        parts = [
            f"scale={self.width}:{self.height}:force_original_aspect_ratio=decrease",
            f"pad={self.width}:{self.height}:(ow-iw)/2:(oh-ih)/2",
            "setsar=1",
            *self._pan_zoom(clip.transform),
        ]
        if clip.type == "video":
            # Hold the last frame when the source is shorter than its slot
            parts.append(f"tpad=stop_mode=clone:stop_duration={clip.duration:.6f}")
        parts.extend([
            f"fps={self.fps}",
            "format=yuv420p",
            f"trim=duration={clip.duration:.6f}",
            # Reset timestamps so downstream offsets are clip-relative
            "setpts=PTS-STARTPTS",
        ])
        return f"[{index}:v]" + ",".join(parts) + f"[{output_label}]"

    # ------------------------------------------------------------------
    # Stage 2: transitions
    # ------------------------------------------------------------------

    def build_crossfade_chain(
        self,
        labels: Sequence[str],
        durations: Sequence[float],
        crossfade: float,
    ) -> tuple[list[str], str]:
        """Chain clip streams pairwise; returns (filters, composed label)."""
        if len(labels) == 1:
            return [], labels[0]

        if crossfade <= 0:
            joined = "".join(f"[{label}]" for label in labels)
            return [f"{joined}concat=n={len(labels)}:v=1:a=0[vcat]"], "vcat"

        filters: list[str] = []
        prev_label = labels[0]
        for k, offset in enumerate(crossfade_offsets(durations, crossfade), start=1):
            out_label = f"xf{k}"
            filters.append(
                f"[{prev_label}][{labels[k]}]xfade=transition=fade:"
                f"duration={crossfade:.6f}:offset={offset:.6f}[{out_label}]"
            )
            prev_label = out_label
        return filters, prev_label

    # ------------------------------------------------------------------
    # Stages 3-5: captions, audio, encode
    # ------------------------------------------------------------------

    def build_segment_spec(
        self,
        clips: Sequence[ClipInput],
        resolved: ResolvedSegment,
        output_path: str | Path,
        narration_path: str | None = None,
        subtitle_path: str | Path | None = None,
        index: int = 0,
    ) -> EncodeSpec:
        duration = resolved.duration

        inputs: list[str] = []
        for clip in clips:
            inputs.extend(self.clip_input_args(clip))
        audio_index = len(clips)
        inputs.extend(self.audio_mixer.segment_audio_inputs(narration_path, duration))

        filters = [self.build_clip_filter(i, clip) for i, clip in enumerate(clips)]

        chain, video_label = self.build_crossfade_chain(
            [f"v{i}" for i in range(len(clips))],
            [clip.duration for clip in clips],
            resolved.crossfade,
        )
        filters.extend(chain)

        # Captions go on last so transitions never blend them
        if subtitle_path:
            filters.append(f"[{video_label}]subtitles=filename='{escape_filter_path(subtitle_path)}'[vsub]")
            video_label = "vsub"

        filters.append(self.audio_mixer.build_segment_audio(audio_index, narration_path is not None, duration))

        filter_complex = ";".join(filters)
        args = [
            "-y",
            *inputs,
            "-filter_complex", filter_complex,
            "-map", f"[{video_label}]",
            "-map", "[a_norm]",
            "-c:v", self.settings.render_video_codec,
            "-preset", self.settings.render_video_preset,
            "-crf", str(self.settings.render_video_crf),
            "-pix_fmt", "yuv420p",
            "-r", str(self.fps),
            "-c:a", self.settings.render_audio_codec,
            "-b:a", self.settings.render_audio_bitrate,
            "-ar", str(self.audio_mixer.sample_rate),
            # Pin the output length so rounding in the graph cannot drift it
            "-t", f"{duration:.6f}",
            str(output_path),
        ]
        return EncodeSpec(
            stage="segment",
            args=args,
            output_path=Path(output_path),
            filter_complex=filter_complex,
            label=f"segment {index}",
        )

    # ------------------------------------------------------------------
    # Timeline stage
    # ------------------------------------------------------------------

    def build_concat_spec(self, list_path: str | Path, output_path: str | Path) -> EncodeSpec:
        """Lossless concat of encoded segments (stream copy)."""
        args = [
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(list_path),
            "-c", "copy",
            "-movflags", "+faststart",
            str(output_path),
        ]
        return EncodeSpec(stage="concat", args=args, output_path=Path(output_path), label="segments")
