"""
Audio graph construction using FFmpeg filters.

This module handles:
- Segment audio: narration normalization with a clarity boost, or silence
- Global tracks (music, SFX): trim, start offset, gain
- Final mix of global tracks with the concatenated program audio
"""

from dataclasses import dataclass
from pathlib import Path

from storyrender.config import get_settings
from storyrender.render.encoder import EncodeSpec

# EBU R128 targets for the final mix
LOUDNORM_FILTER = "loudnorm=I=-16:TP=-1.5:LRA=11"


@dataclass
class AudioTrackData:
    """A global audio track placed on the final timeline."""

    file_path: str
    start_ms: int = 0
    duration_ms: int | None = None  # None = play the file to its end
    volume: float = 1.0


class AudioMixer:
    """
    FFmpeg filter builder for segment and timeline audio.

    Supports:
    - Sample rate / channel layout normalization
    - Narration gain
    - Exact-length silence for segments without narration
    - Delayed, gain-adjusted global tracks mixed with loudness normalization
    """

    def __init__(self, sample_rate: int | None = None, narration_gain: float | None = None):
        self.settings = get_settings()
        self.sample_rate = sample_rate or self.settings.render_audio_sample_rate
        self.narration_gain = narration_gain if narration_gain is not None else self.settings.render_narration_gain

    def _aformat(self) -> str:
        return f"aformat=sample_rates={self.sample_rate}:channel_layouts=stereo"

    def segment_audio_inputs(self, narration_path: str | None, duration_s: float) -> list[str]:
        """Input arguments for a segment's audio source."""
        if narration_path:
            return ["-i", narration_path]
        return [
            "-f", "lavfi",
            "-t", f"{duration_s:.6f}",
            "-i", f"anullsrc=channel_layout=stereo:sample_rate={self.sample_rate}",
        ]

    def build_segment_audio(
        self,
        input_index: int,
        has_narration: bool,
        duration_s: float,
        output_label: str = "a_norm",
    ) -> str:
        """Filter chain that yields exactly ``duration_s`` of segment audio."""
        if has_narration:
            # Pad short narration so the -t pin never cuts the video early
            return (
                f"[{input_index}:a]{self._aformat()},volume={self.narration_gain},"
                f"apad=whole_dur={duration_s:.6f}[{output_label}]"
            )
        return f"[{input_index}:a]{self._aformat()}[{output_label}]"

    def build_track_filter(self, track: AudioTrackData, input_index: int, output_label: str) -> str:
        """Filter chain placing one global track on the timeline."""
        parts: list[str] = []

        if track.duration_ms:
            parts.append(f"atrim=duration={track.duration_ms / 1000}")
            parts.append("asetpts=PTS-STARTPTS")  # Reset timestamps after trim

        parts.append(self._aformat())

        # Add delay for positioning
        if track.start_ms > 0:
            delay_samples = int(track.start_ms * self.sample_rate / 1000)
            parts.append(f"adelay={delay_samples}S:all=1")

        parts.append(f"volume={track.volume}")
        return f"[{input_index}:a]" + ",".join(parts) + f"[{output_label}]"

    def build_mix_filter(self, tracks: list[AudioTrackData], output_label: str = "aout") -> str:
        """Mix program audio (input 0) with every global track (inputs 1..n)."""
        filter_parts: list[str] = []
        mix_inputs = ["[0:a]"]

        for idx, track in enumerate(tracks, start=1):
            label = f"track{idx}"
            filter_parts.append(self.build_track_filter(track, idx, label))
            mix_inputs.append(f"[{label}]")

        # duration=first: the program audio defines the output length
        filter_parts.append(
            f"{''.join(mix_inputs)}amix=inputs={len(mix_inputs)}:duration=first:"
            f"dropout_transition=0:normalize=0,{LOUDNORM_FILTER}[{output_label}]"
        )
        return ";".join(filter_parts)

    def build_mix_spec(
        self,
        video_path: str | Path,
        tracks: list[AudioTrackData],
        output_path: str | Path,
    ) -> EncodeSpec:
        """Mux the mixed audio against the untouched video stream."""
        inputs: list[str] = ["-i", str(video_path)]
        for track in tracks:
            inputs.extend(["-i", track.file_path])

        filter_complex = self.build_mix_filter(tracks)
        args = [
            "-y",
            *inputs,
            "-filter_complex", filter_complex,
            "-map", "0:v",
            "-map", "[aout]",
            "-c:v", "copy",
            "-c:a", self.settings.render_audio_codec,
            "-b:a", self.settings.render_audio_bitrate,
            "-ar", str(self.sample_rate),
            "-shortest",
            "-movflags", "+faststart",
            str(output_path),
        ]
        return EncodeSpec(
            stage="mix",
            args=args,
            output_path=Path(output_path),
            filter_complex=filter_complex,
            label=f"{len(tracks)} tracks",
        )
