"""
Main render pipeline for timeline composition.

This module sequences the whole render for one job:
1. Resolve each segment's media into the job directory
2. Measure narration and resolve segment timing
3. Compile captions into an ASS file
4. Encode each segment (clips -> crossfades -> captions -> audio)
5. Concatenate segments losslessly
6. Mix global audio tracks over the concatenated program

Stages run strictly in order. Cancellation is honoured between stages only;
a running encoder invocation is never interrupted by it.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from storyrender.config import get_settings
from storyrender.exceptions import AssetFetchError, ProbeError, RenderCancelledError
from storyrender.render.audio_mixer import AudioTrackData
from storyrender.render.encoder import Encoder, FFmpegEncoder
from storyrender.render.filter_graph import ClipInput, FilterGraphBuilder, concat_list_content
from storyrender.render.subtitles import compile_captions, write_ass_file
from storyrender.render.timing import resolve_segment
from storyrender.schemas.timeline import Segment, Timeline
from storyrender.services.asset_resolver import AssetResolver
from storyrender.utils.media_info import probe_duration

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "output.mp4"


class RenderPipeline:
    """
    Render pipeline for narrated slideshow timelines.

    Handles:
    - Narration-driven segment timing
    - Pan/zoom clips joined by crossfades
    - Word-timed burned-in captions
    - Global music/SFX mixing with loudness normalization
    """

    def __init__(
        self,
        encoder: Optional[Encoder] = None,
        asset_resolver: Optional[AssetResolver] = None,
        probe: Optional[Callable[[str], float]] = None,
    ):
        self.settings = get_settings()
        self.encoder = encoder or FFmpegEncoder()
        self.asset_resolver = asset_resolver or AssetResolver()
        self._probe = probe or probe_duration
        self._progress_callback: Optional[Callable[[int, str], None]] = None
        self._cancel_check: Optional[Callable[[], Any]] = None

    def set_progress_callback(self, callback: Callable[[int, str], None]) -> None:
        """Set callback for progress updates."""
        self._progress_callback = callback

    def _update_progress(self, progress: int, stage: str) -> None:
        if self._progress_callback:
            self._progress_callback(progress, stage)

    async def _is_cancelled(self) -> bool:
        if self._cancel_check is None:
            return False
        result = self._cancel_check()
        if asyncio.iscoroutine(result):
            return await result
        return bool(result)

    async def _raise_if_cancelled(self) -> None:
        if await self._is_cancelled():
            raise RenderCancelledError()

    async def render(
        self,
        timeline: Timeline,
        work_dir: str | Path,
        cancel_check: Optional[Callable[[], Any]] = None,
    ) -> Path:
        """
        Execute the full render pipeline.

        Args:
            timeline: Timeline to render
            work_dir: Directory owned by this render; all files land here
            cancel_check: Optional callable (sync or async) returning True to stop

        Returns:
            Path to the rendered video

        Raises:
            RenderCancelledError: If cancelled between stages
            AssetFetchError: If a visual clip cannot be fetched
            EncodeError: If any encoder stage fails (ConcatError / MixError for the timeline stages)
        """
        self._cancel_check = cancel_check
        work_dir = Path(work_dir)
        assets_dir = work_dir / "assets"
        segments_dir = work_dir / "segments"
        segments_dir.mkdir(parents=True, exist_ok=True)

        width, height = timeline.resolution.width, timeline.resolution.height
        builder = FilterGraphBuilder(width, height)
        num_segments = len(timeline.segments)

        logger.info(
            f"[RENDER] '{timeline.title}': {num_segments} segments, "
            f"{len(timeline.audio_tracks)} global tracks, {width}x{height}"
        )

        segment_files: list[Path] = []
        for index, segment in enumerate(timeline.segments):
            await self._raise_if_cancelled()
            self._update_progress(
                int(5 + 75 * index / num_segments), f"Rendering segment {index + 1}/{num_segments}"
            )
            segment_files.append(
                await self._render_segment(index, segment, builder, assets_dir, segments_dir)
            )

        await self._raise_if_cancelled()
        self._update_progress(80, "Concatenating segments")
        merged_path = await self._concatenate(builder, segment_files, work_dir)

        output_path = work_dir / OUTPUT_FILENAME
        if timeline.audio_tracks:
            await self._raise_if_cancelled()
            self._update_progress(90, "Mixing audio")
            tracks = await self._resolve_audio_tracks(timeline, assets_dir)
            if tracks:
                spec = builder.audio_mixer.build_mix_spec(merged_path, tracks, output_path)
                await self.encoder.run(spec)
                merged_path.unlink(missing_ok=True)
                self._update_progress(100, "Complete")
                return output_path

        merged_path.replace(output_path)
        self._update_progress(100, "Complete")
        return output_path

    async def _measure_narration(self, narration_path: Path, index: int) -> float | None:
        """Probe narration length; None means fall back to the declared duration."""
        try:
            duration = await asyncio.to_thread(self._probe, str(narration_path))
        except ProbeError as e:
            logger.warning(f"[RENDER] Segment {index}: narration probe failed, using declared duration: {e}")
            return None
        logger.info(f"[RENDER] Segment {index}: narration measured at {duration:.3f}s")
        return duration

    async def _render_segment(
        self,
        index: int,
        segment: Segment,
        builder: FilterGraphBuilder,
        assets_dir: Path,
        segments_dir: Path,
    ) -> Path:
        narration_path: Path | None = None
        if segment.narration_url:
            try:
                narration_path = await self.asset_resolver.resolve(segment.narration_url, "audio", assets_dir)
            except AssetFetchError as e:
                logger.warning(f"[RENDER] Segment {index}: narration unavailable, rendering silence: {e}")

        measured = await self._measure_narration(narration_path, index) if narration_path else None
        resolved = resolve_segment(
            segment,
            measured,
            default_crossfade=self.settings.render_crossfade_s,
            default_duration=self.settings.render_default_segment_s,
            tolerance=self.settings.render_timing_tolerance_s,
            index=index,
        )

        clips: list[ClipInput] = []
        for clip, clip_duration in zip(segment.clips, resolved.clip_durations):
            clip_path = await self.asset_resolver.resolve(clip.url, clip.type, assets_dir)
            clips.append(
                ClipInput(path=str(clip_path), type=clip.type, duration=clip_duration, transform=clip.transform)
            )

        subtitle_path: Path | None = None
        cues = compile_captions(
            segment.narration_text,
            resolved.word_timings,
            resolved.duration,
            segment.caption_style,
            merge_threshold=self.settings.caption_merge_threshold_s,
        )
        if cues:
            subtitle_path = write_ass_file(
                segments_dir / f"subs_{index}.ass",
                cues,
                segment.caption_style,
                builder.width,
                builder.height,
            )

        spec = builder.build_segment_spec(
            clips,
            resolved,
            segments_dir / f"seg_{index:03d}.mp4",
            narration_path=str(narration_path) if narration_path else None,
            subtitle_path=subtitle_path,
            index=index,
        )
        return await self.encoder.run(spec)

    async def _concatenate(self, builder: FilterGraphBuilder, segment_files: list[Path], work_dir: Path) -> Path:
        list_path = work_dir / "concat_list.txt"
        list_path.write_text(concat_list_content(segment_files), encoding="utf-8")
        spec = builder.build_concat_spec(list_path, work_dir / "merged.mp4")
        return await self.encoder.run(spec)

    async def _resolve_audio_tracks(self, timeline: Timeline, assets_dir: Path) -> list[AudioTrackData]:
        """Fetch global tracks; an unreachable track is dropped from the mix."""
        tracks: list[AudioTrackData] = []
        for idx, track in enumerate(timeline.audio_tracks):
            try:
                path = await self.asset_resolver.resolve(track.url, "audio", assets_dir)
            except AssetFetchError as e:
                logger.warning(f"[RENDER] Global track {idx} skipped: {e}")
                continue
            tracks.append(
                AudioTrackData(
                    file_path=str(path),
                    start_ms=int(round(track.start_time * 1000)),
                    duration_ms=int(round(track.duration * 1000)) if track.duration else None,
                    volume=track.volume,
                )
            )
        return tracks
