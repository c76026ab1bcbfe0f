"""
Pytest fixtures for storyrender tests.

Most tests run the pipeline against a FakeEncoder that records every
EncodeSpec instead of invoking ffmpeg. Tests that need the real binaries are
marked with @pytest.mark.requires_ffmpeg and skipped when ffmpeg/ffprobe are
not on PATH:

    pytest -m "not requires_ffmpeg"
"""

import asyncio
import shutil
import tempfile
from pathlib import Path

import pytest

from storyrender.config import Settings
from storyrender.render.encoder import EncodeSpec
from storyrender.schemas.timeline import Timeline

# Smallest valid base64 payload; the fake encoder never decodes media
IMAGE_DATA_URL = "data:image/jpeg;base64,AAAA"
AUDIO_DATA_URL = "data:audio/mpeg;base64,AAAA"


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


# Skip decorator for tests requiring a real encoder
requires_ffmpeg = pytest.mark.skipif(
    not _ffmpeg_available(),
    reason="ffmpeg/ffprobe not available",
)


class FakeEncoder:
    """Records specs and touches their outputs instead of running ffmpeg."""

    def __init__(self, fail_stage: str | None = None, gate: asyncio.Event | None = None):
        self.specs: list[EncodeSpec] = []
        self.fail_stage = fail_stage
        self.gate = gate

    async def run(self, spec: EncodeSpec) -> Path:
        if self.gate is not None:
            await self.gate.wait()
        self.specs.append(spec)
        if spec.stage == self.fail_stage:
            raise spec.error_class(f"ffmpeg {spec.stage} failed: simulated")
        spec.output_path.parent.mkdir(parents=True, exist_ok=True)
        spec.output_path.write_bytes(b"fake-" + spec.stage.encode())
        return spec.output_path

    def stages(self) -> list[str]:
        return [spec.stage for spec in self.specs]


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="storyrender_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def job_settings(temp_output_dir: Path) -> Settings:
    """Settings for job service tests: private storage, no background sweep."""
    return Settings(
        render_storage_path=str(temp_output_dir / "jobs"),
        render_sweep_interval_s=0,
        render_max_workers=2,
        render_shutdown_grace_s=5.0,
    )


def make_timeline(segments: list[dict], audio_tracks: list[dict] | None = None, title: str = "Test") -> Timeline:
    return Timeline.model_validate(
        {"title": title, "segments": segments, "audioTracks": audio_tracks or []}
    )


@pytest.fixture
def scenario_a_timeline() -> Timeline:
    """One narrated segment with two images."""
    return make_timeline(
        [
            {
                "media": [{"url": IMAGE_DATA_URL}, {"url": IMAGE_DATA_URL}],
                "audioUrl": AUDIO_DATA_URL,
                "duration": 3,
                "narration_text": "Hello there world",
                "wordTimings": [
                    {"word": "Hello", "start": 0.0, "end": 1.0},
                    {"word": "there", "start": 1.0, "end": 2.0},
                    {"word": "world", "start": 2.0, "end": 3.0},
                ],
            }
        ]
    )


@pytest.fixture
def scenario_b_timeline() -> Timeline:
    """Two silent segments (4s, 3s) and one music track from 2s at half gain."""
    return make_timeline(
        [
            {"media": [{"url": IMAGE_DATA_URL}], "duration": 4},
            {"media": [{"url": IMAGE_DATA_URL}], "duration": 3},
        ],
        audio_tracks=[{"url": AUDIO_DATA_URL, "startTime": 2, "volume": 0.5}],
    )
