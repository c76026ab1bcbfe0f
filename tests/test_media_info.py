"""
Tests for ffprobe duration measurement.

Test cases:
1. Duration parsed from ffprobe JSON
2. Missing or non-positive duration raises ProbeError
3. ffprobe failure and timeout raise ProbeError
4. Real probe of a generated file (requires_ffmpeg)
"""

import json
import subprocess

import pytest

from conftest import requires_ffmpeg
from storyrender.exceptions import ProbeError
from storyrender.utils import media_info


def _fake_run(stdout: str = "", returncode: int = 0, stderr: str = ""):
    def run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)
    return run


class TestProbeDuration:
    """Duration extraction using a stubbed ffprobe."""

    def test_duration_seconds(self, monkeypatch):
        monkeypatch.setattr(
            media_info.subprocess, "run", _fake_run(json.dumps({"format": {"duration": "5.512000"}}))
        )

        assert media_info.probe_duration("narration.mp3") == pytest.approx(5.512)

    def test_missing_duration(self, monkeypatch):
        monkeypatch.setattr(media_info.subprocess, "run", _fake_run(json.dumps({"format": {}})))

        with pytest.raises(ProbeError):
            media_info.probe_duration("narration.mp3")

    def test_zero_duration(self, monkeypatch):
        monkeypatch.setattr(
            media_info.subprocess, "run", _fake_run(json.dumps({"format": {"duration": "0.0"}}))
        )

        with pytest.raises(ProbeError):
            media_info.probe_duration("narration.mp3")

    def test_ffprobe_failure(self, monkeypatch):
        monkeypatch.setattr(media_info.subprocess, "run", _fake_run(returncode=1, stderr="Invalid data"))

        with pytest.raises(ProbeError) as exc_info:
            media_info.probe_duration("broken.mp3")
        assert "Invalid data" in exc_info.value.message

    def test_unparseable_output(self, monkeypatch):
        monkeypatch.setattr(media_info.subprocess, "run", _fake_run("not json"))

        with pytest.raises(ProbeError):
            media_info.probe_duration("narration.mp3")

    def test_timeout(self, monkeypatch):
        def run(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

        monkeypatch.setattr(media_info.subprocess, "run", run)

        with pytest.raises(ProbeError):
            media_info.probe_duration("narration.mp3")

    @requires_ffmpeg
    @pytest.mark.requires_ffmpeg
    def test_real_probe(self, temp_output_dir):
        path = temp_output_dir / "tone.wav"
        subprocess.run(
            ["ffmpeg", "-y", "-f", "lavfi", "-i", "sine=frequency=440:duration=1.5", str(path)],
            capture_output=True, check=True,
        )

        assert media_info.probe_duration(str(path)) == pytest.approx(1.5, abs=0.05)
