"""Media file information utilities using FFprobe."""

import json
import subprocess

from storyrender.config import get_settings
from storyrender.exceptions import ProbeError


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=settings.render_probe_timeout_s
        )
    except subprocess.TimeoutExpired as e:
        raise ProbeError(f"ffprobe timed out on {file_path}") from e
    except OSError as e:
        raise ProbeError(f"ffprobe could not be started: {e}") from e

    if result.returncode != 0:
        raise ProbeError(f"ffprobe failed on {file_path}: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ProbeError(f"Failed to parse ffprobe output: {e}") from e


def probe_duration(file_path: str) -> float:
    """
    Get media file duration in seconds.

    Args:
        file_path: Path to media file

    Returns:
        Duration in seconds

    Raises:
        ProbeError: If ffprobe fails or reports no positive duration
    """
    data = _run_ffprobe(file_path, "-show_format")
    format_info = data.get("format", {})

    try:
        duration = float(format_info["duration"])
    except (KeyError, TypeError, ValueError) as e:
        raise ProbeError(f"Duration not found in: {file_path}") from e

    if duration <= 0:
        raise ProbeError(f"Non-positive duration {duration} in: {file_path}")
    return duration
