"""Encoder boundary.

The pipeline never runs ffmpeg directly: graph builders produce an
``EncodeSpec`` and an ``Encoder`` executes it. Tests swap in an encoder that
records specs instead of running a subprocess.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from storyrender.config import get_settings
from storyrender.exceptions import ConcatError, EncodeError, MixError

logger = logging.getLogger(__name__)

STAGE_ERRORS: dict[str, type[EncodeError]] = {
    "segment": EncodeError,
    "concat": ConcatError,
    "mix": MixError,
}

# Keep error text readable; ffmpeg prints the actual failure at the end
_STDERR_TAIL = 2000


@dataclass
class EncodeSpec:
    """One ffmpeg invocation: every argument after the binary name."""

    stage: str  # segment | concat | mix
    args: list[str]
    output_path: Path
    filter_complex: str | None = None
    label: str = ""

    @property
    def error_class(self) -> type[EncodeError]:
        return STAGE_ERRORS.get(self.stage, EncodeError)


class Encoder(Protocol):
    async def run(self, spec: EncodeSpec) -> Path: ...


class FFmpegEncoder:
    """Runs an ``EncodeSpec`` with the ffmpeg binary from settings."""

    def __init__(self, ffmpeg_path: str | None = None, timeout_s: float | None = None):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.timeout_s = timeout_s if timeout_s is not None else settings.render_encode_timeout_s

    async def run(self, spec: EncodeSpec) -> Path:
        cmd = [self.ffmpeg_path, *spec.args]
        logger.info(f"[ENCODE] {spec.stage} {spec.label}: {' '.join(cmd)}")

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error(f"[ENCODE] {spec.stage} {spec.label} timed out after {self.timeout_s}s")
            raise spec.error_class(f"ffmpeg {spec.stage} timed out after {self.timeout_s}s")
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL:]
            logger.error(
                "[ENCODE] %s %s failed (rc=%d): %s", spec.stage, spec.label, proc.returncode, stderr_text
            )
            raise spec.error_class(f"ffmpeg {spec.stage} failed: {stderr_text}")

        return spec.output_path
