"""Turns client-supplied media references into files in a job directory."""

import asyncio
import base64
import binascii
import logging
import shutil
from pathlib import Path
from urllib.parse import unquote, unquote_to_bytes, urlparse
from uuid import uuid4

import httpx

from storyrender.config import get_settings
from storyrender.exceptions import AssetFetchError

logger = logging.getLogger(__name__)

_EXTENSIONS = {"image": "jpg", "video": "mp4", "audio": "mp3"}


def _describe(reference: str) -> str:
    # Data URLs can be megabytes long; never put them in messages whole
    if reference.startswith("data:"):
        return reference[: reference.find(",") + 1] + "..."
    return reference


class AssetResolver:
    """Resolves data URLs, http(s) URLs and (optionally) local paths."""

    def __init__(
        self,
        timeout_s: float | None = None,
        max_bytes: int | None = None,
        allow_local_files: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.timeout_s = timeout_s if timeout_s is not None else settings.asset_fetch_timeout_s
        self.max_bytes = max_bytes if max_bytes is not None else settings.asset_max_bytes
        self.allow_local_files = (
            allow_local_files if allow_local_files is not None else settings.asset_allow_local_files
        )
        self._transport = transport

    async def resolve(self, reference: str, kind: str, dest_dir: str | Path) -> Path:
        """Materialize ``reference`` as a file under ``dest_dir``.

        Raises:
            AssetFetchError: If the reference is malformed or unreachable
        """
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / f"{uuid4().hex}.{_EXTENSIONS.get(kind, 'bin')}"

        if reference.startswith("data:"):
            await asyncio.to_thread(self._write_data_url, reference, dest)
            return dest

        parsed = urlparse(reference)
        if parsed.scheme in ("http", "https"):
            await self._download(reference, dest)
            return dest

        if self.allow_local_files and parsed.scheme in ("", "file"):
            source = Path(unquote(parsed.path) if parsed.scheme == "file" else reference)
            if not source.is_file():
                raise AssetFetchError(f"Local asset not found: {source}")
            await asyncio.to_thread(shutil.copyfile, source, dest)
            return dest

        raise AssetFetchError(f"Unsupported asset reference: {_describe(reference)}")

    def _write_data_url(self, reference: str, dest: Path) -> None:
        dest.write_bytes(self._decode_data_url(reference))

    def _decode_data_url(self, reference: str) -> bytes:
        header, sep, payload = reference.partition(",")
        if not sep:
            raise AssetFetchError(f"Malformed data URL: {_describe(reference)}")
        if header.endswith(";base64"):
            try:
                data = base64.b64decode(payload, validate=False)
            except (binascii.Error, ValueError) as e:
                raise AssetFetchError(f"Invalid base64 in data URL: {e}") from e
        else:
            data = unquote_to_bytes(payload)
        if not data:
            raise AssetFetchError("Empty data URL")
        if len(data) > self.max_bytes:
            raise AssetFetchError(f"Inline asset exceeds {self.max_bytes} bytes")
        return data

    async def _download(self, url: str, dest: Path) -> None:
        received = 0
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s, follow_redirects=True, transport=self._transport
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(dest, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            received += len(chunk)
                            if received > self.max_bytes:
                                raise AssetFetchError(f"Asset exceeds {self.max_bytes} bytes: {url}")
                            f.write(chunk)
        except httpx.HTTPStatusError as e:
            raise AssetFetchError(f"Asset download failed ({e.response.status_code}): {url}") from e
        except httpx.HTTPError as e:
            raise AssetFetchError(f"Asset download failed: {url}: {e}") from e

        if received == 0:
            raise AssetFetchError(f"Asset download returned no data: {url}")
        logger.info(f"[ASSET] Downloaded {received} bytes from {url}")
