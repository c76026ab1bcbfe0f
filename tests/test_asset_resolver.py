"""
Tests for media reference resolution.

HTTP downloads go through httpx.MockTransport; nothing leaves the process.
"""

import base64
import threading
from pathlib import Path

import httpx
import pytest

from storyrender.exceptions import AssetFetchError
from storyrender.services.asset_resolver import AssetResolver


def _resolver(handler=None, **kwargs) -> AssetResolver:
    transport = httpx.MockTransport(handler) if handler else None
    kwargs.setdefault("allow_local_files", False)
    return AssetResolver(transport=transport, **kwargs)


class TestAssetResolver:
    @pytest.mark.asyncio
    async def test_base64_data_url(self, temp_output_dir: Path):
        payload = b"\x89PNG fake image"
        reference = "data:image/png;base64," + base64.b64encode(payload).decode()

        path = await _resolver().resolve(reference, "image", temp_output_dir)

        assert path.suffix == ".jpg"
        assert path.parent == temp_output_dir
        assert path.read_bytes() == payload

    @pytest.mark.asyncio
    async def test_percent_encoded_data_url(self, temp_output_dir: Path):
        path = await _resolver().resolve("data:text/plain,hello%20world", "audio", temp_output_dir)

        assert path.suffix == ".mp3"
        assert path.read_bytes() == b"hello world"

    @pytest.mark.asyncio
    async def test_data_url_decoded_off_event_loop(self, temp_output_dir: Path, monkeypatch):
        decode_threads = []
        original_decode = AssetResolver._decode_data_url

        def recording_decode(self, reference: str) -> bytes:
            decode_threads.append(threading.get_ident())
            return original_decode(self, reference)

        monkeypatch.setattr(AssetResolver, "_decode_data_url", recording_decode)
        reference = "data:image/png;base64," + base64.b64encode(b"frame" * 1000).decode()

        path = await _resolver().resolve(reference, "image", temp_output_dir)

        assert path.read_bytes() == b"frame" * 1000
        assert len(decode_threads) == 1
        assert decode_threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_inline_asset_over_limit(self, temp_output_dir: Path):
        reference = "data:audio/mpeg;base64," + base64.b64encode(b"x" * 100).decode()

        with pytest.raises(AssetFetchError):
            await _resolver(max_bytes=10).resolve(reference, "audio", temp_output_dir)

    @pytest.mark.asyncio
    async def test_http_download(self, temp_output_dir: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/clip.mp4"
            return httpx.Response(200, content=b"video-bytes")

        path = await _resolver(handler).resolve("https://cdn.example.com/clip.mp4", "video", temp_output_dir)

        assert path.suffix == ".mp4"
        assert path.read_bytes() == b"video-bytes"

    @pytest.mark.asyncio
    async def test_http_error_status(self, temp_output_dir: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        with pytest.raises(AssetFetchError) as exc_info:
            await _resolver(handler).resolve("https://cdn.example.com/missing.jpg", "image", temp_output_dir)
        assert "404" in exc_info.value.message
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_connection_error(self, temp_output_dir: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AssetFetchError):
            await _resolver(handler).resolve("https://cdn.example.com/a.jpg", "image", temp_output_dir)

    @pytest.mark.asyncio
    async def test_download_over_limit(self, temp_output_dir: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"x" * 1000)

        with pytest.raises(AssetFetchError):
            await _resolver(handler, max_bytes=100).resolve("https://cdn.example.com/a.mp3", "audio", temp_output_dir)

    @pytest.mark.asyncio
    async def test_local_paths_disabled_by_default(self, temp_output_dir: Path):
        source = temp_output_dir / "local.jpg"
        source.write_bytes(b"img")

        with pytest.raises(AssetFetchError):
            await _resolver().resolve(str(source), "image", temp_output_dir / "out")

    @pytest.mark.asyncio
    async def test_local_paths_when_allowed(self, temp_output_dir: Path):
        source = temp_output_dir / "local.jpg"
        source.write_bytes(b"img")
        resolver = _resolver(allow_local_files=True)

        from_path = await resolver.resolve(str(source), "image", temp_output_dir / "out")
        from_url = await resolver.resolve(source.as_uri(), "image", temp_output_dir / "out")

        assert from_path.read_bytes() == b"img"
        assert from_url.read_bytes() == b"img"
        assert from_path != from_url

    @pytest.mark.asyncio
    async def test_missing_local_file(self, temp_output_dir: Path):
        with pytest.raises(AssetFetchError):
            await _resolver(allow_local_files=True).resolve(
                str(temp_output_dir / "nope.jpg"), "image", temp_output_dir
            )

    @pytest.mark.asyncio
    async def test_unsupported_scheme(self, temp_output_dir: Path):
        with pytest.raises(AssetFetchError) as exc_info:
            await _resolver().resolve("ftp://example.com/a.jpg", "image", temp_output_dir)
        assert "ftp://example.com/a.jpg" in exc_info.value.message
