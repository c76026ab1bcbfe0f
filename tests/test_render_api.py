"""
Tests for the HTTP surface.

Uses FastAPI's TestClient with the job service dependency overridden by one
that renders through a FakeEncoder.
"""

import time

import pytest
from fastapi.testclient import TestClient

from conftest import IMAGE_DATA_URL, FakeEncoder
from storyrender.api.deps import get_render_service
from storyrender.main import app
from storyrender.render.pipeline import RenderPipeline
from storyrender.services.asset_resolver import AssetResolver
from storyrender.services.render_jobs import RenderJob, RenderJobService, RenderJobStatus

TIMELINE_PAYLOAD = {
    "title": "My Story",
    "segments": [
        {
            "media": [{"url": IMAGE_DATA_URL, "type": "image"}],
            "duration": 2,
            "narration_text": "Hello world",
        }
    ],
    "audioTracks": [],
}


@pytest.fixture
def render_service(job_settings) -> RenderJobService:
    encoder = FakeEncoder()
    return RenderJobService(
        job_settings,
        pipeline_factory=lambda: RenderPipeline(
            encoder=encoder,
            asset_resolver=AssetResolver(allow_local_files=False),
            probe=lambda path: 2.0,
        ),
    )


@pytest.fixture
def client(render_service: RenderJobService):
    app.dependency_overrides[get_render_service] = lambda: render_service
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def _wait_for_status(client: TestClient, job_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/render/{job_id}/status").json()
        if body["status"] != "processing" or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


class TestRenderApi:
    """Submit / status / download over HTTP."""

    def test_health(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_submit_poll_download(self, client: TestClient):
        response = client.post("/api/render", json=TIMELINE_PAYLOAD)

        assert response.status_code == 202
        job_id = response.json()["job_id"]

        body = _wait_for_status(client, job_id)
        assert body["status"] == "completed"
        assert body["job_id"] == job_id
        assert body["error"] is None

        download = client.get(f"/api/render/{job_id}/download")
        assert download.status_code == 200
        assert download.headers["content-type"] == "video/mp4"
        assert "My_Story.mp4" in download.headers["content-disposition"]
        assert download.content == b"fake-concat"

    def test_unknown_job_is_404(self, client: TestClient):
        response = client.get("/api/render/nope/status")

        assert response.status_code == 404
        body = response.json()
        assert body["error"]["code"] == "JOB_NOT_FOUND"
        assert body["detail"] == "Render job not found: nope"

    def test_download_before_completion_is_409(self, client: TestClient, render_service: RenderJobService, temp_output_dir):
        render_service.jobs.add(
            RenderJob(id="busy", title="t", work_dir=temp_output_dir / "busy", created_at=time.time())
        )

        response = client.get("/api/render/busy/download")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "JOB_NOT_READY"
        assert response.json()["error"]["retryable"] is True

    def test_download_after_eviction_is_410(self, client: TestClient, render_service: RenderJobService, temp_output_dir):
        output = temp_output_dir / "old" / "output.mp4"
        output.parent.mkdir(parents=True)
        output.write_bytes(b"video")
        render_service.jobs.add(
            RenderJob(
                id="old",
                title="t",
                work_dir=output.parent,
                created_at=0.0,
                status=RenderJobStatus.COMPLETED,
                output_path=output,
            )
        )
        render_service.evict_expired(now=10_000.0)

        response = client.get("/api/render/old/download")

        assert response.status_code == 410
        assert response.json()["error"]["code"] == "JOB_GONE"

    def test_download_uses_one_lookup(
        self, client: TestClient, render_service: RenderJobService, temp_output_dir, monkeypatch
    ):
        output = temp_output_dir / "done" / "output.mp4"
        output.parent.mkdir(parents=True)
        output.write_bytes(b"video")
        render_service.jobs.add(
            RenderJob(
                id="done",
                title="My Story",
                work_dir=output.parent,
                created_at=0.0,
                status=RenderJobStatus.COMPLETED,
                output_path=output,
            )
        )
        original_poll = render_service.poll

        def poll_after_sweep(job_id: str):
            # A sweep landing between two lookups would turn a 200 into a 404
            render_service.evict_expired(now=10_000.0)
            return original_poll(job_id)

        monkeypatch.setattr(render_service, "poll", poll_after_sweep)

        response = client.get("/api/render/done/download")

        assert response.status_code == 200
        assert response.content == b"video"
        assert "My_Story.mp4" in response.headers["content-disposition"]

    def test_cancel_unknown_job(self, client: TestClient):
        response = client.delete("/api/render/nope")
        assert response.status_code == 404

    def test_cancel_processing_job(self, client: TestClient, render_service: RenderJobService, temp_output_dir):
        render_service.jobs.add(
            RenderJob(id="busy", title="t", work_dir=temp_output_dir / "busy", created_at=time.time())
        )

        response = client.delete("/api/render/busy")

        assert response.status_code == 202
        assert render_service.jobs.get("busy").cancel_requested is True

    def test_invalid_timeline_is_422(self, client: TestClient):
        response = client.post("/api/render", json={"title": "x", "segments": []})

        assert response.status_code == 422
        body = response.json()
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert "segments" in body["detail"]


class TestCaptionPreviewApi:
    """Caption preview uses the same compiler as the renderer."""

    def test_preview_with_estimated_timings(self, client: TestClient):
        response = client.post(
            "/api/captions/preview",
            json={"text": "Hello there, world!", "duration": 3.0},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["estimated"] is True
        assert [t["word"] for t in body["word_timings"]] == ["Hello", "there,", "world!"]
        assert body["cues"] == [{"start": 0.0, "end": 3.0, "text": "Hello there, world!"}]

    def test_preview_with_given_timings_and_style(self, client: TestClient):
        response = client.post(
            "/api/captions/preview",
            json={
                "text": "aaaa bbbb",
                "duration": 4.0,
                "wordTimings": [
                    {"word": "aaaa", "start": 0.0, "end": 1.0},
                    {"word": "bbbb", "start": 3.0, "end": 4.0},
                ],
                "textOverlayStyle": {"fontSize": 100, "maxCaptionLines": 1, "safeAreaWidth": 300},
            },
        )

        body = response.json()
        assert body["estimated"] is False
        assert body["char_budget"] == pytest.approx(5.0)
        assert [c["text"] for c in body["cues"]] == ["aaaa", "bbbb"]
        assert body["cues"][0]["end"] == pytest.approx(1.0)
