"""Shared fixtures: settings, in-memory storage, inline task runner, sample artifacts.

No network and no credentials. Media jobs run in-process unless a test
opts into the real isolated runner.
"""

import asyncio
import io
from pathlib import Path

import pytest
from PIL import Image

from reelworker import metrics
from reelworker.pipeline.config import PipelineSettings
from reelworker.pipeline.errors import StorageError
from reelworker.pipeline.models import ArtifactRef


def png_bytes(width: int = 64, height: int = 96, color=(200, 40, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeStorage:
    """In-memory stand-in for ObjectStorage, keyed by public URL."""

    base_url = "https://cdn.test"

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.uploads: list[tuple[str, str]] = []

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def put(self, key: str, data: bytes) -> str:
        url = self.public_url(key)
        self.objects[url] = data
        return url

    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        self.uploads.append((key, content_type))
        return self.put(key, data)

    async def upload_file(self, path, key: str, content_type=None) -> str:
        path = Path(path)
        data = path.read_bytes() if path.exists() else b""
        self.uploads.append((key, content_type or ""))
        return self.put(key, data)

    async def download(self, url: str) -> bytes:
        if url not in self.objects:
            raise StorageError(f"Download failed for {url}: 404")
        return self.objects[url]

    async def download_with_type(self, url: str) -> tuple[bytes, str]:
        return await self.download(url), "image/png"

    async def download_to_file(self, url: str, path) -> Path:
        path = Path(path)
        path.write_bytes(await self.download(url))
        return path


class InlineTaskRunner:
    """Runs media jobs in a worker thread instead of a child process.

    With ``result`` set, the job is not run at all and the canned payload
    is returned.
    """

    def __init__(self, result: dict = None):
        self.calls: list[tuple[str, dict, object]] = []
        self._result = result

    async def run(self, job, payload: dict, timeout=None) -> dict:
        self.calls.append((job.__name__, payload, timeout))
        if self._result is not None:
            return self._result
        return await asyncio.to_thread(job, payload)


# === FIXTURES ===


@pytest.fixture(autouse=True)
def clean_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def settings(tmp_path: Path) -> PipelineSettings:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return PipelineSettings(
        gemini_api_key="test-key",
        gemini_api_base="https://gemini.test/v1beta",
        storage_public_url=FakeStorage.base_url,
        scratch_dir=str(scratch),
    )


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def video_ref(storage: FakeStorage) -> ArtifactRef:
    url = storage.put("pipeline/owner-1/run-1/segment-1.mp4", b"\x00\x00\x00\x18ftypmp42")
    return ArtifactRef(url=url, key="pipeline/owner-1/run-1/segment-1.mp4", content_type="video/mp4", format="mp4")


@pytest.fixture
def image_ref(storage: FakeStorage) -> ArtifactRef:
    url = storage.put("pipeline/owner-1/run-1/reference.png", png_bytes())
    return ArtifactRef(url=url, key="pipeline/owner-1/run-1/reference.png", content_type="image/png", format="png")
