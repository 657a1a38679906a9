"""Tests for pipeline/frames.py — seek resolution and the extractor wrapper."""

from pathlib import Path

import pytest

from conftest import InlineTaskRunner
from reelworker.pipeline.errors import FrameExtractionFailed, StorageError
from reelworker.pipeline.frames import FrameExtractor, resolve_seek
from reelworker.pipeline.models import ArtifactRef

OK_RESULT = {"success": True, "seek": 7.9, "width": 1280, "height": 720, "size_bytes": 2048}


class TestResolveSeek:
    def test_first(self):
        assert resolve_seek("first", 8.0) == 0.0

    def test_last_backs_off_from_the_end(self):
        assert resolve_seek("last", 8.0) == pytest.approx(7.9)

    def test_last_of_tiny_clip_clamps_to_zero(self):
        assert resolve_seek("last", 0.05) == 0.0

    def test_numeric(self):
        assert resolve_seek(3.5, 8.0) == 3.5
        assert resolve_seek(8.0, 8.0) == 8.0

    @pytest.mark.parametrize("position", [-0.1, 8.01, 100])
    def test_out_of_range(self, position):
        with pytest.raises(ValueError, match="outside"):
            resolve_seek(position, 8.0)


def scratch_entries(settings) -> list:
    return list(Path(settings.scratch_dir).iterdir())


class TestFrameExtractor:
    @pytest.mark.asyncio
    async def test_extract_last_uploads_frame(self, settings, storage, video_ref):
        runner = InlineTaskRunner(result=OK_RESULT)
        extractor = FrameExtractor(storage, settings, runner=runner)

        ref = await extractor.extract(video_ref, "pipeline/owner-1/run-1/frame-1")

        assert ref.url == "https://cdn.test/pipeline/owner-1/run-1/frame-1.png"
        assert ref.content_type == "image/png"
        assert (ref.width, ref.height) == (1280, 720)

        job_name, payload, timeout = runner.calls[0]
        assert job_name == "extract_frame_job"
        assert payload["position"] == "last"
        assert payload["format"] == "png"
        assert timeout == settings.frame_extraction_timeout
        assert scratch_entries(settings) == []

    @pytest.mark.asyncio
    async def test_jpeg_output(self, settings, storage, video_ref):
        runner = InlineTaskRunner(result=OK_RESULT)
        extractor = FrameExtractor(storage, settings, runner=runner)

        ref = await extractor.extract(video_ref, "frames/x", position="first", fmt="jpeg")

        assert ref.key == "frames/x.jpg"
        assert ref.content_type == "image/jpeg"
        assert runner.calls[0][1]["format"] == "jpg"

    @pytest.mark.asyncio
    async def test_failure_raises_and_cleans_scratch(self, settings, storage, video_ref):
        runner = InlineTaskRunner(result={"success": False, "error": "Seek position 12s is outside the video"})
        extractor = FrameExtractor(storage, settings, runner=runner)

        with pytest.raises(FrameExtractionFailed, match="outside the video"):
            await extractor.extract(video_ref, "frames/x", position=12.0)

        assert storage.uploads == []
        assert scratch_entries(settings) == []

    @pytest.mark.asyncio
    async def test_download_failure_cleans_scratch(self, settings, storage):
        extractor = FrameExtractor(storage, settings, runner=InlineTaskRunner(result=OK_RESULT))
        missing = ArtifactRef(url="https://cdn.test/nope.mp4", key="nope.mp4")

        with pytest.raises(StorageError):
            await extractor.extract(missing, "frames/x")
        assert scratch_entries(settings) == []

    @pytest.mark.asyncio
    async def test_unsupported_format(self, settings, storage, video_ref):
        runner = InlineTaskRunner(result=OK_RESULT)
        extractor = FrameExtractor(storage, settings, runner=runner)

        with pytest.raises(FrameExtractionFailed, match="Unsupported"):
            await extractor.extract(video_ref, "frames/x", fmt="gif")
        assert runner.calls == []
