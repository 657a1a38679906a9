"""Tests for pipeline/models.py, pipeline/config.py and metrics.py."""

import math

import pytest
from pydantic import ValidationError as PydanticValidationError

from reelworker import metrics
from reelworker.pipeline.config import PipelineSettings, target_resolution
from reelworker.pipeline.models import (
    ArtifactRef,
    PipelineRun,
    RunStatus,
    VideoCreationRequest,
    segment_count_for,
)


class TestSegmentCount:
    @pytest.mark.parametrize("duration", range(8, 65))
    def test_ceil_of_eight(self, duration):
        assert segment_count_for(duration) == math.ceil(duration / 8)

    def test_boundaries(self):
        assert segment_count_for(8) == 1
        assert segment_count_for(9) == 2
        assert segment_count_for(64) == 8


class TestVideoCreationRequest:
    def test_camel_case_wire_names(self):
        req = VideoCreationRequest.model_validate({
            "sourceImageUrl": "https://x/p.png",
            "userPrompt": "hi",
            "totalDurationSeconds": 24,
            "aspectRatio": "9:16",
            "ownerId": "o",
        })
        assert req.total_duration_seconds == 24
        assert req.model_dump(by_alias=True)["sourceImageUrl"] == "https://x/p.png"

    @pytest.mark.parametrize("field,value", [
        ("totalDurationSeconds", 7),
        ("totalDurationSeconds", 65),
        ("aspectRatio", "1:1"),
        ("sourceImageUrl", "ftp://x/p.png"),
        ("ownerId", ""),
    ])
    def test_rejects_invalid(self, field, value):
        body = {"sourceImageUrl": "https://x/p.png", "userPrompt": "", "ownerId": "o", field: value}
        with pytest.raises(PydanticValidationError):
            VideoCreationRequest.model_validate(body)


class TestPipelineRun:
    def test_failed_run_always_has_error(self):
        run = PipelineRun(run_id="r", owner_id="o", requested_duration_seconds=8, aspect_ratio="16:9")
        run.mark_failed("")
        assert run.status == RunStatus.FAILED
        assert run.error
        assert run.completed_at is not None

    def test_record_on_completion(self):
        run = PipelineRun(run_id="r", owner_id="o", requested_duration_seconds=16, aspect_ratio="9:16")
        run.mark_completed(ArtifactRef(url="https://cdn.test/final.mp4", key="final.mp4"))
        record = run.to_record()

        assert record["id"] == "r"
        assert record["status"] == "completed"
        assert record["final_video_url"] == "https://cdn.test/final.mp4"
        assert record["processing_time_ms"] >= 0

    def test_artifact_ref_is_immutable(self):
        ref = ArtifactRef(url="u", key="k")
        with pytest.raises(PydanticValidationError):
            ref.url = "other"


class TestSettings:
    def test_defaults(self):
        s = PipelineSettings()
        assert s.poll_interval_seconds == 10
        assert s.max_poll_attempts == 60
        assert s.assembly_mode == "cut"
        assert s.crossfade_duration == 0.5

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "k")
        monkeypatch.setenv("ASSEMBLY_MODE", "crossfade")
        monkeypatch.setenv("CROSSFADE_DURATION", "0.75")
        monkeypatch.setenv("STORAGE_MAKE_PUBLIC", "true")
        monkeypatch.setenv("SCRATCH_DIR", "/tmp/reel")

        s = PipelineSettings.from_env()
        assert s.gemini_api_key == "k"
        assert s.assembly_mode == "crossfade"
        assert s.crossfade_duration == 0.75
        assert s.storage_make_public is True
        assert s.scratch_dir == "/tmp/reel"

    def test_target_resolution(self):
        assert target_resolution("16:9") == (1280, 720)
        assert target_resolution("9:16") == (720, 1280)


class TestMetrics:
    def test_snapshot(self):
        metrics.inc_counter("runs.started", 4)
        metrics.inc_counter("runs.failed")
        metrics.record_latency("pipeline", 100.0)
        metrics.record_latency("pipeline", 300.0)
        metrics.record_error("SEGMENTS", "GenerationTimeout", "timed out", "run-1")

        snap = metrics.get_snapshot()
        assert snap["failure_rate"] == 25.0
        assert snap["latency"]["pipeline"]["count"] == 2
        assert snap["latency"]["pipeline"]["avg"] == 200.0
        assert snap["latency"]["pipeline"]["max"] == 300.0
        assert snap["recent_errors"][0]["run_id"] == "run-1"
        assert snap["recent_errors"][0]["error_type"] == "GenerationTimeout"

    def test_latency_samples_are_capped(self):
        for i in range(metrics.MAX_SAMPLES + 20):
            metrics.record_latency("generation", float(i))
        assert metrics.get_snapshot()["latency"]["generation"]["count"] == metrics.MAX_SAMPLES
