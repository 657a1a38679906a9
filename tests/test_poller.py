"""Tests for pipeline/poller.py — submit, poll loop, ceiling and persistence."""

import json
from dataclasses import replace
from unittest.mock import AsyncMock

import httpx
import pytest

from reelworker import metrics
from reelworker.pipeline.errors import GenerationFailed, GenerationTimeout
from reelworker.pipeline.models import GenerationOperation, GenerationOptions, OperationStatus, PollState
from reelworker.pipeline.poller import GenerationPoller

RESULT_URI = "https://gemini.test/v1beta/files/abc:download?alt=media"


def make_veo(statuses):
    veo = AsyncMock()
    veo.submit.return_value = "models/veo/operations/op-1"
    veo.get_operation.side_effect = statuses
    veo.download.return_value = b"fake-mp4-bytes"
    return veo


def done_status(uri=RESULT_URI, error=None, response=None):
    return OperationStatus(done=True, result_uri=uri, error=error, response=response or {})


class TestPollLoop:
    @pytest.mark.asyncio
    async def test_done_after_a_few_polls(self, settings, storage):
        veo = make_veo([OperationStatus(done=False), OperationStatus(done=False), done_status()])
        sleep = AsyncMock()
        poller = GenerationPoller(veo, storage, settings, sleep=sleep)

        op = await poller.wait(GenerationOperation(operation_id="op-1"))

        assert op.state == PollState.DONE
        assert op.poll_attempt == 3
        assert op.result_uri == RESULT_URI
        assert veo.get_operation.await_count == 3
        sleep.assert_awaited_with(settings.poll_interval_seconds)

    @pytest.mark.asyncio
    async def test_ceiling_is_exact_and_nothing_follows_last_attempt(self, settings, storage):
        settings = replace(settings, max_poll_attempts=4)
        veo = make_veo([OperationStatus(done=False)] * 10)
        sleep = AsyncMock()
        poller = GenerationPoller(veo, storage, settings, sleep=sleep)

        op = GenerationOperation(operation_id="op-1")
        with pytest.raises(GenerationTimeout, match="timed out"):
            await poller.wait(op)

        assert veo.get_operation.await_count == 4
        assert sleep.await_count == 4
        assert op.poll_attempt == 4
        assert op.state == PollState.TIMEOUT
        veo.download.assert_not_awaited()
        assert metrics.get_counter("errors.generation_timeout") == 1

    @pytest.mark.asyncio
    async def test_default_ceiling_is_sixty(self, settings, storage):
        veo = make_veo([OperationStatus(done=False)] * 100)
        poller = GenerationPoller(veo, storage, settings, sleep=AsyncMock())

        with pytest.raises(GenerationTimeout, match="600s"):
            await poller.wait(GenerationOperation(operation_id="op-1"), label="segment 1")

        assert poller.ceiling == 60
        assert veo.get_operation.await_count == 60

    @pytest.mark.asyncio
    async def test_transient_errors_count_as_attempts(self, settings, storage):
        veo = make_veo([
            httpx.ConnectError("connection reset"),
            httpx.ReadTimeout("slow"),
            done_status(),
        ])
        poller = GenerationPoller(veo, storage, settings, sleep=AsyncMock())

        op = await poller.wait(GenerationOperation(operation_id="op-1"))

        assert op.state == PollState.DONE
        assert op.poll_attempt == 3

    @pytest.mark.asyncio
    async def test_non_json_poll_response_counts_as_attempt(self, settings, storage):
        veo = make_veo([json.JSONDecodeError("Expecting value", "<html>502 Bad Gateway</html>", 0), done_status()])
        poller = GenerationPoller(veo, storage, settings, sleep=AsyncMock())

        op = await poller.wait(GenerationOperation(operation_id="op-1"))

        assert op.state == PollState.DONE
        assert op.poll_attempt == 2

    @pytest.mark.asyncio
    async def test_transient_errors_until_ceiling_time_out(self, settings, storage):
        settings = replace(settings, max_poll_attempts=2)
        veo = make_veo([httpx.ConnectError("down")] * 5)
        poller = GenerationPoller(veo, storage, settings, sleep=AsyncMock())

        with pytest.raises(GenerationTimeout):
            await poller.wait(GenerationOperation(operation_id="op-1"))
        assert veo.get_operation.await_count == 2

    @pytest.mark.asyncio
    async def test_provider_error_is_generation_failed(self, settings, storage):
        veo = make_veo([done_status(uri=None, error="quota exceeded")])
        poller = GenerationPoller(veo, storage, settings, sleep=AsyncMock())

        op = GenerationOperation(operation_id="op-1")
        with pytest.raises(GenerationFailed, match="quota exceeded"):
            await poller.wait(op)
        assert op.state == PollState.FAILED

    @pytest.mark.asyncio
    async def test_missing_uri_reports_response_shape(self, settings, storage):
        response = {"generateVideoResponse": {"raiMediaFilteredCount": 1, "raiMediaFilteredReasons": ["x"]}}
        veo = make_veo([done_status(uri=None, response=response)])
        poller = GenerationPoller(veo, storage, settings, sleep=AsyncMock())

        with pytest.raises(GenerationFailed, match="raiMediaFilteredCount"):
            await poller.wait(GenerationOperation(operation_id="op-1"))

    @pytest.mark.asyncio
    async def test_done_never_flips_back(self, settings, storage):
        op = GenerationOperation(operation_id="op-1")
        GenerationPoller._apply(op, done_status())
        GenerationPoller._apply(op, OperationStatus(done=False))
        assert op.done is True
        assert op.result_uri == RESULT_URI


class TestGenerate:
    @pytest.mark.asyncio
    async def test_generate_persists_result(self, settings, storage, image_ref):
        veo = make_veo([OperationStatus(done=False), done_status()])
        poller = GenerationPoller(veo, storage, settings, sleep=AsyncMock())
        options = GenerationOptions(aspect_ratio="9:16")

        ref = await poller.generate("dialogue: hi", image_ref, options, "pipeline/o/r/segment-1.mp4")

        assert ref.url == "https://cdn.test/pipeline/o/r/segment-1.mp4"
        assert ref.url != RESULT_URI
        assert (ref.width, ref.height, ref.fps) == (None, None, None)
        assert ref.size_bytes == len(b"fake-mp4-bytes")
        assert storage.objects[ref.url] == b"fake-mp4-bytes"

        prompt, image_bytes, mime, opts = veo.submit.await_args.args
        assert prompt == "dialogue: hi"
        assert image_bytes == storage.objects[image_ref.url]
        assert mime == "image/png"
        assert opts.aspect_ratio == "9:16"
        veo.download.assert_awaited_once_with(RESULT_URI)
        assert metrics.get_counter("generation.submitted") == 1

    @pytest.mark.asyncio
    async def test_submit_failure_propagates(self, settings, storage, image_ref):
        veo = make_veo([])
        veo.submit.side_effect = GenerationFailed("Veo submit failed: 400")
        sleep = AsyncMock()
        poller = GenerationPoller(veo, storage, settings, sleep=sleep)

        with pytest.raises(GenerationFailed):
            await poller.generate("p", image_ref, GenerationOptions(), "k.mp4")
        sleep.assert_not_awaited()
        veo.get_operation.assert_not_awaited()
