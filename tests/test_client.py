"""Tests for the async render API client.

HOW: Every test runs RenderClient against an httpx.MockTransport handler
that plays the server's part, and asyncio.sleep is patched so polling
backoff costs no wall-clock time.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from autocaps.api import JobSnapshot, JobWatchTimeoutError, RenderAPIError, RenderClient


def _job(status, progress=0.0, **extra):
    data = {"id": "job1", "upload_id": "upl_1", "status": status, "progress": progress, "style": "karaoke"}
    data.update(extra)
    return data


def _sse(*jobs):
    body = ": keep-alive\n\n" + "".join("data: {}\n\n".format(json.dumps(j)) for j in jobs)
    return httpx.Response(200, content=body.encode(), headers={"Content-Type": "text/event-stream"})


def _run(coro_factory, handler):
    async def _main():
        async with RenderClient("http://api.test", transport=httpx.MockTransport(handler)) as client:
            return await coro_factory(client)

    return asyncio.run(_main())


class TestRequests:

    def test_submit_render(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"id": "job1", "status": "queued"})

        job_id = _run(lambda c: c.submit_render({"upload_id": "upl_1"}), handler)

        assert job_id == "job1"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/renders"
        assert json.loads(seen[0].content) == {"upload_id": "upl_1"}

    def test_submit_error(self):
        handler = lambda request: httpx.Response(422, text="Provide exactly one of segments or transcript")
        with pytest.raises(RenderAPIError) as excinfo:
            _run(lambda c: c.submit_render({}), handler)
        assert excinfo.value.status_code == 422
        assert "exactly one" in str(excinfo.value)

    def test_get_status(self):
        handler = lambda request: httpx.Response(200, json=_job("done", 1.0, download_url="https://cdn/x.mp4"))
        snapshot = _run(lambda c: c.get_status("job1"), handler)
        assert snapshot == JobSnapshot(
            id="job1", status="done", progress=1.0, upload_id="upl_1", style="karaoke",
            download_url="https://cdn/x.mp4",
        )
        assert snapshot.is_terminal

    def test_requires_context_manager(self):
        with pytest.raises(RuntimeError, match="async context manager"):
            asyncio.run(RenderClient().get_status("job1"))


class TestStreamEvents:

    def test_parses_data_lines_only(self):
        handler = lambda request: _sse(_job("processing", 0.25), _job("done", 1.0))

        async def collect(client):
            return [s async for s in client.stream_events("job1")]

        snapshots = _run(collect, handler)
        assert [(s.status, s.progress) for s in snapshots] == [("processing", 0.25), ("done", 1.0)]

    def test_error_status_raises(self):
        handler = lambda request: httpx.Response(404, text="Job not found: job1")

        async def collect(client):
            return [s async for s in client.stream_events("job1")]

        with pytest.raises(RenderAPIError, match="404"):
            _run(collect, handler)


class TestWatch:

    def test_follows_event_stream(self):
        updates = []
        handler = lambda request: _sse(_job("queued"), _job("processing", 0.5), _job("done", 1.0))

        final = _run(lambda c: c.watch("job1", on_update=updates.append), handler)

        assert final.status == "done"
        assert [u.status for u in updates] == ["queued", "processing", "done"]

    def test_falls_back_to_polling_when_stream_unavailable(self):
        statuses = iter([_job("processing", 0.4), _job("failed", 0.4, error="boom")])

        def handler(request):
            if request.url.path.endswith("/events"):
                return httpx.Response(404, text="Not Found")
            return httpx.Response(200, json=next(statuses))

        with patch("autocaps.api.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
            final = _run(lambda c: c.watch("job1"), handler)

        assert final.status == "failed"
        assert final.error == "boom"
        sleep.assert_awaited_once_with(2.0)

    def test_falls_back_when_stream_ends_early(self):
        def handler(request):
            if request.url.path.endswith("/events"):
                return _sse(_job("processing", 0.1))
            return httpx.Response(200, json=_job("done", 1.0))

        with patch("autocaps.api.client.asyncio.sleep", new_callable=AsyncMock):
            final = _run(lambda c: c.watch("job1"), handler)
        assert final.status == "done"

    def test_polling_backoff_grows(self):
        statuses = iter([_job("processing")] * 4 + [_job("done", 1.0)])

        def handler(request):
            if request.url.path.endswith("/events"):
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json=next(statuses))

        with patch("autocaps.api.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
            _run(lambda c: c.watch("job1"), handler)

        assert [call.args[0] for call in sleep.await_args_list] == [2.0, 3.0, 4.5, 6.75]

    def test_times_out(self):
        def handler(request):
            if request.url.path.endswith("/events"):
                return _sse(_job("processing", 0.1))
            return httpx.Response(200, json=_job("processing", 0.2))

        with patch("autocaps.api.client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(JobWatchTimeoutError, match="job1"):
                _run(lambda c: c.watch("job1", max_wait_s=-1), handler)

    def test_keep_alive_only_stream_bounded_by_max_wait(self):
        class _KeepAliveOnly(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield b": keep-alive\n\n"
                await asyncio.Event().wait()

        def handler(request):
            if request.url.path.endswith("/events"):
                return httpx.Response(200, stream=_KeepAliveOnly(), headers={"Content-Type": "text/event-stream"})
            return httpx.Response(200, json=_job("done", 1.0))

        async def _main():
            async with RenderClient("http://api.test", transport=httpx.MockTransport(handler)) as client:
                return await asyncio.wait_for(client.watch("job1", max_wait_s=0.2), timeout=5)

        with patch("autocaps.api.client.asyncio.sleep", new_callable=AsyncMock):
            final = asyncio.run(_main())
        assert final.status == "done"

    def test_unknown_job_propagates(self):
        handler = lambda request: httpx.Response(404, text="Job not found: job1")
        with patch("autocaps.api.client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(RenderAPIError) as excinfo:
                _run(lambda c: c.watch("job1"), handler)
        assert excinfo.value.status_code == 404
