"""Tests for ChatStreamClient using httpx.MockTransport."""

import httpx
import pytest

from boardroom.api.client import ChatStreamClient, RetryConfig, StreamRequestError
from boardroom.api.streaming import StreamEncoder

NO_WAIT = RetryConfig(max_retries=3, base_delay=0.0, max_delay=0.0)


def _stream_body() -> bytes:
    enc = StreamEncoder()
    return b"".join([
        enc.encode_metadata({"messageId": "m1"}),
        enc.encode_content("Hello ", "mary"),
        enc.encode_content("there", "mary"),
        enc.encode_complete(limit_status={"currentCount": 1}),
        enc.encode_done(),
    ])


class TestRetryConfig:
    def test_backoff_schedule(self):
        config = RetryConfig()
        assert [config.delay_for(n) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


class TestStreamChat:
    @pytest.mark.asyncio
    async def test_decodes_frames(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/chat/stream"
            return httpx.Response(200, content=_stream_body(), headers={"content-type": "text/event-stream"})

        async with ChatStreamClient("http://test", retry=NO_WAIT, transport=httpx.MockTransport(handler)) as client:
            chunks = [c async for c in client.stream_chat({"message": "hi"})]

        assert [c.type for c in chunks] == ["metadata", "content", "content", "complete", "done"]
        assert "".join(c.content for c in chunks if c.type == "content") == "Hello there"
        assert chunks[3].limit_status == {"currentCount": 1}

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) < 3:
                return httpx.Response(503, json={"error": "unavailable"})
            return httpx.Response(200, content=_stream_body())

        retried = []
        async with ChatStreamClient("http://test", retry=NO_WAIT, transport=httpx.MockTransport(handler)) as client:
            chunks = [c async for c in client.stream_chat({"message": "hi"}, on_retry=lambda n, e: retried.append(n))]

        assert len(attempts) == 3
        assert retried == [1, 2]
        assert chunks[-1].type == "done"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            raise httpx.ConnectError("refused")

        async with ChatStreamClient("http://test", retry=NO_WAIT, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.ConnectError):
                async for _ in client.stream_chat({"message": "hi"}):
                    pass
        assert len(attempts) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors_not_retried(self, status):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(status, json={"error": "Unauthorized"})

        async with ChatStreamClient("http://test", retry=NO_WAIT, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(StreamRequestError) as exc_info:
                async for _ in client.stream_chat({"message": "hi"}):
                    pass
        assert len(attempts) == 1
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_quota_rejection_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(429, json={"error": "MESSAGE_LIMIT_REACHED"})

        async with ChatStreamClient("http://test", retry=NO_WAIT, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(StreamRequestError) as exc_info:
                async for _ in client.stream_chat({"message": "hi"}):
                    pass
        assert len(attempts) == 1
        assert exc_info.value.body == {"error": "MESSAGE_LIMIT_REACHED"}

    @pytest.mark.asyncio
    async def test_zero_retries_still_makes_one_attempt(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(503, json={"error": "unavailable"})

        retry = RetryConfig(max_retries=0, base_delay=0.0, max_delay=0.0)
        async with ChatStreamClient("http://test", retry=retry, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(StreamRequestError) as exc_info:
                async for _ in client.stream_chat({"message": "hi"}):
                    pass
        assert len(attempts) == 1
        assert exc_info.value.status_code == 503
