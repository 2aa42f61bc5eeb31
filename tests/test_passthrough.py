"""Tests for relaying raw response bodies."""

import httpx
import pytest

from aistream.core.errors import APIError, ErrorKind
from aistream.streaming.cancellation import CancellationToken
from aistream.streaming.passthrough import relay, relay_response


class RecordingDestination:
    def __init__(self):
        self.events: list = []

    def write(self, data: bytes) -> None:
        self.events.append(("write", data))

    def flush(self) -> None:
        self.events.append(("flush",))


class AsyncDestination:
    def __init__(self):
        self.buffer = bytearray()
        self.flushes = 0

    async def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def flush(self) -> None:
        self.flushes += 1


async def chunks(*parts):
    for part in parts:
        yield part


class TestRelay:
    @pytest.mark.asyncio
    async def test_flush_after_each_chunk(self):
        dest = RecordingDestination()
        forwarded = await relay(chunks(b"data: 1\n", b"", b"data: 2\n"), dest)
        assert forwarded == 16
        assert dest.events == [
            ("write", b"data: 1\n"),
            ("flush",),
            ("write", b"data: 2\n"),
            ("flush",),
            ("flush",),
        ]

    @pytest.mark.asyncio
    async def test_async_destination(self):
        dest = AsyncDestination()
        await relay(chunks(b"ab", b"cd"), dest)
        assert bytes(dest.buffer) == b"abcd"
        assert dest.flushes == 3

    @pytest.mark.asyncio
    async def test_destination_without_flush(self):
        class Sink:
            def __init__(self):
                self.data = b""

            def write(self, data):
                self.data += data

        sink = Sink()
        assert await relay(chunks(b"xyz"), sink) == 3
        assert sink.data == b"xyz"

    @pytest.mark.asyncio
    async def test_cancel_stops_relay(self):
        token = CancellationToken()
        dest = RecordingDestination()
        original_write = dest.write

        def write(data):
            original_write(data)
            token.cancel()

        dest.write = write
        forwarded = await relay(chunks(b"one", b"two", b"three"), dest, cancel=token)
        assert forwarded == 3
        assert [e for e in dest.events if e[0] == "write"] == [("write", b"one")]
        assert dest.events[-1] == ("flush",)

    @pytest.mark.asyncio
    async def test_source_fault_propagates(self):
        async def broken():
            yield b"ok"
            raise ConnectionResetError("gone")

        dest = RecordingDestination()
        with pytest.raises(ConnectionResetError):
            await relay(broken(), dest)
        assert dest.events[0] == ("write", b"ok")


class TestRelayResponse:
    @pytest.mark.asyncio
    async def test_bytes_unchanged(self):
        body = b"data: {\"a\": 1}\n\ndata: [DONE]\n\n"
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))
        dest = AsyncDestination()
        async with httpx.AsyncClient(transport=transport) as http:
            async with http.stream("GET", "https://api.test/events") as response:
                forwarded = await relay_response(response, dest)
        assert bytes(dest.buffer) == body
        assert forwarded == len(body)

    @pytest.mark.asyncio
    async def test_transport_error_classified(self):
        class BrokenStream(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield b"data: 1\n"
                raise httpx.ReadError("reset")

        transport = httpx.MockTransport(lambda request: httpx.Response(200, stream=BrokenStream()))
        dest = RecordingDestination()
        async with httpx.AsyncClient(transport=transport) as http:
            async with http.stream("GET", "https://api.test/events") as response:
                with pytest.raises(APIError) as exc_info:
                    await relay_response(response, dest)
        assert exc_info.value.kind is ErrorKind.CONNECTION
