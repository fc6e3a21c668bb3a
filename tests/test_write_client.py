import asyncio

import aiohttp
import pytest

from influx_exporter.internal.schemas import Point
from influx_exporter.write_client import (
    BufferOverflowError,
    FlushError,
    InfluxWriteClient,
    OverflowPolicy,
    WriteOptions,
)


def _points(n: int, start: int = 0) -> list[Point]:
    return [
        Point(measurement='m', fields={'value': i}, time_nano=i)
        for i in range(start, start + n)
    ]


def _line(i: int) -> str:
    return f'm value={i}i {i}'


class TestBatching:
    async def test_full_batch_is_sent_in_background(self, make_client):
        client = await make_client(batch_size=3)
        await client.write_points(_points(2))
        await asyncio.sleep(0.01)
        assert client.bodies == []
        assert client.buffered == 2

        await client.write_points(_points(2, start=2))
        await client.wait_for_posts(1)
        assert client.bodies[0] == '\n'.join(_line(i) for i in range(3))

    async def test_flush_interval_sends_partial_batches(self, make_client):
        client = await make_client(batch_size=100, flush_interval_ms=10)
        await client.write_points(_points(1))
        await client.wait_for_posts(1)
        assert client.sent_lines == [_line(0)]

    async def test_write_does_not_wait_for_slow_sends(self, make_client):
        client = await make_client(batch_size=1, delay=0.5)
        await client.write_points(_points(1))
        await client.wait_for_posts(1)
        async with asyncio.timeout(0.1):
            await client.write_points(_points(1, start=1))
        assert client.buffered == 1

    async def test_flush_sends_partial_batches(self, make_client):
        client = await make_client(batch_size=2)
        await client.write_points(_points(1))
        await client.flush()
        assert client.sent_lines == [_line(0)]
        assert client.buffered == 0

    async def test_flush_splits_into_batches(self, make_client):
        client = await make_client(batch_size=100)
        await client.write_points(_points(5))
        client.options = client.options.model_copy(update={'batch_size': 2})
        await client.flush()
        assert [body.count('\n') + 1 for body in client.bodies] == [2, 2, 1]

    async def test_write_before_start_raises(self):
        client = InfluxWriteClient('http://localhost:8086', 't', 'o', 'b')
        with pytest.raises(RuntimeError):
            await client.write_points(_points(1))

    async def test_skips_points_without_finite_fields(self, make_client):
        client = await make_client(batch_size=1)
        await client.write_points(
            [Point(measurement='m', fields={'value': float('nan')}, time_nano=1)]
        )
        assert client.buffered == 0
        await client.flush()
        assert client.bodies == []


class TestRetries:
    async def test_retries_retryable_status(self, make_client):
        client = await make_client([503, 429], batch_size=10, max_retries=3)
        await client.write_points(_points(1))
        await client.flush()
        assert len(client.bodies) == 3
        assert client.delivered == [_line(0)]

    async def test_retries_connection_errors(self, make_client):
        client = await make_client(
            [aiohttp.ClientConnectionError('refused')], batch_size=10
        )
        await client.write_points(_points(1))
        await client.flush()
        assert len(client.bodies) == 2

    async def test_gives_up_after_max_retries(self, make_client):
        client = await make_client([500, 500, 500], batch_size=10, max_retries=2)
        await client.write_points(_points(1))
        with pytest.raises(FlushError):
            await client.flush()
        assert len(client.bodies) == 3
        assert client.buffered == 0

    async def test_rejected_batch_is_not_retried(self, make_client):
        client = await make_client([400], batch_size=5)
        await client.write_points(_points(3))
        with pytest.raises(FlushError):
            await client.flush()
        assert len(client.bodies) == 1

    async def test_failed_batch_keeps_rest_buffered(self, make_client):
        client = await make_client(batch_size=10)
        await client.write_points(_points(3))
        client.options = client.options.model_copy(update={'batch_size': 1})
        client.statuses = [401]
        with pytest.raises(FlushError):
            await client.flush()
        assert client.buffered == 2
        await client.flush()
        assert client.sent_lines[-2:] == [_line(1), _line(2)]

    async def test_background_failure_is_reported_by_flush(self, make_client):
        client = await make_client([400], batch_size=1)
        await client.write_points(_points(1))
        await client.wait_for_posts(1)
        with pytest.raises(FlushError):
            await client.flush()
        await client.flush()

    async def test_flush_loop_survives_unexpected_errors(self, make_client):
        client = await make_client(
            [RuntimeError('transport bug')], batch_size=100, flush_interval_ms=10
        )
        await client.write_points(_points(1))
        await client.wait_for_posts(1)
        await client.write_points(_points(1, start=1))
        await client.wait_for_posts(2)
        assert client.delivered == [_line(1)]

    def test_retry_delay_is_exponential_and_capped(self):
        client = InfluxWriteClient(
            'http://localhost:8086',
            't',
            'o',
            'b',
            WriteOptions(
                retry_interval_ms=1000, exponential_base=2, max_retry_delay_ms=5000
            ),
        )
        assert client._retry_delay(1, None) == 1.0
        assert client._retry_delay(2, None) == 2.0
        assert client._retry_delay(3, None) == 4.0
        assert client._retry_delay(4, None) == 5.0
        assert client._retry_delay(1, 7.5) == 7.5


class TestOverflow:
    async def test_drop_oldest(self, make_client):
        client = await make_client(batch_size=10, buffer_limit=3)
        await client.write_points(_points(5))
        await client.flush()
        assert client.sent_lines == [_line(2), _line(3), _line(4)]

    async def test_drop_latest(self, make_client):
        client = await make_client(
            batch_size=10, buffer_limit=3, overflow_policy=OverflowPolicy.DROP_LATEST
        )
        await client.write_points(_points(5))
        await client.flush()
        assert client.sent_lines == [_line(0), _line(1), _line(2)]

    async def test_error_policy(self, make_client):
        client = await make_client(
            batch_size=10, buffer_limit=3, overflow_policy=OverflowPolicy.ERROR
        )
        await client.write_points(_points(2))
        with pytest.raises(BufferOverflowError):
            await client.write_points(_points(2, start=2))
        assert client.buffered == 2


class TestClientLifecycle:
    async def test_start_is_idempotent(self, make_client):
        client = await make_client()
        session = client._session
        await client.start()
        assert client._session is session

    async def test_close_flushes_remaining_points(self, make_client):
        client = await make_client(batch_size=10)
        await client.write_points(_points(3))
        await client.close()
        assert client.delivered == ['\n'.join(_line(i) for i in range(3))]

    async def test_close_waits_for_in_flight_batch(self, make_client):
        client = await make_client(batch_size=100, flush_interval_ms=10, delay=0.2)
        await client.write_points(_points(1))
        await client.wait_for_posts(1)
        await client.close()
        assert client.delivered == [_line(0)]
        assert client.buffered == 0

    async def test_cancelled_send_returns_batch_to_buffer(self, make_client):
        client = await make_client(batch_size=100, delay=0.5)
        await client.write_points(_points(2))
        flush = asyncio.create_task(client.flush())
        await client.wait_for_posts(1)
        flush.cancel()
        await asyncio.gather(flush, return_exceptions=True)
        assert client.buffered == 2
        client.delay = 0.0
        await client.flush()
        assert client.delivered == [f'{_line(0)}\n{_line(1)}']

    async def test_close_raises_when_final_flush_fails(self, make_client):
        client = await make_client([400], batch_size=10)
        await client.write_points(_points(1))
        with pytest.raises(FlushError):
            await client.close()
        assert client._session is None
        assert client.buffered == 0

    def test_request_target(self):
        client = InfluxWriteClient('http://influx:8086/', 't', 'o', 'b')
        assert client.write_url == 'http://influx:8086/api/v2/write'

    def test_options_defaults(self):
        options = WriteOptions()
        assert options.batch_size == 1000
        assert options.flush_interval_ms == 1000
        assert options.max_retries == 5
        assert options.overflow_policy is OverflowPolicy.DROP_OLDEST
