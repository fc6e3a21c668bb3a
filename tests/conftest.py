import asyncio
from collections.abc import AsyncGenerator
import contextlib

import pytest

from influx_exporter.internal.schemas import (
    AggregationKind,
    HistogramPoint,
    MetricRecord,
    NumberPoint,
    SummaryPoint,
    ValueAtQuantile,
)
from influx_exporter.write_client import (
    InfluxWriteClient,
    InfluxWriteError,
    WriteOptions,
)

ATTRIBUTES = {'k': 'v'}
TIMESTAMP = 200


@pytest.fixture
def double_gauge() -> MetricRecord:
    return MetricRecord(
        name='double_gauge_test',
        kind=AggregationKind.DOUBLE_GAUGE,
        data_points=[NumberPoint(value=1.0, time_nano=TIMESTAMP, attributes=ATTRIBUTES)],
    )


@pytest.fixture
def long_sum() -> MetricRecord:
    return MetricRecord(
        name='long_sum_test',
        kind=AggregationKind.LONG_SUM,
        data_points=[NumberPoint(value=3, time_nano=TIMESTAMP, attributes=ATTRIBUTES)],
    )


@pytest.fixture
def histogram() -> MetricRecord:
    dp = HistogramPoint(
        sum=5.0,
        count=10,
        min=5.0,
        max=5.0,
        boundaries=[1.0, 10.0],
        bucket_counts=[2, 5, 3],
        time_nano=TIMESTAMP,
        attributes=ATTRIBUTES,
    )
    return MetricRecord(
        name='histogram_test', kind=AggregationKind.HISTOGRAM, data_points=[dp, dp]
    )


@pytest.fixture
def summary() -> MetricRecord:
    return MetricRecord(
        name='summary_test',
        kind=AggregationKind.SUMMARY,
        data_points=[
            SummaryPoint(
                sum=6,
                count=6,
                quantile_values=[ValueAtQuantile(quantile=6.0, value=6.0)],
                time_nano=TIMESTAMP,
                attributes=ATTRIBUTES,
            )
        ],
    )


@pytest.fixture
def exponential_histogram() -> MetricRecord:
    return MetricRecord(
        name='exponential_histogram_test',
        kind=AggregationKind.EXPONENTIAL_HISTOGRAM,
    )


class FakeWriteClient(InfluxWriteClient):
    """Write client whose transport answers from a scripted list of statuses."""

    def __init__(
        self,
        statuses: list[int | Exception] | None = None,
        delay: float = 0.0,
        **options,
    ) -> None:
        super().__init__(
            endpoint='http://influx.test:8086/',
            token='test-token',
            org='test-org',
            bucket='test-bucket',
            options=WriteOptions(
                **{'flush_interval_ms': 0, 'retry_interval_ms': 0, **options}
            ),
        )
        self.statuses: list[int | Exception] = list(statuses or [])
        self.delay = delay
        self.bodies: list[str] = []
        self.delivered: list[str] = []
        self.retry_after: float | None = None

    async def _post(self, body: bytes) -> tuple[int, float | None, str]:
        text = body.decode('utf-8')
        self.bodies.append(text)
        status = self.statuses.pop(0) if self.statuses else 204
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(status, Exception):
            raise status
        if status < 300:
            self.delivered.append(text)
        return status, self.retry_after, '' if status < 300 else 'error'

    @property
    def sent_lines(self) -> list[str]:
        return [line for body in self.bodies for line in body.split('\n')]

    async def wait_for_posts(self, count: int, timeout: float = 1.0) -> None:
        async with asyncio.timeout(timeout):
            while len(self.bodies) < count:
                await asyncio.sleep(0.001)


@pytest.fixture
async def make_client() -> AsyncGenerator:
    clients: list[FakeWriteClient] = []

    async def factory(statuses: list | None = None, **options) -> FakeWriteClient:
        client = FakeWriteClient(statuses, **options)
        await client.start()
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.statuses.clear()
        with contextlib.suppress(InfluxWriteError):
            await client.close()
