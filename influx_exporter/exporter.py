from collections.abc import Iterable
from enum import Enum
import logging

from influx_exporter.config import settings
from influx_exporter.internal.schemas import MetricRecord
from influx_exporter.transformer import MetricTransformer
from influx_exporter.write_client import (
    InfluxWriteClient,
    InfluxWriteError,
    influx_write_client,
)

logger = logging.getLogger(__name__)


class ExportResult(str, Enum):
    SUCCESS = 'success'
    FAILURE = 'failure'


class MetricsExporter:
    """Pushes metric records of one export cycle to InfluxDB."""

    def __init__(
        self,
        client: InfluxWriteClient,
        transformer: MetricTransformer | None = None,
    ) -> None:
        self.client = client
        self.transformer = transformer or MetricTransformer()

    async def start(self) -> None:
        await self.client.start()

    async def export(self, records: Iterable[MetricRecord]) -> ExportResult:
        points = self.transformer.transform(records)
        if not points:
            return ExportResult.SUCCESS
        try:
            await self.client.write_points(points)
        except InfluxWriteError as e:
            logger.error(
                'Failed to export metrics',
                extra={'points': len(points), 'error': str(e)},
            )
            return ExportResult.FAILURE
        logger.debug('Metrics exported', extra={'points': len(points)})
        return ExportResult.SUCCESS

    async def flush(self) -> ExportResult:
        try:
            await self.client.flush()
        except InfluxWriteError as e:
            logger.error('Failed to flush metrics', extra={'error': str(e)})
            return ExportResult.FAILURE
        return ExportResult.SUCCESS

    async def shutdown(self) -> ExportResult:
        try:
            await self.client.close()
        except InfluxWriteError as e:
            logger.error('Metrics lost on shutdown', extra={'error': str(e)})
            return ExportResult.FAILURE
        return ExportResult.SUCCESS


metrics_exporter = MetricsExporter(
    influx_write_client,
    MetricTransformer(emit_histogram_buckets=settings.EMIT_HISTOGRAM_BUCKETS),
)
