import logging

from fastapi import APIRouter, Depends, HTTPException

from influx_exporter.converters import convert_otlp_to_records
from influx_exporter.exporter import ExportResult, MetricsExporter, metrics_exporter
from influx_exporter.otlp.dependencies import parse_otlp_metrics_request
from influx_exporter.otlp.schemas import OTLPMetricsRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix='/v1')


def get_exporter() -> MetricsExporter:
    return metrics_exporter


@router.post('/metrics')
async def ingest_metrics(
    request: OTLPMetricsRequest = Depends(parse_otlp_metrics_request),  # noqa: B008
    exporter: MetricsExporter = Depends(get_exporter),  # noqa: B008
) -> dict[str, int]:
    try:
        records = convert_otlp_to_records(request)
    except ValueError as e:
        logger.warning('Rejected OTLP metrics payload', extra={'error': str(e)})
        raise HTTPException(status_code=400, detail=f'Invalid OTLP data: {e}') from None

    result = await exporter.export(records)
    if result is ExportResult.FAILURE:
        raise HTTPException(
            status_code=503, detail='Failed to write metrics to InfluxDB'
        )
    return {'received': len(records)}
