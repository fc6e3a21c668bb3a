import logging
import math

from influx_exporter.internal.schemas import (
    AggregationKind,
    AttributeValue,
    HistogramPoint,
    MetricRecord,
    NumberPoint,
    SummaryPoint,
    ValueAtQuantile,
)
from influx_exporter.otlp.schemas import (
    HistogramDataPoint,
    KeyValue,
    Metric,
    NumberDataPoint,
    OTLPMetricsRequest,
    SummaryDataPoint,
)

logger = logging.getLogger(__name__)

Attributes = dict[str, AttributeValue]


def _parse_any_value(kv: KeyValue) -> AttributeValue | None:
    v = kv.value
    if v.string_value is not None:
        return v.string_value
    if v.bool_value is not None:
        return v.bool_value
    if v.int_value is not None:
        return int(v.int_value)
    if v.double_value is not None:
        return v.double_value
    return None


def _attributes_to_dict(attributes: list[KeyValue]) -> Attributes:
    result: Attributes = {}
    for kv in attributes:
        value = _parse_any_value(kv)
        if value is None:
            logger.debug('Dropping non-scalar attribute', extra={'attribute': kv.key})
            continue
        result[kv.key] = value
    return result


def _merge_attributes(
    resource_attrs: Attributes, attributes: list[KeyValue]
) -> Attributes:
    return {**resource_attrs, **_attributes_to_dict(attributes)}


def _convert_number_data_point(
    dp: NumberDataPoint, resource_attrs: Attributes
) -> NumberPoint:
    value: int | float
    if dp.as_int is not None:
        value = int(dp.as_int)
    elif dp.as_double is not None:
        value = dp.as_double
    else:
        value = 0

    return NumberPoint(
        value=value,
        time_nano=int(dp.time_unix_nano),
        attributes=_merge_attributes(resource_attrs, dp.attributes),
    )


def _convert_histogram_data_point(
    dp: HistogramDataPoint, resource_attrs: Attributes
) -> HistogramPoint:
    return HistogramPoint(
        sum=dp.sum if dp.sum is not None else 0.0,
        count=int(dp.count),
        min=dp.min if dp.min is not None else math.nan,
        max=dp.max if dp.max is not None else math.nan,
        boundaries=dp.explicit_bounds,
        bucket_counts=[int(bc) for bc in dp.bucket_counts],
        time_nano=int(dp.time_unix_nano),
        attributes=_merge_attributes(resource_attrs, dp.attributes),
    )


def _convert_summary_data_point(
    dp: SummaryDataPoint, resource_attrs: Attributes
) -> SummaryPoint:
    return SummaryPoint(
        sum=dp.sum,
        count=int(dp.count),
        quantile_values=[
            ValueAtQuantile(quantile=vq.quantile, value=vq.value)
            for vq in dp.quantile_values
        ],
        time_nano=int(dp.time_unix_nano),
        attributes=_merge_attributes(resource_attrs, dp.attributes),
    )


def _number_kind(
    data_points: list[NumberDataPoint],
    double_kind: AggregationKind,
    long_kind: AggregationKind,
) -> AggregationKind:
    if any(dp.as_double is not None for dp in data_points):
        return double_kind
    return long_kind


def _convert_metric(metric: Metric, resource_attrs: Attributes) -> MetricRecord | None:
    kind: AggregationKind
    data_points: list[NumberPoint] | list[HistogramPoint] | list[SummaryPoint]
    if metric.sum:
        kind = _number_kind(
            metric.sum.data_points,
            AggregationKind.DOUBLE_SUM,
            AggregationKind.LONG_SUM,
        )
        data_points = [
            _convert_number_data_point(dp, resource_attrs)
            for dp in metric.sum.data_points
        ]
    elif metric.gauge:
        kind = _number_kind(
            metric.gauge.data_points,
            AggregationKind.DOUBLE_GAUGE,
            AggregationKind.LONG_GAUGE,
        )
        data_points = [
            _convert_number_data_point(dp, resource_attrs)
            for dp in metric.gauge.data_points
        ]
    elif metric.histogram:
        kind = AggregationKind.HISTOGRAM
        data_points = [
            _convert_histogram_data_point(dp, resource_attrs)
            for dp in metric.histogram.data_points
        ]
    elif metric.summary:
        kind = AggregationKind.SUMMARY
        data_points = [
            _convert_summary_data_point(dp, resource_attrs)
            for dp in metric.summary.data_points
        ]
    elif metric.exponential_histogram:
        kind = AggregationKind.EXPONENTIAL_HISTOGRAM
        data_points = []
    else:
        logger.debug('Dropping metric without data', extra={'metric_name': metric.name})
        return None

    return MetricRecord(
        name=metric.name,
        description=metric.description,
        unit=metric.unit,
        kind=kind,
        data_points=data_points,
    )


def convert_otlp_to_records(request: OTLPMetricsRequest) -> list[MetricRecord]:
    records: list[MetricRecord] = []

    for rm in request.resource_metrics:
        resource_attrs = _attributes_to_dict(rm.resource.attributes)

        for sm in rm.scope_metrics:
            for metric in sm.metrics:
                record = _convert_metric(metric, resource_attrs)
                if record is not None:
                    records.append(record)
    return records
