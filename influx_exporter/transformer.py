from collections.abc import Callable, Iterable, Iterator, Mapping
from decimal import Decimal
import logging
import math
from typing import Any

from influx_exporter.internal.schemas import (
    NUMBER_KINDS,
    AggregationKind,
    AttributeValue,
    HistogramPoint,
    MetricRecord,
    NumberPoint,
    Point,
    SummaryPoint,
)

logger = logging.getLogger(__name__)

VALUE_FIELD = 'value'
SUM_FIELD = 'sum'
COUNT_FIELD = 'count'
MIN_FIELD = 'min'
MAX_FIELD = 'max'
QUANTILE_FIELD = 'quantile'

BUCKET_MEASUREMENT_SUFFIX = '_bucket'
BUCKET_BOUND_TAG = 'le'


def _format_attribute(value: AttributeValue) -> str:
    # bool is an int subclass, check it first
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and math.isfinite(value):
        # positional notation, never an exponent
        return format(Decimal(repr(value)), 'f')
    return str(value)


def to_tags(attributes: Mapping[str, AttributeValue]) -> dict[str, str]:
    return {key: _format_attribute(attributes[key]) for key in sorted(attributes)}


def _expand_number(name: str, dp: NumberPoint) -> Iterator[Point]:
    yield Point(
        measurement=name,
        fields={VALUE_FIELD: dp.value},
        tags=to_tags(dp.attributes),
        time_nano=dp.time_nano,
    )


def _expand_histogram_stats(name: str, dp: HistogramPoint) -> Iterator[Point]:
    yield Point(
        measurement=name,
        fields={
            SUM_FIELD: dp.sum,
            COUNT_FIELD: dp.count,
            MIN_FIELD: dp.min,
            MAX_FIELD: dp.max,
        },
        tags=to_tags(dp.attributes),
        time_nano=dp.time_nano,
    )


def _expand_histogram_buckets(name: str, dp: HistogramPoint) -> Iterator[Point]:
    tags = to_tags(dp.attributes)
    bounds = [str(bound) for bound in dp.boundaries] + ['+Inf']
    cumulative = 0
    for bound, count in zip(bounds, dp.bucket_counts, strict=False):
        cumulative += count
        yield Point(
            measurement=name + BUCKET_MEASUREMENT_SUFFIX,
            fields={COUNT_FIELD: cumulative},
            tags={**tags, BUCKET_BOUND_TAG: bound},
            time_nano=dp.time_nano,
        )


def _expand_summary(name: str, dp: SummaryPoint) -> Iterator[Point]:
    tags = to_tags(dp.attributes)
    yield Point(
        measurement=name,
        fields={SUM_FIELD: dp.sum, COUNT_FIELD: dp.count},
        tags=tags,
        time_nano=dp.time_nano,
    )
    for vq in dp.quantile_values:
        yield Point(
            measurement=name,
            fields={VALUE_FIELD: vq.value, QUANTILE_FIELD: vq.quantile},
            tags=dict(tags),
            time_nano=dp.time_nano,
        )


class MetricTransformer:
    """Expands metric records into InfluxDB points.

    Stateless apart from its construction options, so one instance can be
    shared across concurrent export cycles.
    """

    def __init__(self, emit_histogram_buckets: bool = False) -> None:
        self.emit_histogram_buckets = emit_histogram_buckets

    def _expand_histogram(self, name: str, dp: HistogramPoint) -> Iterator[Point]:
        yield from _expand_histogram_stats(name, dp)
        if self.emit_histogram_buckets:
            yield from _expand_histogram_buckets(name, dp)

    def _expand_record(self, record: MetricRecord) -> Iterator[Point]:
        expand: Callable[[str, Any], Iterator[Point]]
        if record.kind in NUMBER_KINDS:
            expand = _expand_number
        elif record.kind == AggregationKind.HISTOGRAM:
            expand = self._expand_histogram
        elif record.kind == AggregationKind.SUMMARY:
            expand = _expand_summary
        else:
            logger.debug(
                'Skipping metric with unsupported aggregation kind',
                extra={'metric_name': record.name, 'kind': record.kind.value},
            )
            return

        for dp in record.data_points:
            yield from expand(record.name, dp)

    def iter_points(self, records: Iterable[MetricRecord]) -> Iterator[Point]:
        for record in records:
            yield from self._expand_record(record)

    def transform(self, records: Iterable[MetricRecord]) -> list[Point]:
        return list(self.iter_points(records))


_default_transformer = MetricTransformer()


def transform(records: Iterable[MetricRecord]) -> list[Point]:
    return _default_transformer.transform(records)
