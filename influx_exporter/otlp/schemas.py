from typing import Any

from pydantic import BaseModel

# Field names follow MessageToDict(preserving_proto_field_name=True): 64-bit
# integers arrive as strings and zero values are omitted.


class AnyValue(BaseModel):
    string_value: str | None = None
    bool_value: bool | None = None
    int_value: str | None = None
    double_value: float | None = None
    array_value: dict[str, Any] | None = None
    kvlist_value: dict[str, Any] | None = None
    bytes_value: str | None = None


class KeyValue(BaseModel):
    key: str
    value: AnyValue = AnyValue()


class NumberDataPoint(BaseModel):
    attributes: list[KeyValue] = []
    start_time_unix_nano: str | None = None
    time_unix_nano: str = '0'
    as_int: str | None = None
    as_double: float | None = None


class HistogramDataPoint(BaseModel):
    attributes: list[KeyValue] = []
    start_time_unix_nano: str | None = None
    time_unix_nano: str = '0'
    count: str = '0'
    sum: float | None = None
    bucket_counts: list[str] = []
    explicit_bounds: list[float] = []
    min: float | None = None
    max: float | None = None


class ValueAtQuantile(BaseModel):
    quantile: float = 0.0
    value: float = 0.0


class SummaryDataPoint(BaseModel):
    attributes: list[KeyValue] = []
    start_time_unix_nano: str | None = None
    time_unix_nano: str = '0'
    count: str = '0'
    sum: float = 0.0
    quantile_values: list[ValueAtQuantile] = []


class Sum(BaseModel):
    data_points: list[NumberDataPoint] = []
    aggregation_temporality: str | None = None
    is_monotonic: bool = False


class Gauge(BaseModel):
    data_points: list[NumberDataPoint] = []


class Histogram(BaseModel):
    data_points: list[HistogramDataPoint] = []
    aggregation_temporality: str | None = None


class ExponentialHistogram(BaseModel):
    data_points: list[dict[str, Any]] = []
    aggregation_temporality: str | None = None


class Summary(BaseModel):
    data_points: list[SummaryDataPoint] = []


class Metric(BaseModel):
    name: str
    description: str = ''
    unit: str = ''
    sum: Sum | None = None
    gauge: Gauge | None = None
    histogram: Histogram | None = None
    exponential_histogram: ExponentialHistogram | None = None
    summary: Summary | None = None


class ScopeMetrics(BaseModel):
    scope: dict[str, Any] | None = None
    metrics: list[Metric] = []


class Resource(BaseModel):
    attributes: list[KeyValue] = []


class ResourceMetrics(BaseModel):
    resource: Resource = Resource()
    scope_metrics: list[ScopeMetrics] = []


class OTLPMetricsRequest(BaseModel):
    resource_metrics: list[ResourceMetrics] = []
