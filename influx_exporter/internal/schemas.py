from enum import Enum
from typing import Self

from pydantic import BaseModel, ConfigDict, model_validator

AttributeValue = str | bool | int | float
FieldValue = bool | int | float | str


class AggregationKind(str, Enum):
    DOUBLE_GAUGE = 'double_gauge'
    LONG_GAUGE = 'long_gauge'
    DOUBLE_SUM = 'double_sum'
    LONG_SUM = 'long_sum'
    HISTOGRAM = 'histogram'
    SUMMARY = 'summary'
    EXPONENTIAL_HISTOGRAM = 'exponential_histogram'


NUMBER_KINDS = frozenset(
    {
        AggregationKind.DOUBLE_GAUGE,
        AggregationKind.LONG_GAUGE,
        AggregationKind.DOUBLE_SUM,
        AggregationKind.LONG_SUM,
    }
)


class NumberPoint(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')

    value: int | float
    time_nano: int
    attributes: dict[str, AttributeValue] = {}


class HistogramPoint(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')

    sum: float
    count: int
    min: float
    max: float
    boundaries: list[float] = []
    bucket_counts: list[int] = []
    time_nano: int
    attributes: dict[str, AttributeValue] = {}

    @model_validator(mode='after')
    def _check_buckets(self) -> Self:
        if self.bucket_counts and len(self.bucket_counts) != len(self.boundaries) + 1:
            raise ValueError(
                f'Expected {len(self.boundaries) + 1} bucket counts '
                f'for {len(self.boundaries)} boundaries, got {len(self.bucket_counts)}'
            )
        return self


class ValueAtQuantile(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')

    quantile: float
    value: float


class SummaryPoint(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')

    sum: float
    count: int
    quantile_values: list[ValueAtQuantile] = []
    time_nano: int
    attributes: dict[str, AttributeValue] = {}


_POINT_TYPE_BY_KIND: dict[AggregationKind, type[BaseModel]] = {
    **{kind: NumberPoint for kind in NUMBER_KINDS},
    AggregationKind.HISTOGRAM: HistogramPoint,
    AggregationKind.SUMMARY: SummaryPoint,
}


class MetricRecord(BaseModel):
    """One sampled metric of a single export cycle.

    ``data_points`` must hold the point variant matching ``kind``. Kinds
    without a registered variant (``exponential_histogram``) accept any
    variant; the transformer does not expand them.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ''
    unit: str = ''
    kind: AggregationKind
    data_points: list[NumberPoint] | list[HistogramPoint] | list[SummaryPoint] = []

    @model_validator(mode='after')
    def _check_point_variant(self) -> Self:
        expected = _POINT_TYPE_BY_KIND.get(self.kind)
        if expected is None:
            return self
        for dp in self.data_points:
            if not isinstance(dp, expected):
                raise ValueError(
                    f'{self.kind.value} metric {self.name!r} expects '
                    f'{expected.__name__} data points, got {type(dp).__name__}'
                )
        return self


class Point(BaseModel):
    model_config = ConfigDict(frozen=True)

    measurement: str
    fields: dict[str, FieldValue]
    tags: dict[str, str] = {}
    time_nano: int

    @model_validator(mode='after')
    def _check_fields(self) -> Self:
        if not self.fields:
            raise ValueError(f'Point {self.measurement!r} must have at least one field')
        return self
