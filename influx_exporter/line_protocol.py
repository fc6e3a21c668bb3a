"""InfluxDB line protocol encoding for transformed points.

Only what the write client needs: nanosecond precision, one line per point.
"""

from collections.abc import Iterable
import logging
import math

from influx_exporter.internal.schemas import FieldValue, Point

logger = logging.getLogger(__name__)

_MEASUREMENT_ESCAPES = str.maketrans({',': r'\,', ' ': r'\ ', '\n': r'\n'})
_KEY_ESCAPES = str.maketrans(
    {'\\': '\\\\', ',': r'\,', '=': r'\=', ' ': r'\ ', '\n': r'\n'}
)
_STRING_ESCAPES = str.maketrans({'\\': '\\\\', '"': r'\"'})


def _escape_key(value: str) -> str:
    return value.translate(_KEY_ESCAPES)


def _format_field_value(value: FieldValue) -> str | None:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, int):
        return f'{value}i'
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return repr(value)
    return f'"{value.translate(_STRING_ESCAPES)}"'


def encode_point(point: Point) -> str | None:
    fields = []
    for key, value in point.fields.items():
        formatted = _format_field_value(value)
        if formatted is not None:
            fields.append(f'{_escape_key(key)}={formatted}')
    if not fields:
        return None

    key = point.measurement.translate(_MEASUREMENT_ESCAPES)
    for tag_key, tag_value in point.tags.items():
        if tag_key and tag_value:
            key += f',{_escape_key(tag_key)}={_escape_key(tag_value)}'
    return f'{key} {",".join(fields)} {point.time_nano}'


def encode_points(points: Iterable[Point]) -> list[str]:
    lines = []
    for point in points:
        line = encode_point(point)
        if line is None:
            logger.debug(
                'Skipping point without finite fields',
                extra={'measurement': point.measurement},
            )
            continue
        lines.append(line)
    return lines
