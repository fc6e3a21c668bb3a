from fastapi import HTTPException, Request
from google.protobuf.json_format import MessageToDict, Parse, ParseError
from google.protobuf.message import DecodeError
from opentelemetry.proto.collector.metrics.v1.metrics_service_pb2 import (
    ExportMetricsServiceRequest,
)
from pydantic import ValidationError

from influx_exporter.otlp.schemas import OTLPMetricsRequest


def _to_request_model(otlp_request: ExportMetricsServiceRequest) -> OTLPMetricsRequest:
    otlp_dict = MessageToDict(
        otlp_request,
        use_integers_for_enums=False,
        preserving_proto_field_name=True,
    )
    return OTLPMetricsRequest.model_validate(otlp_dict)


async def parse_otlp_metrics_request(request: Request) -> OTLPMetricsRequest:
    content_type = request.headers.get('content-type', '').lower()
    body = await request.body()
    otlp_request = ExportMetricsServiceRequest()

    if 'application/x-protobuf' in content_type:
        try:
            otlp_request.ParseFromString(body)
            return _to_request_model(otlp_request)
        except (DecodeError, ValidationError) as e:
            raise HTTPException(
                status_code=400, detail=f'Failed to parse OTLP/HTTP+Protobuf: {e}'
            ) from e
    if 'application/json' in content_type:
        try:
            Parse(body.decode('utf-8'), otlp_request)
            return _to_request_model(otlp_request)
        except (ParseError, UnicodeDecodeError, ValidationError) as e:
            raise HTTPException(
                status_code=400, detail=f'Failed to parse OTLP/HTTP+JSON: {e}'
            ) from e
    raise HTTPException(
        status_code=415, detail=f'Unsupported Content-Type: {content_type}'
    )
