import logging
from pathlib import Path
import sys
import time
from typing import Any

import orjson

LOG_CONFIG_PATH = Path(__file__).parent / 'log_config.json'


def load_log_config(path: Path = LOG_CONFIG_PATH) -> dict[str, Any]:
    try:
        data = orjson.loads(path.read_bytes())
    except FileNotFoundError as e:
        raise RuntimeError(f'Log config file not found: {path}') from e
    except orjson.JSONDecodeError as e:
        raise RuntimeError(f'Invalid JSON in log config file {path}: {e}') from e
    if not isinstance(data, dict):
        raise RuntimeError(f'Expected JSON object in {path}, got {type(data).__name__}')
    data['standard_fields'] = frozenset(data.get('standard_fields', ()))
    data.setdefault('quiet_loggers', [])
    return data


LOG_CONFIG: dict[str, Any] = load_log_config()


class BaseFormatter(logging.Formatter):
    def __init__(self, service_name: str, version: str, datefmt: str | None = None):
        super().__init__(datefmt=datefmt or LOG_CONFIG['datefmt'])
        self.service_name = service_name
        self.version = version
        self.standard_fields: frozenset[str] = LOG_CONFIG['standard_fields']

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        ct = self.converter(record.created)
        if datefmt:
            return time.strftime(datefmt, ct)
        return f'{time.strftime("%Y-%m-%dT%H:%M:%S", ct)}.{int(record.msecs):03d}'

    def extra_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        return {
            key: value
            for key, value in record.__dict__.items()
            if key not in self.standard_fields and not key.startswith('_')
        }


class JsonFormatter(BaseFormatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'service': self.service_name,
            'version': self.version,
            'logger': record.name,
            'message': record.getMessage(),
            **self.extra_fields(record),
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str).decode('utf-8')


class TextFormatter(BaseFormatter):
    def format(self, record: logging.LogRecord) -> str:
        suffix = ' '.join(f'[{k}={v}]' for k, v in self.extra_fields(record).items())
        message = f'{record.getMessage()} {suffix}'.strip()
        line = (
            f'{self.formatTime(record, self.datefmt)} '
            f'[{record.levelname:<8}] {record.name}: {message}'
        )
        if record.exc_info:
            line += f'\n{self.formatException(record.exc_info)}'
        return line


_FORMATTERS: dict[str, type[BaseFormatter]] = {
    'json': JsonFormatter,
    'text': TextFormatter,
}


def setup_logging(
    service_name: str,
    level: str,
    log_format: str,
    version: str,
) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter_cls = _FORMATTERS.get(log_format.lower(), TextFormatter)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter_cls(service_name=service_name, version=version))
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for logger_name in LOG_CONFIG['quiet_loggers']:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
