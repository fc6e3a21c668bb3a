from typing import Literal

from pydantic_settings import BaseSettings

OverflowPolicyName = Literal['drop_oldest', 'drop_latest', 'error']


class Settings(BaseSettings):
    model_config = {
        'extra': 'ignore',
        'env_file': '.env',
        'env_file_encoding': 'utf-8',
        'frozen': True,
    }

    API_HOST: str = '0.0.0.0'
    API_PORT: int = 4318
    API_RELOAD: bool = False

    SERVICE_NAME: str = 'influx-exporter'
    SERVICE_VERSION: str = '0.1.0'
    LOG_LEVEL: str = 'INFO'
    LOG_FORMAT: str = 'json'

    INFLUX_ENDPOINT: str = 'http://localhost:8086'
    INFLUX_TOKEN: str = 'dummy_token'
    INFLUX_ORG: str = 'default'
    INFLUX_BUCKET: str = 'default'

    INFLUX_BATCH_SIZE: int = 1000
    INFLUX_FLUSH_INTERVAL_MS: int = 1000
    INFLUX_JITTER_INTERVAL_MS: int = 0
    INFLUX_RETRY_INTERVAL_MS: int = 5000
    INFLUX_MAX_RETRIES: int = 5
    INFLUX_MAX_RETRY_DELAY_MS: int = 125_000
    INFLUX_MAX_RETRY_TIME_MS: int = 180_000
    INFLUX_EXPONENTIAL_BASE: int = 2
    INFLUX_BUFFER_LIMIT: int = 10_000
    INFLUX_OVERFLOW_POLICY: OverflowPolicyName = 'drop_oldest'
    INFLUX_TIMEOUT_MS: int = 10_000

    EMIT_HISTOGRAM_BUCKETS: bool = False


settings = Settings()
