from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
import uvicorn

from influx_exporter.config import settings
from influx_exporter.exporter import metrics_exporter
from influx_exporter.log_config_loader import setup_logging
from influx_exporter.router import router as metrics_router

setup_logging(
    service_name=settings.SERVICE_NAME,
    level=settings.LOG_LEVEL,
    log_format=settings.LOG_FORMAT,
    version=settings.SERVICE_VERSION,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await metrics_exporter.start()
    logger.info('Exporter started')
    try:
        yield
    finally:
        logger.info('Shutting down...')
        result = await metrics_exporter.shutdown()
        logger.info('Shutdown complete', extra={'result': result.value})


app = FastAPI(lifespan=lifespan)


@app.get('/health')
async def health_check() -> dict[str, str]:
    logger.debug('Health check...')
    return {'status': 'ok'}


app.include_router(metrics_router)


def main() -> None:
    uvicorn.run(
        'influx_exporter.main:app',
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_RELOAD,
    )


if __name__ == '__main__':
    main()
