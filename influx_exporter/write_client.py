import asyncio
from collections import deque
from collections.abc import Iterable
from enum import Enum
import logging
import random
import time

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from influx_exporter.config import settings
from influx_exporter.internal.schemas import Point
from influx_exporter.line_protocol import encode_points

logger = logging.getLogger(__name__)


class OverflowPolicy(str, Enum):
    DROP_OLDEST = 'drop_oldest'
    DROP_LATEST = 'drop_latest'
    ERROR = 'error'


class WriteOptions(BaseModel):
    """Batching and retry behaviour of :class:`InfluxWriteClient`.

    Durations are in milliseconds. A ``flush_interval_ms`` of 0 disables the
    background flush; points are then only sent on full batches or on an
    explicit :meth:`InfluxWriteClient.flush`.
    """

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=1000, gt=0)
    flush_interval_ms: int = Field(default=1000, ge=0)
    jitter_interval_ms: int = Field(default=0, ge=0)
    retry_interval_ms: int = Field(default=5000, ge=0)
    max_retries: int = Field(default=5, ge=0)
    max_retry_delay_ms: int = Field(default=125_000, ge=0)
    max_retry_time_ms: int = Field(default=180_000, ge=0)
    exponential_base: int = Field(default=2, ge=1)
    buffer_limit: int = Field(default=10_000, gt=0)
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    timeout_ms: int = Field(default=10_000, gt=0)


class InfluxWriteError(Exception):
    pass


class WriteError(InfluxWriteError):
    pass


class FlushError(InfluxWriteError):
    pass


class BufferOverflowError(WriteError):
    pass


def _is_retryable(status: int) -> bool:
    return status == 429 or status >= 500


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class InfluxWriteClient:
    """Buffers encoded points and ships them to InfluxDB in batches.

    Batches are sent by a background task: a full batch wakes it up, the
    flush interval schedules it otherwise. ``write_points`` only buffers, so
    slow or retried requests never block the caller. Failures of background
    sends are logged and reported by the next :meth:`flush` or :meth:`close`.
    """

    def __init__(
        self,
        endpoint: str,
        token: str,
        org: str,
        bucket: str,
        options: WriteOptions | None = None,
    ):
        self.endpoint = endpoint.rstrip('/')
        self.token = token
        self.org = org
        self.bucket = bucket
        self.options = options or WriteOptions()

        self._session: aiohttp.ClientSession | None = None
        self._buffer: deque[str] = deque()
        self._send_lock = asyncio.Lock()
        self._batch_ready = asyncio.Event()
        self._flush_task: asyncio.Task[None] | None = None
        self._background_error: FlushError | None = None
        self._running = False

    @property
    def write_url(self) -> str:
        return f'{self.endpoint}/api/v2/write'

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    async def start(self) -> None:
        if self._session is not None:
            logger.debug('InfluxDB write client already initialized')
            return

        logger.info(
            'Initializing InfluxDB write client',
            extra={
                'endpoint': self.endpoint,
                'org': self.org,
                'bucket': self.bucket,
                'batch_size': self.options.batch_size,
            },
        )
        self._session = aiohttp.ClientSession(
            headers={
                'Authorization': f'Token {self.token}',
                'Content-Type': 'text/plain; charset=utf-8',
            },
            timeout=aiohttp.ClientTimeout(total=self.options.timeout_ms / 1000),
        )
        self._running = True
        self._flush_task = asyncio.create_task(self._flush_loop())

    async def close(self) -> None:
        """Sends everything still buffered and releases the session.

        Raises :class:`FlushError` once the session is closed if the final
        flush, or an earlier background send, lost points.
        """
        self._running = False
        error: FlushError | None = None

        # an in-flight batch completes before the flush task is cancelled
        async with self._send_lock:
            if self._flush_task is not None:
                self._flush_task.cancel()
                await asyncio.gather(self._flush_task, return_exceptions=True)
                self._flush_task = None

            if self._session is not None:
                logger.info(
                    'Closing InfluxDB write client',
                    extra={'buffered': len(self._buffer)},
                )
                try:
                    await self._drain_locked(full_batches_only=False)
                except FlushError as e:
                    logger.error(
                        'Final flush failed, buffered points are lost',
                        extra={'error': str(e), 'lost': len(self._buffer)},
                    )
                    self._buffer.clear()
                    error = e
                await self._session.close()
                self._session = None

        background_error = self._take_background_error()
        error = error or background_error
        logger.info('InfluxDB write client closed')
        if error is not None:
            raise error

    def _ensure_running(self) -> None:
        if not self._running:
            raise RuntimeError('InfluxDB write client not started')

    def _take_background_error(self) -> FlushError | None:
        error, self._background_error = self._background_error, None
        return error

    async def write_points(self, points: Iterable[Point]) -> None:
        self._ensure_running()
        lines = encode_points(points)
        if not lines:
            return

        self._enqueue(lines)
        if len(self._buffer) >= self.options.batch_size:
            self._batch_ready.set()

    async def flush(self) -> None:
        self._ensure_running()
        async with self._send_lock:
            await self._drain_locked(full_batches_only=False)
        error = self._take_background_error()
        if error is not None:
            raise error

    def _enqueue(self, lines: list[str]) -> None:
        limit = self.options.buffer_limit
        policy = self.options.overflow_policy
        free = limit - len(self._buffer)
        if len(lines) <= free:
            self._buffer.extend(lines)
            return

        if policy == OverflowPolicy.ERROR:
            raise BufferOverflowError(
                f'Write buffer full: {len(self._buffer)}/{limit} lines buffered, '
                f'{len(lines)} more requested'
            )
        if policy == OverflowPolicy.DROP_LATEST:
            self._buffer.extend(lines[:free])
            dropped = len(lines) - free
        else:
            self._buffer.extend(lines)
            dropped = 0
            while len(self._buffer) > limit:
                self._buffer.popleft()
                dropped += 1
        logger.warning(
            'Buffer overflow, dropping points',
            extra={'dropped': dropped, 'policy': policy.value, 'buffer_limit': limit},
        )

    async def _drain_locked(self, full_batches_only: bool) -> None:
        batch_size = self.options.batch_size
        while self._buffer and (
            not full_batches_only or len(self._buffer) >= batch_size
        ):
            batch = [
                self._buffer.popleft()
                for _ in range(min(batch_size, len(self._buffer)))
            ]
            try:
                await self._send_batch(batch)
            except asyncio.CancelledError:
                self._buffer.extendleft(reversed(batch))
                raise

    async def _flush_loop(self) -> None:
        interval = self.options.flush_interval_ms / 1000 or None
        while self._running:
            try:
                await asyncio.wait_for(self._batch_ready.wait(), timeout=interval)
            except TimeoutError:
                pass
            self._batch_ready.clear()
            if not self._buffer:
                continue
            try:
                async with self._send_lock:
                    await self._drain_locked(full_batches_only=False)
            except FlushError as e:
                self._background_error = e
                logger.error('Scheduled flush failed', extra={'error': str(e)})
            except Exception:
                logger.exception('Unexpected error in scheduled flush')

    def _retry_delay(self, attempt: int, retry_after: float | None) -> float:
        if retry_after is not None:
            return retry_after
        opts = self.options
        delay_ms = opts.retry_interval_ms * opts.exponential_base ** (attempt - 1)
        if opts.jitter_interval_ms:
            delay_ms += random.uniform(0, opts.jitter_interval_ms)
        return min(delay_ms, opts.max_retry_delay_ms) / 1000

    async def _send_batch(self, lines: list[str]) -> None:
        body = '\n'.join(lines).encode('utf-8')
        started = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            status: int | None
            try:
                status, retry_after, detail = await self._post(body)
            except (aiohttp.ClientError, TimeoutError) as e:
                status, retry_after, detail = None, None, str(e) or type(e).__name__

            if status is not None and 200 <= status < 300:
                logger.debug(
                    'Batch written to InfluxDB',
                    extra={'lines': len(lines), 'attempt': attempt},
                )
                return
            if status is not None and not _is_retryable(status):
                raise FlushError(
                    f'InfluxDB rejected batch of {len(lines)} lines '
                    f'with status {status}: {detail}'
                )

            delay = self._retry_delay(attempt, retry_after)
            elapsed_ms = (time.monotonic() - started) * 1000
            if (
                attempt > self.options.max_retries
                or elapsed_ms + delay * 1000 > self.options.max_retry_time_ms
            ):
                raise FlushError(
                    f'Dropping batch of {len(lines)} lines after '
                    f'{attempt} attempts: {detail}'
                )
            logger.warning(
                'InfluxDB write failed, retrying',
                extra={
                    'status': status,
                    'attempt': attempt,
                    'delay_s': delay,
                    'error': detail,
                },
            )
            await asyncio.sleep(delay)

    async def _post(self, body: bytes) -> tuple[int, float | None, str]:
        if self._session is None:
            raise RuntimeError('InfluxDB write client not initialized')
        async with self._session.post(
            self.write_url,
            params={'org': self.org, 'bucket': self.bucket, 'precision': 'ns'},
            data=body,
        ) as resp:
            retry_after = _parse_retry_after(resp.headers.get('Retry-After'))
            detail = '' if resp.status < 300 else await resp.text()
            return resp.status, retry_after, detail


influx_write_client = InfluxWriteClient(
    endpoint=settings.INFLUX_ENDPOINT,
    token=settings.INFLUX_TOKEN,
    org=settings.INFLUX_ORG,
    bucket=settings.INFLUX_BUCKET,
    options=WriteOptions(
        batch_size=settings.INFLUX_BATCH_SIZE,
        flush_interval_ms=settings.INFLUX_FLUSH_INTERVAL_MS,
        jitter_interval_ms=settings.INFLUX_JITTER_INTERVAL_MS,
        retry_interval_ms=settings.INFLUX_RETRY_INTERVAL_MS,
        max_retries=settings.INFLUX_MAX_RETRIES,
        max_retry_delay_ms=settings.INFLUX_MAX_RETRY_DELAY_MS,
        max_retry_time_ms=settings.INFLUX_MAX_RETRY_TIME_MS,
        exponential_base=settings.INFLUX_EXPONENTIAL_BASE,
        buffer_limit=settings.INFLUX_BUFFER_LIMIT,
        overflow_policy=OverflowPolicy(settings.INFLUX_OVERFLOW_POLICY),
        timeout_ms=settings.INFLUX_TIMEOUT_MS,
    ),
)
