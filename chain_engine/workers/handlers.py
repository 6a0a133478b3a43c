"""
Sample tasks for the default worker factory.

Mocks network sync, file upload and CPU-heavy work. Each task parses its
optional JSON payload into a small pydantic model and yields to the event
loop often enough to be cancelled promptly.
"""

import asyncio
import logging
import math
import random
import time
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from chain_engine.workers.base import RegistryWorkerFactory, Task

logger = logging.getLogger(__name__)


class WorkerTypes:
    """Registered worker type names."""

    SYNC = "sync"
    UPLOAD = "upload"
    HEAVY_PROCESSING = "heavy_processing"


class SyncPayload(BaseModel):
    items: int = Field(default=5, ge=0, le=10_000)
    delay: float = Field(default=0.2, ge=0.0, description="Simulated latency per item (seconds)")
    failure_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class UploadPayload(BaseModel):
    total_mb: int = Field(default=100, ge=1)
    chunk_mb: int = Field(default=10, ge=1)
    chunk_delay: float = Field(default=0.3, ge=0.0)


class HeavyProcessingPayload(BaseModel):
    limit: int = Field(default=10_000, ge=2, le=10_000_000, description="Count primes below this")
    batch_size: int = Field(default=1_000, ge=1)


def _parse_payload(model: type[BaseModel], input_payload: Optional[str]) -> Optional[BaseModel]:
    if not input_payload:
        return model()
    try:
        return model.model_validate_json(input_payload)
    except ValidationError as e:
        logger.error(f"Invalid payload for {model.__name__}: {e}")
        return None


class SyncTask(Task):
    """
    Mocks a remote sync by sleeping per item.

    Fails when the simulated remote rejects an item.
    """

    async def execute(self, input_payload: Optional[str]) -> bool:
        payload = _parse_payload(SyncPayload, input_payload)
        if payload is None:
            return False

        logger.info(f"Syncing {payload.items} items")
        for index in range(payload.items):
            await asyncio.sleep(payload.delay)
            if random.random() < payload.failure_rate:
                logger.warning(f"Sync rejected item {index + 1}/{payload.items}")
                return False

        logger.info(f"Synced {payload.items} items")
        return True


class UploadTask(Task):
    """Mocks a chunked file upload with progress logging."""

    async def execute(self, input_payload: Optional[str]) -> bool:
        payload = _parse_payload(UploadPayload, input_payload)
        if payload is None:
            return False

        uploaded = 0
        while uploaded < payload.total_mb:
            await asyncio.sleep(payload.chunk_delay)
            uploaded = min(payload.total_mb, uploaded + payload.chunk_mb)
            logger.debug(f"Upload progress: {uploaded}/{payload.total_mb} MB")

        logger.info(f"Uploaded {payload.total_mb}MB")
        return True


class HeavyProcessingTask(Task):
    """Counts primes below a limit, yielding between batches."""

    async def execute(self, input_payload: Optional[str]) -> bool:
        payload = _parse_payload(HeavyProcessingPayload, input_payload)
        if payload is None:
            return False

        started = time.monotonic()
        count = 0
        for number in range(2, payload.limit):
            if _is_prime(number):
                count += 1
            if number % payload.batch_size == 0:
                await asyncio.sleep(0)

        logger.info(
            f"Counted {count} primes below {payload.limit} "
            f"in {(time.monotonic() - started) * 1000:.0f}ms"
        )
        return True


def _is_prime(number: int) -> bool:
    if number < 2:
        return False
    for divisor in range(2, math.isqrt(number) + 1):
        if number % divisor == 0:
            return False
    return True


def build_default_factory() -> RegistryWorkerFactory:
    """Factory with every sample task registered."""
    return RegistryWorkerFactory({
        WorkerTypes.SYNC: SyncTask,
        WorkerTypes.UPLOAD: UploadTask,
        WorkerTypes.HEAVY_PROCESSING: HeavyProcessingTask,
    })
