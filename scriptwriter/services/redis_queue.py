"""
Redis Queue Service for the scriptwriter
Handles the story generation job queue and publishes progress events.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from ..models import GenerationJob

logger = logging.getLogger("scriptwriter.redis_queue")

RESULT_TTL_SECONDS = 86400


class RedisQueueService:
    """Service for managing Redis job queues and progress events."""

    # Queue names
    QUEUE_PENDING = "scriptwriter:jobs:pending"
    QUEUE_PROCESSING = "scriptwriter:jobs:processing"
    QUEUE_COMPLETED = "scriptwriter:jobs:completed"
    QUEUE_FAILED = "scriptwriter:jobs:failed"

    # Event channel
    CHANNEL_GENERATION = "scriptwriter:events:generation"

    RESULT_KEY_PREFIX = "scriptwriter:results:"

    def __init__(self, redis_url: str = "redis://localhost:6379"):
        self.redis_url = redis_url
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Establish connection to Redis."""
        self._client = redis.from_url(self.redis_url, decode_responses=True)
        await self._client.ping()

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.close()

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    # ========================================================================
    # Job Queue Operations
    # ========================================================================

    async def enqueue_job(self, job: GenerationJob) -> str:
        """Add a job to the pending queue."""
        await self.client.lpush(self.QUEUE_PENDING, job.model_dump_json())

        await self.publish_event(
            self.CHANNEL_GENERATION,
            {
                "type": "job_enqueued",
                "job_id": job.job_id,
                "story_id": job.story_id,
                "timestamp": datetime.utcnow().isoformat(),
            }
        )
        return job.job_id

    async def dequeue_job(self, timeout: int = 0) -> Optional[GenerationJob]:
        """Get a job from the pending queue (blocking)."""
        result = await self.client.brpoplpush(
            self.QUEUE_PENDING,
            self.QUEUE_PROCESSING,
            timeout=timeout,
        )

        if result:
            return GenerationJob.model_validate_json(result)
        return None

    async def complete_job(self, job_id: str, result: Dict[str, Any]) -> None:
        """Mark a job as completed and store its generation report."""
        await self._remove_job_from_queue(self.QUEUE_PROCESSING, job_id)

        result_key = f"{self.RESULT_KEY_PREFIX}{job_id}"
        await self.client.setex(result_key, RESULT_TTL_SECONDS, json.dumps(result))

        completion_data = {
            "job_id": job_id,
            "completed_at": datetime.utcnow().isoformat(),
            "result_key": result_key,
        }
        await self.client.lpush(self.QUEUE_COMPLETED, json.dumps(completion_data))

        await self.publish_event(
            self.CHANNEL_GENERATION,
            {
                "type": "job_completed",
                "job_id": job_id,
                "timestamp": datetime.utcnow().isoformat(),
            }
        )

    async def fail_job(self, job_id: str, error: str, retry: bool = True) -> None:
        """
        Mark a job as failed.

        Re-enqueued jobs resume from the persisted tree, so a retry continues
        generation instead of starting over.
        """
        job_data = await self._get_job_from_queue(self.QUEUE_PROCESSING, job_id)
        if not job_data:
            logger.warning(f"[fail_job] Job {job_id} not found in processing queue")
            return

        job = GenerationJob.model_validate_json(job_data)
        await self.client.lrem(self.QUEUE_PROCESSING, 1, job_data)

        if retry and job.retry_count < job.max_retries:
            job.retry_count += 1
            await self.client.lpush(self.QUEUE_PENDING, job.model_dump_json())
            logger.info(f"[fail_job] Re-enqueued job {job_id} (retry {job.retry_count}/{job.max_retries})")

            await self.publish_event(
                self.CHANNEL_GENERATION,
                {
                    "type": "job_retry",
                    "job_id": job_id,
                    "retry_count": job.retry_count,
                    "error": error,
                    "timestamp": datetime.utcnow().isoformat(),
                }
            )
            return

        failure_data = {
            "job_id": job_id,
            "story_id": job.story_id,
            "error": error,
            "failed_at": datetime.utcnow().isoformat(),
            "retry_count": job.retry_count,
        }
        await self.client.lpush(self.QUEUE_FAILED, json.dumps(failure_data))
        logger.error(f"[fail_job] Job {job_id} failed permanently: {error}")

        await self.publish_event(
            self.CHANNEL_GENERATION,
            {
                "type": "job_failed",
                "job_id": job_id,
                "error": error,
                "timestamp": datetime.utcnow().isoformat(),
            }
        )

    async def get_job_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get the result of a completed job."""
        result = await self.client.get(f"{self.RESULT_KEY_PREFIX}{job_id}")
        if result:
            return json.loads(result)
        return None

    # ========================================================================
    # Event Publishing
    # ========================================================================

    async def publish_event(self, channel: str, event: Dict[str, Any]) -> None:
        """Publish an event to a channel."""
        await self.client.publish(channel, json.dumps(event))

    # ========================================================================
    # Helper Methods
    # ========================================================================

    async def _remove_job_from_queue(self, queue: str, job_id: str) -> None:
        """Remove a specific job from a queue."""
        item = await self._get_job_from_queue(queue, job_id)
        if item is not None:
            await self.client.lrem(queue, 1, item)

    async def _get_job_from_queue(self, queue: str, job_id: str) -> Optional[str]:
        """Get a specific job from a queue without removing it."""
        items = await self.client.lrange(queue, 0, -1)
        for item in items:
            try:
                job = GenerationJob.model_validate_json(item)
            except ValueError as e:
                logger.warning(f"[_get_job_from_queue] Skipping malformed entry in {queue}: {e}")
                continue
            if job.job_id == job_id:
                return item
        return None


class RedisWorker:
    """Worker that processes generation jobs from the Redis queue."""

    def __init__(
        self,
        queue_service: RedisQueueService,
        job_handler: Callable[[GenerationJob], Awaitable[Dict[str, Any]]],
        permanent_errors: Tuple[type, ...] = (),
    ):
        self.queue_service = queue_service
        self.job_handler = job_handler
        # Handler errors that a retry cannot fix; such jobs fail without re-enqueueing.
        self.permanent_errors = permanent_errors
        self._running = False

    async def start(self) -> None:
        """Start processing jobs."""
        self._running = True

        while self._running:
            try:
                job = await self.queue_service.dequeue_job(timeout=5)
                if job:
                    await self.process_job(job)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[start] Worker error: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def process_job(self, job: GenerationJob) -> None:
        """Run the handler for one job and record the outcome."""
        logger.info(f"[process_job] Processing job {job.job_id} for story {job.story_id}")
        try:
            result = await self.job_handler(job)
        except Exception as e:
            logger.error(f"[process_job] Job {job.job_id} failed: {e}")
            retry = not isinstance(e, self.permanent_errors)
            await self.queue_service.fail_job(job.job_id, str(e), retry=retry)
            return
        await self.queue_service.complete_job(job.job_id, result)

    def stop(self) -> None:
        """Stop processing jobs."""
        self._running = False
