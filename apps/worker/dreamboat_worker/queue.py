"""
Queue Client

Redis job queue client for worker.
"""

import json
import logging
from datetime import datetime
from typing import Any

import redis

from .config import Settings

logger = logging.getLogger(__name__)


class QueueClient:
    """Redis job queue client. Key layout matches the API's QueueService."""

    QUEUE_PREFIX = "dreamboat:jobs"
    PENDING_QUEUE = f"{QUEUE_PREFIX}:pending"
    PROCESSING_SET = f"{QUEUE_PREFIX}:processing"

    def __init__(self, settings: Settings, client: redis.Redis | None = None):
        """Initialize Redis connection."""
        self.redis = client or redis.from_url(
            settings.redis_url,
            decode_responses=True,
        )
        self.worker_id = settings.worker_id

    def dequeue(self) -> dict[str, Any] | None:
        """
        Get the next job from the queue.

        Returns:
            Job data dict or None if queue is empty
        """
        try:
            # Get highest priority job
            result = self.redis.zpopmin(self.PENDING_QUEUE, count=1)

            if not result:
                return None

            job_id = result[0][0]
            job_key = f"{self.QUEUE_PREFIX}:{job_id}:data"

            job_data = self.redis.hgetall(job_key)

            if not job_data:
                logger.warning(f"Job {job_id} not found in data store")
                return None

            # Mark as processing
            self.redis.sadd(self.PROCESSING_SET, job_id)
            self.redis.hset(job_key, mapping={
                "status": "processing",
                "worker_id": self.worker_id,
                "started_at": datetime.utcnow().isoformat(),
            })

            job_data["parameters"] = json.loads(job_data.get("parameters", "{}"))

            logger.info(f"Dequeued job {job_id} type={job_data.get('type')}")
            return job_data

        except redis.RedisError as e:
            logger.error(f"Failed to dequeue job: {e}")
            return None

    def complete_job(
        self,
        job_id: str,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Mark a job as completed or failed.

        Args:
            job_id: Job identifier
            result: Job result data (if successful)
            error: Error message (if failed)

        Returns:
            True if status was updated
        """
        try:
            job_key = f"{self.QUEUE_PREFIX}:{job_id}:data"

            updates = {
                "status": "failed" if error else "completed",
                "completed_at": datetime.utcnow().isoformat(),
            }
            if result:
                updates["result"] = json.dumps(result)
            if error:
                updates["error"] = error

            self.redis.hset(job_key, mapping=updates)
            self.redis.srem(self.PROCESSING_SET, job_id)

            logger.info(f"Job {job_id} {updates['status']}")
            return True

        except redis.RedisError as e:
            logger.error(f"Failed to complete job: {e}")
            return False

    def update_progress(self, job_id: str, progress: int, current_step: str | None = None) -> bool:
        """Record job progress (0-100) and the current step."""
        try:
            job_key = f"{self.QUEUE_PREFIX}:{job_id}:data"
            updates = {"progress": str(progress)}
            if current_step:
                updates["current_step"] = current_step
            self.redis.hset(job_key, mapping=updates)
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to update progress: {e}")
            return False

    def get_queue_length(self) -> int:
        try:
            return self.redis.zcard(self.PENDING_QUEUE)
        except redis.RedisError:
            return 0

    def get_processing_count(self) -> int:
        try:
            return self.redis.scard(self.PROCESSING_SET)
        except redis.RedisError:
            return 0
