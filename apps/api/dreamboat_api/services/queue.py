"""
Queue Service

Redis-based job queue for sample and full generation jobs.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any
from uuid import UUID

import redis

from ..config import Settings

logger = logging.getLogger(__name__)


class QueueService:
    """
    Redis-based job queue service.

    Queue keys:
    - dreamboat:jobs:pending - Sorted set of pending job IDs
    - dreamboat:jobs:processing - Set of job IDs being worked on
    - dreamboat:jobs:{id}:data - Job data hash
    """

    QUEUE_PREFIX = "dreamboat:jobs"
    PENDING_QUEUE = f"{QUEUE_PREFIX}:pending"
    PROCESSING_SET = f"{QUEUE_PREFIX}:processing"

    # Paid batches are served before previews
    SAMPLE_PRIORITY = 0
    BATCH_PRIORITY = 10

    def __init__(self, settings: Settings, client: redis.Redis | None = None):
        """Initialize Redis connection."""
        self.redis = client or redis.from_url(
            settings.redis_url,
            decode_responses=True,
        )

    def enqueue(
        self,
        job_id: UUID,
        job_type: str,
        owner_id: str,
        parameters: dict[str, Any] | None = None,
        priority: int = 0,
    ) -> bool:
        """
        Add a job to the queue.

        Args:
            job_id: Sample job or batch identifier
            job_type: "sample" or "batch"
            owner_id: Owning subject
            parameters: Job-specific parameters
            priority: Job priority (higher = more urgent)

        Returns:
            True if job was queued successfully
        """
        try:
            job_key = f"{self.QUEUE_PREFIX}:{job_id}:data"

            job_data = {
                "id": str(job_id),
                "type": job_type,
                "owner_id": owner_id,
                "parameters": json.dumps(parameters or {}),
                "priority": priority,
                "status": "pending",
                "created_at": datetime.utcnow().isoformat(),
            }

            self.redis.hset(job_key, mapping=job_data)
            # Score is negative priority so higher priority comes first
            self.redis.zadd(self.PENDING_QUEUE, {str(job_id): -priority})

            logger.info(f"Enqueued job {job_id} type={job_type}")
            return True

        except redis.RedisError as e:
            logger.error(f"Failed to enqueue job: {e}")
            return False

    def enqueue_sample(
        self,
        job_id: UUID,
        owner_id: str,
        photo_keys: list[str],
        scenarios: list[str],
    ) -> bool:
        return self.enqueue(
            job_id,
            "sample",
            owner_id,
            {"photo_keys": photo_keys, "scenarios": scenarios, "images_per_scenario": 1},
            priority=self.SAMPLE_PRIORITY,
        )

    def enqueue_batch(
        self,
        job_id: UUID,
        owner_id: str,
        photo_keys: list[str],
        scenarios: list[str],
        images_per_scenario: int,
    ) -> bool:
        return self.enqueue(
            job_id,
            "batch",
            owner_id,
            {
                "photo_keys": photo_keys,
                "scenarios": scenarios,
                "images_per_scenario": images_per_scenario,
            },
            priority=self.BATCH_PRIORITY,
        )

    def get_job_status(self, job_id: UUID) -> dict[str, Any] | None:
        """
        Get current job status.

        Args:
            job_id: Job identifier

        Returns:
            Job data dict or None
        """
        try:
            job_key = f"{self.QUEUE_PREFIX}:{job_id}:data"
            job_data = self.redis.hgetall(job_key)

            if job_data:
                job_data["parameters"] = json.loads(job_data.get("parameters", "{}"))

            return job_data or None

        except redis.RedisError as e:
            logger.error(f"Failed to get job status: {e}")
            return None

    def get_queue_length(self) -> int:
        """Get number of pending jobs."""
        try:
            return self.redis.zcard(self.PENDING_QUEUE)
        except redis.RedisError:
            return 0

    def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            self.redis.ping()
            return True
        except redis.RedisError:
            return False
