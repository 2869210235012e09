"""
DreamBoat Generation Worker

Main entry point for the background worker.
Polls for sample and batch jobs, generates one image at a time and
reports results back to the API as each scenario finishes.
"""

import logging
import signal
import time

import httpx
from rich.console import Console
from rich.logging import RichHandler

from .config import Settings, get_settings
from .generator import ImageGenerator
from .metrics import (
    jobs_in_progress,
    generation_progress_percent,
    record_image,
    record_job_duration,
    start_metrics_server,
    update_job_status,
    update_queue_metrics,
)
from .queue import QueueClient
from .storage import StorageClient

logger = logging.getLogger(__name__)
console = Console()

# Job type -> API callback collection
CALLBACK_PATHS = {"sample": "samples", "batch": "batches"}

# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    global shutdown_requested
    logger.info("Shutdown signal received, finishing current job...")
    shutdown_requested = True


class ApiCallbacks:
    """
    Reports job progress to the API.

    Every call returns False instead of raising so one unreachable API
    call never loses the images already uploaded.
    """

    def __init__(self, settings: Settings, client: httpx.Client | None = None):
        self.base_url = settings.callback_base_url
        self.client = client or httpx.Client(timeout=settings.api_timeout_seconds)
        self.headers = {"X-Worker-Token": settings.worker_token}

    def _post(self, job_type: str, job_id: str, action: str, payload: dict | None = None) -> bool:
        url = f"{self.base_url}/{CALLBACK_PATHS[job_type]}/{job_id}/{action}"
        try:
            response = self.client.post(url, json=payload or {}, headers=self.headers)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Callback {action} for {job_type} {job_id} failed: {e}")
            return False

    def started(self, job_type: str, job_id: str) -> bool:
        return self._post(job_type, job_id, "start")

    def register_images(self, job_type: str, job_id: str, images: list[dict]) -> bool:
        """
        Register uploaded images in the database.

        Called once per scenario so partial results survive a crash.
        """
        if not images:
            return True
        return self._post(job_type, job_id, "images", {"images": images})

    def finished(self, job_type: str, job_id: str, errors: list[str]) -> bool:
        return self._post(job_type, job_id, "finish", {"errors": errors})


def output_key(job: dict, scenario: str, index: int) -> str:
    return (
        f"users/{job['owner_id']}/{CALLBACK_PATHS[job['type']]}/"
        f"{job['id']}/{scenario}_{index}.jpg"
    )


def process_generation_job(
    job: dict,
    queue: QueueClient,
    storage: StorageClient,
    generator: ImageGenerator,
    api: ApiCallbacks,
) -> dict:
    """
    Process a sample or batch job with INCREMENTAL SAVING.

    For each scenario:
    1. Generate the requested number of images
    2. Upload each to object storage
    3. Register the scenario's images via the API

    Failures of single images are collected and reported on finish;
    the API decides whether the job completed, partially completed or
    failed.
    """
    job_id = job["id"]
    job_type = job.get("type", "batch")
    params = job.get("parameters", {})
    scenarios = params.get("scenarios", [])
    per_scenario = int(params.get("images_per_scenario", 1))

    logger.info(f"Processing {job_type} job {job_id}: {len(scenarios)} scenarios x {per_scenario}")
    api.started(job_type, job_id)

    references = [
        generator.load_reference(storage.download_bytes(key))
        for key in params.get("photo_keys", [])
    ]
    if not references:
        raise ValueError("No reference photos for job")

    errors: list[str] = []
    unregistered: list[dict] = []
    generated = 0
    total = max(len(scenarios) * per_scenario, 1)

    for scenario_idx, scenario in enumerate(scenarios):
        scenario_images = []
        for n in range(per_scenario):
            started = time.time()
            try:
                data = generator.generate(scenario, references)
                key = storage.upload_bytes(data, output_key(job, scenario, n))
            except Exception as e:
                logger.error(f"{scenario} image {n + 1}/{per_scenario} failed: {e}")
                errors.append(f"{scenario}: {e}")
                record_image(scenario, ok=False)
                continue

            record_image(scenario, ok=True, duration=time.time() - started)
            scenario_images.append({"scenario": scenario, "storage_key": key})
            generated += 1

        if api.register_images(job_type, job_id, scenario_images):
            logger.info(f"Saved {len(scenario_images)} images for {scenario}")
        else:
            logger.warning(f"Failed to save {scenario} images (will retry at end)")
            unregistered.extend(scenario_images)

        pct = int((scenario_idx + 1) * per_scenario / total * 100)
        queue.update_progress(job_id, pct, f"Completed {scenario}")
        generation_progress_percent.set(pct)

    if unregistered and not api.register_images(job_type, job_id, unregistered):
        errors.append(f"Failed to register {len(unregistered)} images")

    api.finished(job_type, job_id, errors)

    return {"generated_count": generated, "errors": errors}


def main():
    """Main worker loop."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )

    # Setup signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    settings = get_settings()
    console.print(f"[bold]DreamBoat worker[/bold] {settings.worker_id}")

    queue = QueueClient(settings)
    storage = StorageClient(settings)
    generator = ImageGenerator(settings)
    api = ApiCallbacks(settings)

    start_metrics_server(port=settings.metrics_port, worker_id=settings.worker_id)

    logger.info("Starting job polling loop...")

    while not shutdown_requested:
        try:
            job = queue.dequeue()

            if job is None:
                update_queue_metrics(queue.get_queue_length(), queue.get_processing_count())
                time.sleep(settings.poll_interval)
                continue

            job_id = job["id"]
            job_type = job.get("type", "unknown")

            if job_type not in CALLBACK_PATHS:
                logger.error(f"Unknown job type {job_type} for job {job_id}")
                queue.complete_job(job_id, error=f"Unknown job type: {job_type}")
                continue

            update_job_status(job_type, "processing", in_progress=True)
            job_start_time = time.time()

            try:
                result = process_generation_job(job, queue, storage, generator, api)
                queue.complete_job(job_id, result=result)
                record_job_duration(job_type, time.time() - job_start_time)
                update_job_status(job_type, "completed", in_progress=False)

            except Exception as e:
                error_msg = str(e)
                logger.error(f"Job {job_id} failed: {error_msg}")
                queue.complete_job(job_id, error=error_msg)
                update_job_status(job_type, "failed", in_progress=False)
                api.finished(job_type, job_id, [error_msg])

            finally:
                jobs_in_progress.labels(job_type=job_type).set(0)

        except KeyboardInterrupt:
            break
        except Exception as e:
            logger.error(f"Worker error: {e}")
            time.sleep(5)

    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    main()
