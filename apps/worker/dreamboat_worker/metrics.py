"""
Prometheus metrics for DreamBoat worker.
Exposes job counts, durations and generation progress.
"""
from prometheus_client import Counter, Gauge, Histogram, Info, start_http_server
import logging

logger = logging.getLogger(__name__)

# Info metrics
worker_info = Info('dreamboat_worker', 'Worker information')

# Job metrics
jobs_total = Counter('dreamboat_worker_jobs_total', 'Total jobs processed', ['job_type', 'status'])
jobs_in_progress = Gauge('dreamboat_worker_jobs_in_progress', 'Currently processing jobs', ['job_type'])
job_duration_seconds = Histogram(
    'dreamboat_worker_job_duration_seconds',
    'Job processing duration',
    ['job_type'],
    buckets=[30, 60, 120, 300, 600, 1200, 1800]
)

# Generation metrics
images_generated = Counter('dreamboat_images_generated_total', 'Total images generated', ['scenario'])
images_failed = Counter('dreamboat_images_failed_total', 'Image generations that failed', ['scenario'])
generation_duration = Histogram(
    'dreamboat_generation_duration_seconds',
    'Single image generation duration',
    buckets=[5, 10, 20, 30, 60, 120]
)
generation_progress_percent = Gauge('dreamboat_generation_progress_percent', 'Current job progress percentage')

# Queue metrics
queue_pending_jobs = Gauge('dreamboat_queue_pending_jobs', 'Jobs waiting in queue')
queue_processing_jobs = Gauge('dreamboat_queue_processing_jobs', 'Jobs currently processing')


def start_metrics_server(port: int = 9090, worker_id: str = "unknown"):
    """Start the Prometheus HTTP endpoint."""
    worker_info.info({'worker_id': worker_id, 'version': '0.1.0'})
    start_http_server(port)
    logger.info(f"Metrics server started on port {port}")


def update_job_status(job_type: str, status: str, in_progress: bool = False):
    """Update job status metrics."""
    jobs_total.labels(job_type=job_type, status=status).inc()
    jobs_in_progress.labels(job_type=job_type).set(1 if in_progress else 0)


def record_job_duration(job_type: str, duration: float):
    job_duration_seconds.labels(job_type=job_type).observe(duration)


def record_image(scenario: str, ok: bool, duration: float = 0.0):
    """Record one image attempt."""
    if ok:
        images_generated.labels(scenario=scenario).inc()
        if duration > 0:
            generation_duration.observe(duration)
    else:
        images_failed.labels(scenario=scenario).inc()


def update_queue_metrics(pending: int, processing: int):
    queue_pending_jobs.set(pending)
    queue_processing_jobs.set(processing)
