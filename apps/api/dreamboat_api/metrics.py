"""
Prometheus metrics for DreamBoat API domain events.

HTTP request metrics come from prometheus-fastapi-instrumentator;
these counters cover what the request metrics cannot see.
"""
from prometheus_client import Counter

validation_checks = Counter(
    'dreamboat_validation_checks_total',
    'Photo validation outcomes',
    ['outcome'],  # valid, invalid, fallback
)
validation_fallbacks = Counter(
    'dreamboat_validation_fallbacks_total',
    'Photos accepted without a verdict because the validation service was unavailable',
)
credits_created = Counter('dreamboat_credits_created_total', 'Credits minted', ['store'])
credits_redeemed = Counter('dreamboat_credits_redeemed_total', 'Credits redeemed')
credits_restored = Counter('dreamboat_credits_restored_total', 'Credits restored after a failed batch')
jobs_finished = Counter(
    'dreamboat_jobs_finished_total',
    'Generation jobs finished',
    ['job_type', 'status'],  # job_type: sample, batch
)
partial_batches = Counter('dreamboat_partial_batches_total', 'Batches completed with missing images')
