from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
JOBS_CREATED = Counter('jobs_created_total', 'Total jobs created', ['job_type'])
JOBS_DEDUPLICATED = Counter('jobs_deduplicated_total', 'Create requests absorbed by an in-flight duplicate', ['job_type'])
CACHE_LOOKUPS = Counter('job_cache_lookups_total', 'Result cache lookups', ['job_type', 'result'])  # result=hit|miss
RATE_LIMITED_TOTAL = Counter('jobs_rate_limited_total', 'Create requests refused by the per-owner limit')

JOB_CLAIMS = Counter('job_claims_total', 'Total jobs claimed by workers', ['job_type'])
JOB_COMPLETIONS = Counter('job_completions_total', 'Total jobs completed', ['job_type'])
JOB_FAILURES = Counter('job_failures_total', 'Total job failures', ['job_type', 'type'])  # type=retry|final
JOB_CANCELLATIONS = Counter('job_cancellations_total', 'Total jobs cancelled by owners', ['job_type'])

SWEEP_TRANSITIONS = Counter(
    'job_sweep_transitions_total',
    'Jobs moved by health monitor and retention sweeps',
    ['sweep']  # retry|expire|reclaim|stuck_fail|retention
)

EVENTS_DROPPED = Counter('job_events_dropped_total', 'Change events dropped because a subscriber was full')

QUEUE_DEPTH = Gauge('job_queue_depth', 'Number of jobs in PENDING state', ['job_type'])
JOBS_PROCESSING = Gauge('jobs_processing', 'Number of jobs currently processing')

JOB_PICKUP_DELAY = Histogram('job_pickup_delay_seconds', 'Time from scheduled_for to claim', buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0])
JOB_DURATION = Histogram('job_duration_seconds', 'Time from claim to completion', buckets=[1.0, 5.0, 10.0, 60.0, 120.0, 600.0, 1800.0])

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
