"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name, documentation, labels=()):
    # Module reloads in tests would otherwise raise on duplicate registration
    try:
        return Counter(name, documentation, list(labels))
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Quota metrics
quota_units_counter = _counter(
    'descsync_quota_units_total',
    'Total quota units charged for remote API attempts',
    ['pool', 'endpoint']
)

remote_calls_counter = _counter(
    'descsync_remote_calls_total',
    'Total number of remote API calls by outcome',
    ['endpoint', 'outcome']
)

# Credential metrics
token_refresh_counter = _counter(
    'descsync_token_refresh_total',
    'Total number of access token refresh attempts',
    ['status']
)

# Pipeline metrics
description_push_counter = _counter(
    'descsync_description_push_total',
    'Total number of description rebuild and push attempts',
    ['status']
)

events_processed_counter = _counter(
    'descsync_events_processed_total',
    'Total number of pipeline events processed',
    ['event', 'status']
)

# Sync metrics
channel_sync_counter = _counter(
    'descsync_channel_sync_total',
    'Total number of channel sync runs',
    ['status']
)

scheduler_runs_counter = _counter(
    'descsync_scheduler_runs_total',
    'Total number of scheduler job runs',
    ['status']
)
