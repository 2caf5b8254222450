"""
Prometheus Metrics for the MDM core.

Defines all metrics for monitoring validation, ingestion and linking.
"""

from prometheus_client import Counter, Gauge, Histogram

# Product metrics
PRODUCTS_UPSERTED = Counter(
    'mdm_products_upserted_total',
    'Products created or updated',
    ['operation']  # create, update
)

VALIDATION_FAILURES = Counter(
    'mdm_validation_failures_total',
    'Attribute violations rejected by the schema validator',
    ['typology_id', 'violation']
)

CONCURRENT_MODIFICATIONS = Counter(
    'mdm_concurrent_modifications_total',
    'Writes rejected because of a stale concurrency token'
)

TYPOLOGIES_PUBLISHED = Counter(
    'mdm_typologies_published_total',
    'Typology versions published'
)

# Media metrics
MEDIA_INGESTED = Counter(
    'mdm_media_ingested_total',
    'Media assets ingested',
    ['format', 'status']  # status: new, duplicate
)

LINK_OUTCOMES = Counter(
    'mdm_link_outcomes_total',
    'Link resolution outcomes',
    ['outcome']  # linked, ambiguous, pending, failed, skipped
)

PENDING_RESOLUTIONS = Gauge(
    'mdm_pending_resolutions',
    'Media assets waiting for a product or article'
)

RESOLUTION_DURATION = Histogram(
    'mdm_resolution_duration_seconds',
    'Time spent resolving one media asset',
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

# Event bus metrics
EVENTS_CONSUMED = Counter(
    'mdm_events_consumed_total',
    'Domain events consumed',
    ['event_type', 'status']  # status: success, error, skipped
)

OUTBOX_EVENTS = Counter(
    'mdm_outbox_events_total',
    'Outbox events handed to the event bus',
    ['status']  # published, deferred
)
