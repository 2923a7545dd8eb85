from fastapi import FastAPI
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

PHOTO_DELIVERIES = Counter(
    "photo_deliveries_total",
    "Photo responses by endpoint and the cache tier that produced them",
    ["endpoint", "tier"],
)


def record_delivery(endpoint: str, tier: str) -> None:
    PHOTO_DELIVERIES.labels(endpoint=endpoint, tier=tier).inc()


def setup_metrics(app: FastAPI) -> None:
    """Expose default HTTP metrics plus the photo counters on /metrics."""
    Instrumentator(excluded_handlers=["/metrics", "/healthz"]).instrument(app).expose(app, include_in_schema=False)
