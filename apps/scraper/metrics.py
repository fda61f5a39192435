"""
Prometheus metrics for scrape cycles, item results and result forwarding.
"""
import logging

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)

cycles_total = Counter(
    'scraper_cycles_total',
    'Scrape cycles by outcome',
    ['outcome'],
)
item_results_total = Counter(
    'scraper_item_results_total',
    'Item results by status',
    ['status'],
)
forwards_total = Counter(
    'scraper_forwards_total',
    'Result forwarding attempts by outcome',
    ['outcome'],
)
cycle_duration_seconds = Histogram(
    'scraper_cycle_duration_seconds',
    'Wall-clock duration of scrape cycles',
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800),
)


def record_cycle(outcome: str, duration_s: float):
    cycles_total.labels(outcome=outcome).inc()
    cycle_duration_seconds.observe(duration_s)


def record_item(status: str):
    item_results_total.labels(status=status).inc()


def record_forward(outcome: str):
    """outcome is one of: sent, skipped, failed"""
    forwards_total.labels(outcome=outcome).inc()


def render_latest() -> tuple:
    """Exposition payload and content type for the /metrics endpoint."""
    return generate_latest(), CONTENT_TYPE_LATEST
