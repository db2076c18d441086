"""Prometheus metrics for the shelfwatch crawler."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("shelfwatch", "shelfwatch crawler application info")
app_info.info({"version": "0.1.0", "name": "shelfwatch"})

# Crawl metrics
crawl_attempts_total = Counter(
    "crawl_attempts_total",
    "Total number of crawl attempts (one per retry)",
    ["retailer", "status"],
)

crawls_total = Counter(
    "crawls_total",
    "Total number of logical crawls by final outcome",
    ["retailer", "outcome"],
)

crawl_duration_seconds = Histogram(
    "crawl_duration_seconds",
    "Time spent crawling a single page",
    ["retailer"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

listings_discovered_total = Counter(
    "listings_discovered_total",
    "Product listing URLs discovered by crawls",
    ["retailer"],
)

# Extraction metrics
extraction_field_misses_total = Counter(
    "extraction_field_misses_total",
    "Required fields that fell back to their unresolved sentinel",
    ["retailer", "field"],
)

extractions_skipped_total = Counter(
    "extractions_skipped_total",
    "Extractions aborted by a pre-check (blocked or captcha pages)",
    ["retailer", "extractor"],
)

# Reliability metrics
circuit_breaker_open = Gauge(
    "circuit_breaker_open",
    "Whether the retailer circuit breaker is open (1) or closed (0)",
    ["retailer"],
)

circuit_breaker_trips_total = Counter(
    "circuit_breaker_trips_total",
    "Number of times a retailer circuit breaker opened",
    ["retailer"],
)

retailer_success_rate = Gauge(
    "retailer_success_rate",
    "Crawl success rate over the health window (percent)",
    ["retailer"],
)

reactor_errors_total = Counter(
    "reactor_errors_total",
    "Events a reactor dropped because its store was unavailable",
    ["reactor"],
)

# Price metrics
price_drops_total = Counter(
    "price_drops_total",
    "Total number of price drops recorded",
    ["retailer"],
)

notifications_sent_total = Counter(
    "notifications_sent_total",
    "Notifications handed to a sink",
    ["channel", "status"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_crawl_attempt(retailer: str, success: bool, duration: float):
    """Record a single crawl attempt."""
    status = "success" if success else "error"
    crawl_attempts_total.labels(retailer=retailer, status=status).inc()
    crawl_duration_seconds.labels(retailer=retailer).observe(duration)


def record_crawl_outcome(retailer: str, outcome: str):
    """Record the final outcome of a logical crawl."""
    crawls_total.labels(retailer=retailer, outcome=outcome).inc()


def record_listings_discovered(retailer: str, count: int):
    """Record discovered listing URLs."""
    if count:
        listings_discovered_total.labels(retailer=retailer).inc(count)


def record_field_miss(retailer: str, field: str):
    """Record a field that fell back to its sentinel value."""
    extraction_field_misses_total.labels(retailer=retailer, field=field).inc()


def record_extraction_skipped(retailer: str, extractor: str):
    """Record an extraction skipped by its pre-check."""
    extractions_skipped_total.labels(retailer=retailer, extractor=extractor).inc()


def set_circuit_state(retailer: str, is_open: bool):
    """Update the circuit breaker gauge."""
    circuit_breaker_open.labels(retailer=retailer).set(1 if is_open else 0)
    if is_open:
        circuit_breaker_trips_total.labels(retailer=retailer).inc()


def update_success_rate(retailer: str, success_rate: float):
    """Update the retailer success rate gauge."""
    retailer_success_rate.labels(retailer=retailer).set(success_rate)


def record_reactor_error(reactor: str):
    """Record an event dropped by a reactor."""
    reactor_errors_total.labels(reactor=reactor).inc()


def record_price_drop(retailer: str):
    """Record a price drop."""
    price_drops_total.labels(retailer=retailer).inc()


def record_notification(channel: str, success: bool):
    """Record a notification delivery."""
    status = "success" if success else "error"
    notifications_sent_total.labels(channel=channel, status=status).inc()


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
