from __future__ import annotations

from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry(auto_describe=True)

JSON_PARSE_FAILURES = Counter(
    "spanlight_json_parse_failures_total",
    "Number of times parsing JSON from the classifier failed, labeled by the extraction tier.",
    ["tier"],
    registry=registry,
)

CLASSIFIER_CALL_DURATION = Histogram(
    "spanlight_classifier_call_duration_seconds",
    "Latency for span classifier calls per backend.",
    ["backend"],
    registry=registry,
)

CLASSIFIER_CALLS_TOTAL = Counter(
    "spanlight_classifier_calls_total",
    "Total span classifier calls partitioned by backend and status.",
    ["backend", "status"],
    registry=registry,
)

CACHE_LOOKUPS_TOTAL = Counter(
    "spanlight_cache_lookups_total",
    "Span labeling cache lookups by tier and result.",
    ["tier", "result"],
    registry=registry,
)

STALE_RESULTS_DISCARDED = Counter(
    "spanlight_stale_results_discarded_total",
    "Classifier completions dropped because a newer request superseded them.",
    registry=registry,
)

HIGHLIGHT_RENDER_OUTCOMES = Counter(
    "spanlight_highlight_render_outcomes_total",
    "Highlight render outcomes per span.",
    ["outcome"],
    registry=registry,
)

SPANS_DROPPED = Counter(
    "spanlight_spans_dropped_total",
    "Classifier spans dropped during validation or conversion, by reason.",
    ["reason"],
    registry=registry,
)


def increment_json_parse_failure(tier: str) -> None:
    JSON_PARSE_FAILURES.labels(tier=tier).inc()


@contextmanager
def track_classifier_call(backend: str):
    timer = CLASSIFIER_CALL_DURATION.labels(backend=backend).time()
    timer.__enter__()
    try:
        yield
        CLASSIFIER_CALLS_TOTAL.labels(backend=backend, status="success").inc()
    except Exception:
        CLASSIFIER_CALLS_TOTAL.labels(backend=backend, status="error").inc()
        raise
    finally:
        timer.__exit__(None, None, None)


def record_cache_lookup(tier: str, hit: bool) -> None:
    CACHE_LOOKUPS_TOTAL.labels(tier=tier, result="hit" if hit else "miss").inc()


def record_stale_result() -> None:
    STALE_RESULTS_DISCARDED.inc()


def record_render_outcome(outcome: str, count: int = 1) -> None:
    if count:
        HIGHLIGHT_RENDER_OUTCOMES.labels(outcome=outcome).inc(count)


def record_dropped_span(reason: str) -> None:
    SPANS_DROPPED.labels(reason=reason).inc()


def get_metrics_payload() -> bytes:
    return generate_latest(registry)
