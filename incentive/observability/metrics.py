"""
Prometheus metrics for the incentive pipeline

Counters and histograms live on a private registry so tests and embedding
applications never collide with the global default registry.
"""
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    generate_latest,
)


# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# CALCULATION METRICS
# =======================

calculation_runs_total = Counter(
    name="incentive_calculation_runs_total",
    documentation="Total number of calculation runs",
    labelnames=["tenant_id", "status"],  # status: success, empty, error
    registry=REGISTRY,
)

calculation_duration_seconds = Histogram(
    name="incentive_calculation_duration_seconds",
    documentation="Wall time of a calculation run in seconds",
    labelnames=["tenant_id"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

entities_evaluated_total = Counter(
    name="incentive_entities_evaluated_total",
    documentation="Total number of entities evaluated by the calculation engine",
    labelnames=["tenant_id"],
    registry=REGISTRY,
)

batch_total_payout = Gauge(
    name="incentive_batch_total_payout",
    documentation="Total payout of the most recent batch per rule set and period",
    labelnames=["tenant_id", "rule_set_id", "period_id"],
    registry=REGISTRY,
)

component_evaluations_total = Counter(
    name="incentive_component_evaluations_total",
    documentation="Component evaluations by component type and outcome",
    labelnames=["component_type", "outcome"],  # outcome: matched, no_data, no_band, disabled
    registry=REGISTRY,
)

metric_fallbacks_total = Counter(
    name="incentive_metric_fallbacks_total",
    documentation="Plan metric names that could not be classified and fell back to amount",
    labelnames=["component_type"],
    registry=REGISTRY,
)

# =======================
# LIFECYCLE METRICS
# =======================

lifecycle_transitions_total = Counter(
    name="incentive_lifecycle_transitions_total",
    documentation="Batch lifecycle transition attempts",
    labelnames=["from_state", "to_state", "status"],  # status: accepted, rejected
    registry=REGISTRY,
)

# =======================
# RECONCILIATION METRICS
# =======================

reconciliation_findings_total = Counter(
    name="incentive_reconciliation_findings_total",
    documentation="Reconciliation findings by finding type",
    labelnames=["tenant_id", "finding_type"],
    registry=REGISTRY,
)

reconciliation_duration_seconds = Histogram(
    name="incentive_reconciliation_duration_seconds",
    documentation="Time spent comparing results against a benchmark file",
    labelnames=["tenant_id"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0],
    registry=REGISTRY,
)

# =======================
# CLASSIFICATION METRICS
# =======================

content_units_classified_total = Counter(
    name="incentive_content_units_classified_total",
    documentation="Content units classified by winning agent and claim type",
    labelnames=["classification", "claim_type"],  # claim_type: FULL, PARTIAL
    registry=REGISTRY,
)

human_review_required_total = Counter(
    name="incentive_human_review_required_total",
    documentation="Content units flagged for human review",
    registry=REGISTRY,
)

# =======================
# WAREHOUSE METRICS
# =======================

results_written_total = Counter(
    name="incentive_results_written_total",
    documentation="Calculation results written to the data store",
    labelnames=["store"],  # store: postgres, memory
    registry=REGISTRY,
)

results_deleted_total = Counter(
    name="incentive_results_deleted_total",
    documentation="Prior calculation results deleted before a rerun",
    labelnames=["store"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


class track_duration:
    """
    Context manager for tracking operation duration

    Usage:
        with track_duration(calculation_duration_seconds, tenant_id="t1"):
            ...
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        self.timer = self.histogram.labels(**self.labels).time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if labels:
        counter.labels(**labels).inc(value)
    else:
        counter.inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    """Set a gauge metric value"""
    gauge.labels(**labels).set(value)
