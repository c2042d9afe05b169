"""
Unit tests for structured logging and Prometheus metrics.
"""

import json
import logging

import pytest

from incentive.calculation import BatchLifecycle, CalculationEngine
from incentive.core.errors import LifecycleError
from incentive.observability.logger import CustomJsonFormatter, log_operation, setup_logger
from incentive.observability.metrics import REGISTRY, generate_metrics


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    """Logger with a handler collecting its records"""
    logger = logging.getLogger("incentive.test.captured")
    handler = _ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield logger, handler.records
    logger.removeHandler(handler)


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestLogging:
    """Tests for the JSON formatter and log_operation"""

    def test_json_formatter_keeps_extra_fields(self):
        """Test extra fields become top-level JSON keys"""
        formatter = CustomJsonFormatter(fmt="%(timestamp)s %(level)s %(logger)s %(message)s")
        record = logging.LogRecord(
            name="incentive.calculation", level=logging.WARNING, pathname=__file__,
            lineno=1, msg="Low confidence", args=None, exc_info=None,
        )
        record.tenant_id = "acme"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "Low confidence"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "incentive.calculation"
        assert payload["tenant_id"] == "acme"
        assert payload["timestamp"]

    def test_setup_logger_levels(self):
        """Test the level argument and the single handler"""
        logger = setup_logger("incentive.test.setup", level="debug", format_type="text")
        setup_logger("incentive.test.setup", level="warning", format_type="text")

        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert not logger.propagate

    def test_log_operation_success(self, captured):
        """Test start and completion records carry the extra fields"""
        logger, records = captured

        with log_operation("calculation run", logger=logger, tenant_id="acme") as operation:
            pass

        assert [r.getMessage() for r in records] == ["Starting: calculation run", "Completed: calculation run"]
        assert records[1].status == "success"
        assert records[1].tenant_id == "acme"
        assert operation.duration >= 0

    def test_log_operation_failure(self, captured):
        """Test failures are logged and the exception propagates"""
        logger, records = captured

        with pytest.raises(ValueError):
            with log_operation("comparison", logger=logger):
                raise ValueError("bad rows")

        assert records[-1].levelno == logging.ERROR
        assert records[-1].error_type == "ValueError"
        assert records[-1].error_message == "bad rows"


class TestMetrics:
    """Tests for the pipeline counters"""

    def test_calculation_run_counted(self, seeded_store, tenant_context, january_period):
        """Test a run updates the run counter, entity counter and payout gauge"""
        runs = _sample("incentive_calculation_runs_total", tenant_id="acme", status="success")
        entities = _sample("incentive_entities_evaluated_total", tenant_id="acme")

        CalculationEngine(seeded_store).run(tenant_context, january_period.id, "retail-2024")

        assert _sample("incentive_calculation_runs_total", tenant_id="acme", status="success") == runs + 1
        assert _sample("incentive_entities_evaluated_total", tenant_id="acme") == entities + 3
        assert _sample(
            "incentive_batch_total_payout",
            tenant_id="acme", rule_set_id="retail-2024", period_id=january_period.id,
        ) == 4985.0

    def test_rejected_transition_counted(self, seeded_store, tenant_context, january_period):
        """Test rejected transitions are counted by state pair"""
        outcome = CalculationEngine(seeded_store).run(tenant_context, january_period.id, "retail-2024")
        before = _sample(
            "incentive_lifecycle_transitions_total", from_state="PREVIEW", to_state="PAID", status="rejected"
        )

        with pytest.raises(LifecycleError):
            BatchLifecycle(seeded_store).transition(tenant_context, outcome.batch_id, "PAID")

        assert _sample(
            "incentive_lifecycle_transitions_total", from_state="PREVIEW", to_state="PAID", status="rejected"
        ) == before + 1

    def test_generate_metrics(self, seeded_store, tenant_context, january_period):
        """Test the text exposition includes the pipeline metrics"""
        CalculationEngine(seeded_store).run(tenant_context, january_period.id, "retail-2024")

        text = generate_metrics().decode()

        assert "incentive_calculation_runs_total" in text
        assert "incentive_calculation_duration_seconds_bucket" in text
