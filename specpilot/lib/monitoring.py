# specpilot/lib/monitoring.py
from fastapi import FastAPI
from prometheus_client.registry import CollectorRegistry as Registry
from prometheus_client import Counter, Gauge
from prometheus_fastapi_instrumentator import Instrumentator
from specpilot.core.logging import log

# Create a separate registry
registry = Registry()

active_runs = Gauge(
    'specpilot_active_runs',
    'Number of runs currently being driven',
    registry=registry
)

runs_finished = Counter(
    'specpilot_runs_finished_total',
    'Runs that reached a terminal state, by outcome',
    ['outcome'],
    registry=registry
)


def run_started() -> None:
    active_runs.inc()


def run_finished(outcome: str) -> None:
    """Record a terminal run; outcome is a RunOutcome value."""
    active_runs.dec()
    runs_finished.labels(outcome=outcome).inc()


def register_monitoring(app: FastAPI):
    """
    Registers Prometheus monitoring on the FastAPI app and exposes /metrics.
    """
    instrumentator = Instrumentator(
        excluded_handlers=["/metrics"],  # Don't monitor the metrics endpoint itself
        registry=registry
    ).instrument(app)

    instrumentator.expose(app, include_in_schema=False, should_gzip=True)

    log("MONITORING", "Prometheus instrumentation registered at /metrics.")
