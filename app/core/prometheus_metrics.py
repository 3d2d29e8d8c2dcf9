import logging
from prometheus_client import Counter, Histogram, Info, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Prometheus Registry
REGISTRY = CollectorRegistry()

# Service call metrics
service_requests_total = Counter(
    'rental_service_requests_total',
    'Total service calls',
    ['status', 'service', 'method'],
    registry=REGISTRY
)

service_duration_seconds = Histogram(
    'rental_service_duration_seconds',
    'Service call duration in seconds',
    ['service', 'method'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0],
    registry=REGISTRY
)

# Lifecycle metrics
override_decisions_total = Counter(
    'rental_override_decisions_total',
    'Override gate decisions',
    ['decision'],
    registry=REGISTRY
)

lifecycle_outcomes_total = Counter(
    'rental_lifecycle_outcomes_total',
    'Lifecycle transition outcomes',
    ['transition', 'outcome'],
    registry=REGISTRY
)

outbox_events_total = Counter(
    'rental_outbox_events_total',
    'Side-effect events handled by the outbox worker',
    ['event_type', 'status'],
    registry=REGISTRY
)

system_info = Info(
    'rental_engine_info',
    'System information',
    registry=REGISTRY
)


class PrometheusMetricsCollector:
    """Thin facade over the module-level Prometheus instruments"""

    def __init__(self):
        system_info.info({
            'version': '1.0.0',
            'service': 'rental-fleet-engine'
        })

    def record_service_call(
        self,
        service_name: str,
        method_name: str,
        duration_seconds: float,
        success: bool
    ):
        status = 'success' if success else 'error'
        service_requests_total.labels(
            status=status,
            service=service_name,
            method=method_name
        ).inc()
        service_duration_seconds.labels(
            service=service_name,
            method=method_name
        ).observe(duration_seconds)

    def record_override_decision(self, decision: str):
        override_decisions_total.labels(decision=decision).inc()

    def record_lifecycle_outcome(self, transition: str, outcome: str):
        lifecycle_outcomes_total.labels(transition=transition, outcome=outcome).inc()

    def record_outbox_event(self, event_type: str, status: str):
        outbox_events_total.labels(event_type=event_type, status=status).inc()

    def get_prometheus_metrics(self) -> bytes:
        """Get Prometheus metrics in text format"""
        return generate_latest(REGISTRY)


# Global instance
prometheus_collector = PrometheusMetricsCollector()
