"""
Shared Prometheus metrics registry.

Each service imports and increments these counters/gauges.
Use prometheus_client.generate_latest() in service /metrics handlers.
"""

from prometheus_client import Counter, Gauge, Histogram

# Shadow processor
shadow_events_total = Counter(
    "shedwatch_shadow_events_total",
    "Total shadow update events handled",
    ["result"],  # processed | malformed | not_found | io_failure | error
)

shadow_queue_depth = Gauge(
    "shedwatch_shadow_queue_depth",
    "Current shadow event processing queue depth",
)

data_points_written_total = Counter(
    "shedwatch_data_points_written_total",
    "Total reconstructed data points persisted",
)

# Alarm engine
alarms_created_total = Counter(
    "shedwatch_alarms_created_total",
    "Total alarm episodes created",
    ["alarm_type"],
)

alarm_decisions_total = Counter(
    "shedwatch_alarm_decisions_total",
    "Alarm state machine outcomes",
    ["state"],
)

escalation_calls_total = Counter(
    "shedwatch_escalation_calls_total",
    "Outbound escalation calls by result",
    ["result"],  # placed | failed
)

# Heartbeat sweep
offline_alarms_total = Counter(
    "shedwatch_offline_alarms_total",
    "Total OFFLINE alarms raised by the heartbeat sweep",
)

sweep_device_errors_total = Counter(
    "shedwatch_sweep_device_errors_total",
    "Per-device failures isolated by the heartbeat sweep",
)

processing_duration_seconds = Histogram(
    "shedwatch_processing_duration_seconds",
    "Duration of a processing cycle in seconds",
    ["service", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

db_pool_size = Gauge(
    "shedwatch_db_pool_size",
    "Current total size of the database connection pool",
    ["service"],
)

db_pool_free = Gauge(
    "shedwatch_db_pool_free",
    "Current number of free (idle) connections in the pool",
    ["service"],
)
