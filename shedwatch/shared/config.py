import os
from dataclasses import dataclass


def require_env(name: str) -> str:
    """
    Read a required environment variable.
    Raises RuntimeError at startup if the variable is absent or empty.
    Use this for all security-sensitive configuration (passwords, secrets, keys).
    """
    value = os.environ.get(name, "").strip()
    if not value:
        raise RuntimeError(
            f"Required environment variable '{name}' is not set. "
            "Set it before starting the service."
        )
    return value


def optional_env(name: str, default: str = "") -> str:
    """
    Read an optional environment variable with a safe default.
    Use this only for non-sensitive config (ports, log levels, feature flags).
    """
    return os.environ.get(name, default)


ALARM_LOOKUP_ORDERS = ("latest", "oldest")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the shadow processor and heartbeat services."""

    # Database
    database_url: str | None = None
    pg_host: str = "shedwatch-postgres"
    pg_port: int = 5432
    pg_db: str = "shedwatch"
    pg_user: str = "shedwatch"
    pg_pass: str = ""
    pg_pool_min: int = 2
    pg_pool_max: int = 10

    # Shadow channel
    mqtt_host: str = "shedwatch-mqtt"
    mqtt_port: int = 1883
    shadow_topic: str = "$aws/things/+/shadow/update/documents"
    processor_worker_count: int = 4
    processor_queue_size: int = 1000

    # Engine
    device_timezone: str = "Pacific/Auckland"
    escalation_cooldown_minutes: int = 15
    point_gap_ms: int = 60_000
    point_write_attempts: int = 3
    alarm_lookup_order: str = "latest"

    # Heartbeat sweep (minutes, open intervals)
    batch_offline_window: tuple[int, int] = (11, 12)
    idle_offline_window: tuple[int, int] = (121, 122)
    sweep_interval_seconds: int = 60

    # Collaborators
    telephony_api_url: str = "http://shedwatch-dialer:8080"
    telephony_api_key: str = ""
    connect_instance_id: str = ""
    connect_contact_flow_id: str = ""
    connect_queue_id: str = ""
    ws_gateway_url: str = "http://shedwatch-ws-gateway:8080"

    health_port: int = 8080

    @classmethod
    def from_env(cls) -> "Settings":
        lookup_order = optional_env("ALARM_LOOKUP_ORDER", "latest").lower()
        if lookup_order not in ALARM_LOOKUP_ORDERS:
            raise RuntimeError(
                f"ALARM_LOOKUP_ORDER must be one of {ALARM_LOOKUP_ORDERS}, got '{lookup_order}'"
            )
        return cls(
            database_url=optional_env("DATABASE_URL") or None,
            pg_host=optional_env("PG_HOST", "shedwatch-postgres"),
            pg_port=int(optional_env("PG_PORT", "5432")),
            pg_db=optional_env("PG_DB", "shedwatch"),
            pg_user=optional_env("PG_USER", "shedwatch"),
            pg_pass=optional_env("PG_PASS"),
            pg_pool_min=int(optional_env("PG_POOL_MIN", "2")),
            pg_pool_max=int(optional_env("PG_POOL_MAX", "10")),
            mqtt_host=optional_env("MQTT_HOST", "shedwatch-mqtt"),
            mqtt_port=int(optional_env("MQTT_PORT", "1883")),
            shadow_topic=optional_env("SHADOW_TOPIC", "$aws/things/+/shadow/update/documents"),
            processor_worker_count=int(optional_env("PROCESSOR_WORKER_COUNT", "4")),
            processor_queue_size=int(optional_env("PROCESSOR_QUEUE_SIZE", "1000")),
            device_timezone=optional_env("DEVICE_TIMEZONE", "Pacific/Auckland"),
            escalation_cooldown_minutes=int(optional_env("ESCALATION_COOLDOWN_MINUTES", "15")),
            point_gap_ms=int(optional_env("POINT_GAP_MS", "60000")),
            point_write_attempts=int(optional_env("POINT_WRITE_ATTEMPTS", "3")),
            alarm_lookup_order=lookup_order,
            batch_offline_window=(
                int(optional_env("BATCH_OFFLINE_MIN_MINUTES", "11")),
                int(optional_env("BATCH_OFFLINE_MAX_MINUTES", "12")),
            ),
            idle_offline_window=(
                int(optional_env("IDLE_OFFLINE_MIN_MINUTES", "121")),
                int(optional_env("IDLE_OFFLINE_MAX_MINUTES", "122")),
            ),
            sweep_interval_seconds=int(optional_env("SWEEP_INTERVAL_SECONDS", "60")),
            telephony_api_url=optional_env("TELEPHONY_API_URL", "http://shedwatch-dialer:8080"),
            telephony_api_key=require_env("TELEPHONY_API_KEY"),
            connect_instance_id=optional_env("CONNECT_INSTANCE_ID"),
            connect_contact_flow_id=optional_env("CONNECT_CONTACT_FLOW_ID"),
            connect_queue_id=optional_env("CONNECT_QUEUE_ID"),
            ws_gateway_url=optional_env("WS_GATEWAY_URL", "http://shedwatch-ws-gateway:8080"),
            health_port=int(optional_env("HEALTH_PORT", "8080")),
        )
