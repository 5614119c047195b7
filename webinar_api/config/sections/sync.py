from webinar_api.config.serializable import Serializable


class Sync(Serializable):
    page_ceiling: int = 50
    batch_size: int = 50
    max_concurrency: int = 5

    heartbeat_interval_seconds: float = 30.0
    stale_run_minutes: int = 30

    overall_timeout_minutes: int = 40
    list_fetch_timeout_seconds: float = 300.0
    detail_fetch_timeout_seconds: float = 60.0
    webinar_timeout_seconds: float = 120.0
    baseline_timeout_seconds: float = 30.0
    verification_timeout_seconds: float = 60.0

    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    retry_backoff_multiplier: float = 2.0
    retry_max_delay_ms: int = 8000

    initial_past_days: int = 913
    initial_future_days: int = 365
    incremental_past_days: int = 30
    incremental_future_days: int = 30

    verification_sample_size: int = 100
