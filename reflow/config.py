import os

# periodic loops never spin faster than this (seconds)
MIN_INTERVAL = 0.01


def _parse_point(raw, default):
    try:
        lat, lng = (float(part) for part in raw.split(","))
    except (AttributeError, ValueError):
        return default
    return (lat, lng)


class Config:
    """Reads service configuration from environment variables."""

    def __init__(self):
        self.http_port = int(os.getenv("HTTP_PORT", "8000"))
        self.data_dir = os.getenv("DATA_DIR", "/data")
        self.storage_path = os.getenv("STORAGE_PATH", f"{self.data_dir}/reflow.db")
        self.storage_key = os.getenv("STORAGE_KEY", "@reflow:materials")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        self.simulation_enabled = os.getenv("SIMULATION_ENABLED", "true").lower() in (
            "1",
            "true",
            "yes",
        )
        self.movement_interval = max(float(os.getenv("MOVEMENT_INTERVAL", "2")), MIN_INTERVAL)
        self.movement_step = abs(float(os.getenv("MOVEMENT_STEP", "0.00025")))
        self.demand_interval = max(float(os.getenv("DEMAND_INTERVAL", "10")), MIN_INTERVAL)
        self.demand_probability = min(
            max(float(os.getenv("DEMAND_PROBABILITY", "0.3")), 0.0), 1.0
        )
        self.demand_jitter = abs(float(os.getenv("DEMAND_JITTER", "0.01")))
        # "lat,lng" - also the fallback location for reports without a fix
        self.city_center = _parse_point(
            os.getenv("CITY_CENTER", ""), (-23.5505, -46.6333)
        )

        self.notification_ttl = max(float(os.getenv("NOTIFICATION_TTL", "5")), 0.0)

        raw_seed = os.getenv("SIMULATION_SEED", "")
        self.simulation_seed = int(raw_seed) if raw_seed.strip() else None

        self.service_url = os.getenv("REFLOW_URL", f"http://localhost:{self.http_port}")
        self.scenario = os.getenv("SCENARIO", "claim_race")
        # comma-separated collector ids used by the claim race scenario
        raw_collectors = os.getenv("SCENARIO_COLLECTORS", "C1,C2")
        self.scenario_collectors = [c.strip() for c in raw_collectors.split(",") if c.strip()]

        self.client_retries = max(int(os.getenv("CLIENT_RETRIES", "2")), 1)
        self.client_retry_backoff_ms = max(
            int(os.getenv("CLIENT_RETRY_BACKOFF_MS", "150")), 0
        )


config = Config()
