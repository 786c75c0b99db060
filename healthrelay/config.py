from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_prefix": "HEALTHRELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    health_path: str = "/health"

    # Logging
    log_level: str = "INFO"

    # Remote endpoints + local probes (YAML)
    topology_file: str = "healthrelay.yaml"

    # Exporter (local health → central collector)
    exporter_enabled: bool = True
    exporter_target_application_url: str = ""   # base URL when the endpoint is a path
    exporter_health_check_endpoint: str = "/health"
    exporter_central_endpoint: str = ""
    exporter_api_key: str = ""
    exporter_api_key_header_name: str = "Authorization"
    exporter_api_key_scheme: str = "ApiKey"     # empty → send the raw key
    exporter_check_interval: float = 5          # minutes, floor 1
    exporter_http_timeout: float = 30           # seconds

    # Aggregator (peers merged into /health)
    aggregator_http_timeout: float = 5          # seconds, per-endpoint default
    aggregator_include_remote_summary_entry: bool = True
    # Single-endpoint shorthand, used when the topology lists no endpoints
    aggregator_remote_health_endpoint: str = ""
    aggregator_remote_entry_name: str = "api"


def load_settings() -> Settings:
    """Fresh read of env / .env so the exporter can pick up live changes."""
    return Settings()


settings = Settings()
