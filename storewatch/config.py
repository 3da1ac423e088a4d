"""Configuration management for the store monitoring engine."""

import os
from typing import Any, Callable, Dict, Optional

import yaml
from pydantic import BaseModel, Field


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; StorewatchBot/1.0; +https://storewatch.dev/bot)"


class WatchConfig(BaseModel):
    """Main configuration for the monitoring engine."""

    log_level: str = Field(default="INFO", description="Logging level")

    # Visual diff policy
    diff_threshold_percent: float = Field(default=5.0, description="Diff percentage above which an alert is raised")
    pixel_threshold: float = Field(default=0.1, ge=0.0, le=1.0, description="Per-pixel tolerance as a fraction of the channel range")
    high_severity_percent: float = Field(default=20.0, description="Diff percentage above which an alert is high severity")
    advance_baseline_on_alert: bool = Field(default=False, description="Adopt the new screenshot as baseline even when it raised an alert")

    # Failure tracking
    max_failures_before_inactive: int = Field(default=5, ge=1, description="Consecutive connectivity failures before a store is deactivated")

    # Scheduling settings
    visual_interval_seconds: int = Field(default=15 * 60, ge=1, description="Visual check cycle period")
    ping_interval_seconds: int = Field(default=5 * 60, ge=1, description="Ping cycle period")
    store_delay_seconds: float = Field(default=5.0, ge=0.0, description="Pause between stores in a visual cycle")

    # Capture settings
    capture_timeout_seconds: float = Field(default=45.0, gt=0, description="Render capture timeout")
    capture_settle_seconds: float = Field(default=5.0, ge=0.0, description="Wait after load before the screenshot")
    viewport_width: int = Field(default=1280, description="Capture viewport width")
    viewport_height: int = Field(default=800, description="Capture viewport height")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User agent announced by the capture browser")
    browser_ws_endpoint: Optional[str] = Field(default=None, description="Remote browser CDP endpoint; local chromium when unset")
    browser_headless: bool = Field(default=True, description="Run the local browser in headless mode")

    # Probe settings
    probe_timeout_seconds: float = Field(default=10.0, gt=0, description="Availability probe timeout")
    ping_alert_cooldown_seconds: int = Field(default=0, ge=0, description="Minimum seconds between availability alerts per store (0 disables)")

    # Persistence
    database_path: str = Field(default="data/storewatch.db", description="SQLite database file")
    artifact_backend: str = Field(default="local", description="Artifact backend: local or s3")
    artifacts_dir: str = Field(default="data/artifacts", description="Root directory for the local artifact backend")
    artifacts_base_url: str = Field(default="/artifacts", description="Public URL prefix for local artifacts")
    s3_bucket: str = Field(default="storewatch-screenshots", description="Bucket for screenshots")
    s3_endpoint_url: Optional[str] = Field(default=None, description="S3-compatible endpoint (R2, MinIO)")
    s3_region: str = Field(default="auto", description="S3 region")
    s3_access_key: Optional[str] = Field(default=None, description="S3 access key id")
    s3_secret_key: Optional[str] = Field(default=None, description="S3 secret access key")
    s3_public_url: Optional[str] = Field(default=None, description="Public read URL prefix for the bucket")

    # Notifications
    telegram_bot_token: Optional[str] = Field(default=None, description="Telegram bot token")
    telegram_chat_id: Optional[str] = Field(default=None, description="Fallback chat for stores without an owner chat")
    dashboard_url: Optional[str] = Field(default=None, description="Dashboard link included in alert messages")


def _as_bool(value: str) -> bool:
    s = str(value).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _as_str(value: str) -> str:
    s = str(value).strip()
    if not s:
        raise ValueError("empty value")
    return s


# env var -> (field, converter)
ENV_OVERRIDES: Dict[str, tuple[str, Callable[[str], Any]]] = {
    "LOG_LEVEL": ("log_level", _as_str),
    "DIFF_THRESHOLD_PERCENT": ("diff_threshold_percent", float),
    "PIXEL_THRESHOLD": ("pixel_threshold", float),
    "HIGH_SEVERITY_PERCENT": ("high_severity_percent", float),
    "ADVANCE_BASELINE_ON_ALERT": ("advance_baseline_on_alert", _as_bool),
    "MAX_FAILURES_BEFORE_INACTIVE": ("max_failures_before_inactive", int),
    "VISUAL_INTERVAL_SECONDS": ("visual_interval_seconds", int),
    "PING_INTERVAL_SECONDS": ("ping_interval_seconds", int),
    "STORE_DELAY_SECONDS": ("store_delay_seconds", float),
    "CAPTURE_TIMEOUT_SECONDS": ("capture_timeout_seconds", float),
    "CAPTURE_SETTLE_SECONDS": ("capture_settle_seconds", float),
    "CAPTURE_USER_AGENT": ("user_agent", _as_str),
    "BROWSER_WS_ENDPOINT": ("browser_ws_endpoint", _as_str),
    "BROWSER_HEADLESS": ("browser_headless", _as_bool),
    "PROBE_TIMEOUT_SECONDS": ("probe_timeout_seconds", float),
    "PING_ALERT_COOLDOWN_SECONDS": ("ping_alert_cooldown_seconds", int),
    "STOREWATCH_DB_PATH": ("database_path", _as_str),
    "ARTIFACT_BACKEND": ("artifact_backend", _as_str),
    "ARTIFACTS_DIR": ("artifacts_dir", _as_str),
    "ARTIFACTS_BASE_URL": ("artifacts_base_url", _as_str),
    "S3_BUCKET": ("s3_bucket", _as_str),
    "S3_ENDPOINT_URL": ("s3_endpoint_url", _as_str),
    "S3_REGION": ("s3_region", _as_str),
    "S3_ACCESS_KEY": ("s3_access_key", _as_str),
    "S3_SECRET_KEY": ("s3_secret_key", _as_str),
    "S3_PUBLIC_URL": ("s3_public_url", _as_str),
    "TELEGRAM_BOT_TOKEN": ("telegram_bot_token", _as_str),
    "TELEGRAM_CHAT_ID": ("telegram_chat_id", _as_str),
    "DASHBOARD_URL": ("dashboard_url", _as_str),
}


def load_config(config_path: Optional[str] = None) -> WatchConfig:
    """Load configuration from file and environment variables."""
    if config_path is None:
        config_path = os.getenv("STOREWATCH_CONFIG", "config/storewatch.yaml")

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    # Environment wins over the file; unparseable values keep the file/default value.
    for env_name, (key, convert) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            config_data[key] = convert(raw)
        except ValueError:
            continue

    return WatchConfig(**config_data)


def get_config() -> WatchConfig:
    """Get the configuration for the current environment."""
    return load_config()
