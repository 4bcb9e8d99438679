"""
Centralized settings and path configuration for supplier pricing.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


ENV_PREFIX = 'SUPPLIER_PRICING_'


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 3 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


def _env(name: str, cast, default):
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}")


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Project paths
    project_root: Path
    data_dir: Path

    # Cache / live call behaviour
    max_cache_age_hours: float = 24.0
    live_timeout_seconds: float = 10.0

    # Supplier health
    health_log_window: int = 10
    online_window_hours: float = 24.0
    failure_alert_threshold: int = 3

    # Pricing defaults
    default_margin_percent: float = 25.0
    minimum_margin_percent: float = 15.0

    # Comparator
    max_parallel_lookups: int = 8
    search_limit: int = 50

    # Optional pricing configuration overrides
    tiers_csv: Optional[Path] = None
    volume_brackets_csv: Optional[Path] = None

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the project structure and environment."""
        root = project_root or get_project_root()
        data_dir = _env('DATA_DIR', Path, root / 'data')

        tiers_csv = data_dir / 'tiers.csv'
        brackets_csv = data_dir / 'volume_brackets.csv'

        settings = cls(
            project_root=root,
            data_dir=data_dir,
            max_cache_age_hours=_env('MAX_CACHE_AGE_HOURS', float, 24.0),
            live_timeout_seconds=_env('LIVE_TIMEOUT', float, 10.0),
            health_log_window=_env('HEALTH_WINDOW', int, 10),
            online_window_hours=_env('ONLINE_WINDOW_HOURS', float, 24.0),
            failure_alert_threshold=_env('FAILURE_ALERT_THRESHOLD', int, 3),
            default_margin_percent=_env('DEFAULT_MARGIN', float, 25.0),
            minimum_margin_percent=_env('MIN_MARGIN', float, 15.0),
            max_parallel_lookups=_env('MAX_PARALLEL', int, 8),
            search_limit=_env('SEARCH_LIMIT', int, 50),
            tiers_csv=tiers_csv if tiers_csv.exists() else None,
            volume_brackets_csv=brackets_csv if brackets_csv.exists() else None,
        )
        settings.validate()
        return settings

    def validate(self):
        """Reject settings that would break cache or timeout arithmetic."""
        if self.max_cache_age_hours <= 0:
            raise ValueError("max_cache_age_hours must be positive")
        if self.live_timeout_seconds <= 0:
            raise ValueError("live_timeout_seconds must be positive")
        if self.health_log_window <= 0:
            raise ValueError("health_log_window must be positive")
        if self.max_parallel_lookups <= 0:
            raise ValueError("max_parallel_lookups must be positive")


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
