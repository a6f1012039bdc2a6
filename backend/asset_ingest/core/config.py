from __future__ import annotations

"""Settings for the ingestion engine.

Sources, lowest precedence first:
1. Defaults baked into the models below.
2. YAML file (asset_ingest/config/ingest.yaml, or AIN_CONFIG_YAML).
3. Environment variables (AIN_*), after loading `.env` files if present.

The credential is read from AIN_CREDENTIAL only and is never written back
anywhere or included in repr output.
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic import ValidationError as PydanticValidationError

from asset_ingest.core.errors import ConfigError
from asset_ingest.core.rate_limiter import RateLimitPolicy

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "ingest.yaml"

DEFAULT_POSITIVE_PHRASES = [
    "pending",
    "under review",
    "reviewing",
    "being reviewed",
    "in review",
    "awaiting",
]

DEFAULT_NEGATIVE_PHRASES = [
    "this item is not available",
    "item is not available",
    "this item is unavailable",
    "not available for sale",
    "no longer available",
    "has been declined",
    "was declined",
    "has been rejected",
    "was rejected",
    "declined",
    "rejected",
    "removed",
    "blocked",
    "denied",
]


def _parse_env_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    if "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    value = value.strip()
    if not key:
        return None
    # Strip optional quotes: KEY="value" or KEY='value'
    if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
        value = value[1:-1]
    return key, value


def load_env_if_present(*, override: bool = False, search_dirs: Optional[list[Path]] = None) -> None:
    """Load .env files into process env if present.

    - Searches repo root `.env` then `backend/.env` unless search_dirs is given.
    - Does NOT override existing environment variables unless override=True.
    """
    if search_dirs is None:
        # backend/asset_ingest/core/config.py -> core -> asset_ingest -> backend -> repo root
        repo_root = Path(__file__).resolve().parents[3]
        search_dirs = [repo_root, repo_root / "backend"]

    for d in search_dirs:
        p = d / ".env"
        if not p.exists() or not p.is_file():
            continue
        try:
            content = p.read_text(encoding="utf-8")
        except OSError:
            continue
        for raw in content.splitlines():
            parsed = _parse_env_line(raw)
            if not parsed:
                continue
            k, v = parsed
            if not override and k in os.environ:
                continue
            os.environ[k] = v


class RateLimitSettings(BaseModel):
    max_requests: int = Field(default=10, gt=0)
    window_seconds: float = Field(default=60.0, gt=0)
    min_delay_seconds: float = Field(default=2.0, ge=0)
    auto_throttle: bool = True

    def to_policy(self) -> RateLimitPolicy:
        return RateLimitPolicy(
            max_requests=self.max_requests,
            window_seconds=self.window_seconds,
            min_delay_seconds=self.min_delay_seconds,
            auto_throttle=self.auto_throttle,
        )


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, gt=0)
    backoff_base_seconds: float = Field(default=2.0, ge=0)
    probe_max_attempts: int = Field(default=2, gt=0)


class EndpointSettings(BaseModel):
    audio_upload_url: str = "https://data.roblox.com/Data/Upload.ashx?assetTypeId=3"
    decal_upload_url: str = "https://publish.roblox.com/v1/images"
    csrf_url: str = "https://auth.roblox.com/v2/logout"
    authenticated_user_url: str = "https://users.roblox.com/v1/users/authenticated"
    asset_delivery_url: str = "https://assetdelivery.roblox.com/v2/assetId/{asset_id}"
    catalog_details_url: str = "https://catalog.roblox.com/v1/catalog/items/details"
    detail_page_url: str = "https://www.roblox.com/library/{asset_id}"
    credential_cookie: str = ".ROBLOSECURITY"
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class TimeoutSettings(BaseModel):
    probe_seconds: float = Field(default=10.0, gt=0)
    secondary_probe_seconds: float = Field(default=3.0, gt=0)
    upload_min_seconds: float = Field(default=60.0, gt=0)
    upload_seconds_per_mb: float = Field(default=5.0, ge=0)
    upload_max_seconds: float = Field(default=600.0, gt=0)


class ResolverSettings(BaseModel):
    young_asset_minutes: float = Field(default=5.0, ge=0)
    # None disables age-based decline for owner-only assets.
    owner_only_decline_after_hours: Optional[float] = Field(default=24.0, ge=0)
    verdict_cache_size: int = Field(default=1024, gt=0)
    positive_phrases: list[str] = Field(default_factory=lambda: list(DEFAULT_POSITIVE_PHRASES))
    negative_phrases: list[str] = Field(default_factory=lambda: list(DEFAULT_NEGATIVE_PHRASES))

    @property
    def young_asset_threshold(self) -> timedelta:
        return timedelta(minutes=self.young_asset_minutes)

    @property
    def owner_only_decline_after(self) -> Optional[timedelta]:
        if self.owner_only_decline_after_hours is None:
            return None
        return timedelta(hours=self.owner_only_decline_after_hours)


class KindLimits(BaseModel):
    max_bytes: int = Field(gt=0)
    warn_bytes: Optional[int] = None
    extensions: list[str] = Field(default_factory=list)
    content_types: list[str] = Field(default_factory=list)
    strict_type: bool = False


class ValidationSettings(BaseModel):
    audio: KindLimits = Field(
        default_factory=lambda: KindLimits(
            max_bytes=50 * 1024 * 1024,
            warn_bytes=10 * 1024 * 1024,
            extensions=[".mp3", ".ogg", ".wav", ".m4a"],
            content_types=["audio/mpeg", "audio/mp3", "audio/ogg", "audio/wav", "audio/mp4"],
            strict_type=False,
        )
    )
    decal: KindLimits = Field(
        default_factory=lambda: KindLimits(
            max_bytes=20 * 1024 * 1024,
            extensions=[".png", ".jpg", ".jpeg", ".gif", ".bmp"],
            content_types=["image/png", "image/jpeg", "image/jpg", "image/gif", "image/bmp"],
            strict_type=True,
        )
    )


class IngestSettings(BaseModel):
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    rate_limit_overrides: dict[str, RateLimitSettings] = Field(default_factory=dict)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    endpoints: EndpointSettings = Field(default_factory=EndpointSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    database_url: Optional[str] = None
    credential: Optional[SecretStr] = None

    model_config = ConfigDict(extra="ignore")

    def rate_limit_policies(self) -> tuple[RateLimitPolicy, dict[str, RateLimitPolicy]]:
        return (
            self.rate_limit.to_policy(),
            {k: v.to_policy() for k, v in self.rate_limit_overrides.items()},
        )


_ENV_FIELDS: dict[str, tuple[str, ...]] = {
    "AIN_RATE_LIMIT_MAX_REQUESTS": ("rate_limit", "max_requests"),
    "AIN_RATE_LIMIT_WINDOW_SECONDS": ("rate_limit", "window_seconds"),
    "AIN_RATE_LIMIT_MIN_DELAY_SECONDS": ("rate_limit", "min_delay_seconds"),
    "AIN_MAX_ATTEMPTS": ("retry", "max_attempts"),
    "AIN_DATABASE_URL": ("database_url",),
    "AIN_CREDENTIAL": ("credential",),
}


def _apply_env(raw: dict[str, Any]) -> dict[str, Any]:
    for env_key, path in _ENV_FIELDS.items():
        value = os.environ.get(env_key)
        if value is None or value == "":
            continue
        node = raw
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[path[-1]] = value
    return raw


def load_settings(path: Optional[Path] = None, *, use_env: bool = True) -> IngestSettings:
    if use_env:
        load_env_if_present()

    cfg_path = path
    if cfg_path is None:
        env_path = os.environ.get("AIN_CONFIG_YAML") if use_env else None
        cfg_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    raw: dict[str, Any] = {}
    if cfg_path.exists():
        loaded = yaml.safe_load(cfg_path.read_text(encoding="utf-8"))
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Invalid {cfg_path.name}: expected a top-level mapping.")
        raw = loaded or {}
    elif path is not None:
        raise ConfigError(f"Config file not found: {cfg_path}")

    if use_env:
        raw = _apply_env(raw)

    try:
        return IngestSettings.model_validate(raw)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid ingestion settings: {e}") from e
