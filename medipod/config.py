"""
Centralized configuration with environment variable overrides.

Pricing bands, loyalty thresholds, session lifetimes and collaborator
endpoints are all configurable here. Nothing is hardcoded in the
conversation, booking or loyalty logic.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from medipod.logging_context import install_user_id_filter

load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [%(user_id)s]: %(message)s"


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BusinessConfig:
    """Business-facing details shown to users."""

    name: str = os.getenv("BUSINESS_NAME", "MediPod Africa")
    support_phone: str = os.getenv("SUPPORT_PHONE", "+254 700 000 000")
    support_email: str = os.getenv("SUPPORT_EMAIL", "support@medipod.africa")
    currency: str = os.getenv("CURRENCY", "KES")
    timezone_name: str = os.getenv("BUSINESS_TIMEZONE", "Africa/Nairobi")
    utc_offset_hours: int = _safe_int("BUSINESS_UTC_OFFSET_HOURS", "3")


@dataclass(frozen=True)
class SessionConfig:
    """Conversation session lifetime and storage."""

    ttl_seconds: int = _safe_int("SESSION_TTL_SECONDS", "3600")
    key_prefix: str = os.getenv("SESSION_KEY_PREFIX", "medipod:session:")
    lock_prefix: str = os.getenv("SESSION_LOCK_PREFIX", "medipod:lock:")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    lock_timeout_sec: float = _safe_float("SESSION_LOCK_TIMEOUT", "10.0")
    backend: str = os.getenv("SESSION_BACKEND", "memory")


@dataclass(frozen=True)
class DatabaseConfig:
    """Relational store for bookings, profiles and loyalty."""

    url: str = os.getenv("DATABASE_URL", "sqlite:///./medipod.db")
    echo: bool = _safe_bool("DATABASE_ECHO", "false")


@dataclass(frozen=True)
class PricingConfig:
    """Logistics pricing and geocoding settings."""

    reference_lat: float = _safe_float("PRICING_REFERENCE_LAT", "-1.2921")
    reference_lng: float = _safe_float("PRICING_REFERENCE_LNG", "36.8219")
    default_zone: str = os.getenv("PRICING_DEFAULT_ZONE", "C")
    default_distance_km: float = _safe_float("PRICING_DEFAULT_DISTANCE_KM", "8.0")
    rush_hour_surcharge: int = _safe_int("PRICING_RUSH_HOUR_SURCHARGE", "50")
    weekend_surcharge: int = _safe_int("PRICING_WEEKEND_SURCHARGE", "100")
    adjustment_per_km: int = _safe_int("PRICING_ADJUSTMENT_PER_KM", "10")
    geocode_url: str = os.getenv(
        "GEOCODE_URL", "https://maps.googleapis.com/maps/api/geocode/json"
    )
    geocode_api_key: Optional[str] = os.getenv("GOOGLE_MAPS_API_KEY") or None
    geocode_timeout_sec: float = _safe_float("PRICING_GEOCODE_TIMEOUT", "5.0")
    geocode_region_suffix: str = os.getenv("GEOCODE_REGION_SUFFIX", "Nairobi, Kenya")


@dataclass(frozen=True)
class AdvisoryConfig:
    """AI health-advice collaborator settings."""

    api_key: Optional[str] = os.getenv("GROQ_API_KEY") or None
    base_url: str = os.getenv("ADVISORY_BASE_URL", "https://api.groq.com/openai/v1")
    model: str = os.getenv("ADVISORY_MODEL", "llama-3.3-70b-versatile")
    temperature: float = _safe_float("ADVISORY_TEMPERATURE", "0.7")
    max_tokens: int = _safe_int("ADVISORY_MAX_TOKENS", "800")
    timeout_sec: float = _safe_float("ADVISORY_TIMEOUT", "15.0")
    min_chars: int = _safe_int("ADVISORY_MIN_CHARS", "20")


@dataclass(frozen=True)
class LoyaltyConfig:
    """Points, tiers and referral awards."""

    points_per_booking: int = _safe_int("LOYALTY_POINTS_PER_BOOKING", "50")
    silver_threshold: int = _safe_int("LOYALTY_SILVER_THRESHOLD", "200")
    gold_threshold: int = _safe_int("LOYALTY_GOLD_THRESHOLD", "500")
    referrer_points: int = _safe_int("REFERRAL_REFERRER_POINTS", "500")
    referred_points: int = _safe_int("REFERRAL_REFERRED_POINTS", "500")
    referral_max_uses: int = _safe_int("REFERRAL_MAX_USES", "5")


@dataclass(frozen=True)
class NotificationConfig:
    """Offsets for scheduled booking notifications."""

    reminder_offset_minutes: int = _safe_int("NOTIFY_REMINDER_OFFSET_MINUTES", "60")
    arrival_offset_minutes: int = _safe_int("NOTIFY_ARRIVAL_OFFSET_MINUTES", "0")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    business: BusinessConfig = field(default_factory=BusinessConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    advisory: AdvisoryConfig = field(default_factory=AdvisoryConfig)
    loyalty: LoyaltyConfig = field(default_factory=LoyaltyConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if not 0.0 <= config.advisory.temperature <= 2.0:
        raise ValueError(
            f"ADVISORY_TEMPERATURE must be between 0.0 and 2.0, got {config.advisory.temperature}"
        )
    if config.advisory.max_tokens < 1:
        raise ValueError(f"ADVISORY_MAX_TOKENS must be >= 1, got {config.advisory.max_tokens}")
    if config.advisory.timeout_sec <= 0:
        raise ValueError(f"ADVISORY_TIMEOUT must be > 0, got {config.advisory.timeout_sec}")
    if config.session.ttl_seconds < 1:
        raise ValueError(f"SESSION_TTL_SECONDS must be >= 1, got {config.session.ttl_seconds}")
    if config.pricing.default_zone not in ("A", "B", "C", "D", "E"):
        raise ValueError(
            f"PRICING_DEFAULT_ZONE must be one of A-E, got {config.pricing.default_zone!r}"
        )
    if config.pricing.geocode_timeout_sec <= 0:
        raise ValueError(
            f"PRICING_GEOCODE_TIMEOUT must be > 0, got {config.pricing.geocode_timeout_sec}"
        )

    for name, value in [
        ("PRICING_RUSH_HOUR_SURCHARGE", config.pricing.rush_hour_surcharge),
        ("PRICING_WEEKEND_SURCHARGE", config.pricing.weekend_surcharge),
        ("PRICING_ADJUSTMENT_PER_KM", config.pricing.adjustment_per_km),
        ("LOYALTY_POINTS_PER_BOOKING", config.loyalty.points_per_booking),
        ("REFERRAL_REFERRER_POINTS", config.loyalty.referrer_points),
        ("REFERRAL_REFERRED_POINTS", config.loyalty.referred_points),
        ("NOTIFY_REMINDER_OFFSET_MINUTES", config.notifications.reminder_offset_minutes),
        ("NOTIFY_ARRIVAL_OFFSET_MINUTES", config.notifications.arrival_offset_minutes),
    ]:
        if value < 0:
            raise ValueError(f"{name} must be >= 0, got {value}")

    if config.loyalty.silver_threshold >= config.loyalty.gold_threshold:
        raise ValueError(
            "LOYALTY_SILVER_THRESHOLD must be below LOYALTY_GOLD_THRESHOLD, "
            f"got {config.loyalty.silver_threshold} >= {config.loyalty.gold_threshold}"
        )
    if config.loyalty.referral_max_uses < 1:
        raise ValueError(
            f"REFERRAL_MAX_USES must be >= 1, got {config.loyalty.referral_max_uses}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    install_user_id_filter(logging.getLogger())
    logger.info("Configuration loaded for '%s'", config.business.name)
    return config


# Singleton instance
settings = load_config()
