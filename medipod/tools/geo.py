"""
Zone-based logistics pricing.

Turns free-text location input into a zone, distance, fee and ETA. Known
Nairobi neighbourhoods resolve from a local gazetteer. Anything else is
geocoded, and when that fails the quote falls back to a default zone so a
booking can always proceed.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
from pydantic import BaseModel

from medipod.config import BusinessConfig, PricingConfig, settings
from medipod.utils import normalize_text

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class ZoneBand:
    """Distance band [lower, upper) with its base fee and ETA."""
    zone: str
    lower_km: float
    upper_km: Optional[float]
    base_fee: int
    eta: str

    @property
    def midpoint_km(self) -> Optional[float]:
        if self.upper_km is None:
            return None
        return (self.lower_km + self.upper_km) / 2

    def contains(self, distance_km: float) -> bool:
        if distance_km < self.lower_km:
            return False
        return self.upper_km is None or distance_km < self.upper_km


ZONE_BANDS: list[ZoneBand] = [
    ZoneBand("A", 0.0, 3.0, 200, "15–30 mins"),
    ZoneBand("B", 3.0, 7.0, 300, "30–45 mins"),
    ZoneBand("C", 7.0, 12.0, 400, "45–60 mins"),
    ZoneBand("D", 12.0, 20.0, 500, "1–2 hrs"),
    ZoneBand("E", 20.0, None, 600, "+2 hrs"),
]

# name -> (lat, lng, zone)
GAZETTEER: dict[str, tuple[float, float, str]] = {
    "westlands": (-1.2531, 36.8172, "A"),
    "kileleshwa": (-1.2981, 36.8073, "A"),
    "kilimani": (-1.3000, 36.8000, "A"),
    "cbd": (-1.2921, 36.8219, "A"),
    "south b": (-1.3200, 36.8500, "B"),
    "hurlingham": (-1.3100, 36.8300, "B"),
    "parklands": (-1.2600, 36.8200, "B"),
    "lavington": (-1.2800, 36.8000, "B"),
    "ruaka": (-1.1800, 36.8500, "C"),
    "rongai": (-1.4000, 36.6500, "C"),
    "embakasi": (-1.3000, 36.9000, "C"),
    "donholm": (-1.2900, 36.8800, "C"),
    "kitengela": (-1.4700, 36.9500, "D"),
    "juja": (-1.1000, 37.0100, "D"),
    "limuru": (-1.1000, 36.6400, "D"),
    "athi river": (-1.4500, 36.9800, "D"),
    "thika": (-1.0500, 37.0700, "E"),
    "ngong": (-1.3600, 36.6500, "E"),
    "machakos": (-1.5200, 37.2600, "E"),
}


class LogisticsQuote(BaseModel):
    """Priced logistics for a single location."""
    zone: str
    location: str
    distance_km: float
    base_fee: int
    time_surcharge: int = 0
    distance_adjustment: int = 0
    fee: int
    eta: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source: str = "default"


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres, rounded to 0.1."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 1)


def band_for_distance(distance_km: float) -> ZoneBand:
    for band in ZONE_BANDS:
        if band.contains(distance_km):
            return band
    return ZONE_BANDS[-1]


def band_for_zone(zone: str) -> ZoneBand:
    for band in ZONE_BANDS:
        if band.zone == zone:
            return band
    raise KeyError(f"Unknown zone: {zone!r}")


def time_surcharge(local_time: datetime, config: PricingConfig) -> int:
    """Weekend surcharge, or rush-hour surcharge on weekdays."""
    if local_time.weekday() >= 5:
        return config.weekend_surcharge
    hour = local_time.hour
    if 7 <= hour <= 9 or 17 <= hour <= 19:
        return config.rush_hour_surcharge
    return 0


def distance_adjustment(band: ZoneBand, distance_km: float, per_km: int) -> int:
    """Extra fee for the part of the band beyond its midpoint.

    Distance is clamped to the band's upper edge. Open-ended bands carry
    no adjustment.
    """
    midpoint = band.midpoint_km
    if midpoint is None or band.upper_km is None or distance_km <= midpoint:
        return 0
    effective = min(distance_km, band.upper_km)
    return max(0, round((effective - midpoint) * per_km))


def match_gazetteer(text: str) -> Optional[str]:
    """Find the gazetteer key for ``text``.

    Exact match wins, then the longest key contained in the input, then a
    key the input is a prefix of (three characters or more).
    """
    query = normalize_text(text)
    if not query:
        return None
    if query in GAZETTEER:
        return query
    contained = [key for key in GAZETTEER if key in query]
    if contained:
        return max(contained, key=lambda k: (len(k), k))
    if len(query) >= 3:
        for key in sorted(GAZETTEER):
            if key.startswith(query):
                return key
    return None


class GeocodingClient:
    """Forward geocoder backed by the Google Geocoding HTTP API."""

    def __init__(
        self,
        config: PricingConfig = settings.pricing,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config
        self._client = client

    async def _get(self, params: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(self._config.geocode_url, params=params)
        async with httpx.AsyncClient(timeout=self._config.geocode_timeout_sec) as client:
            return await client.get(self._config.geocode_url, params=params)

    async def geocode(self, text: str) -> Optional[tuple[float, float]]:
        """Return (lat, lng) for ``text`` or None when it cannot be located."""
        if not self._config.geocode_api_key:
            return None
        params = {
            "address": f"{text}, {self._config.geocode_region_suffix}",
            "key": self._config.geocode_api_key,
        }
        try:
            response = await asyncio.wait_for(
                self._get(params), timeout=self._config.geocode_timeout_sec
            )
            response.raise_for_status()
            data = response.json()
        except asyncio.TimeoutError:
            logger.warning("Geocoding timed out for %r", text)
            return None
        except httpx.HTTPError as exc:
            logger.warning("Geocoding failed for %r: %s", text, exc)
            return None
        except ValueError:
            logger.warning("Geocoding returned invalid JSON for %r", text)
            return None

        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            logger.info("No geocoding result for %r (status=%s)", text, data.get("status"))
            return None
        location = results[0].get("geometry", {}).get("location", {})
        try:
            return float(location["lat"]), float(location["lng"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Geocoding result for %r had no coordinates", text)
            return None


class GeoPricingResolver:
    """
    Resolves location text into a LogisticsQuote.

    Resolution never raises: unknown places and geocoder failures fall
    back to the configured default zone and distance.
    """

    def __init__(
        self,
        geocoder: Optional[GeocodingClient] = None,
        config: PricingConfig = settings.pricing,
        business: BusinessConfig = settings.business,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._geocoder = geocoder or GeocodingClient(config)
        self._config = config
        self._tz = timezone(timedelta(hours=business.utc_offset_hours))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _local(self, at: Optional[datetime]) -> datetime:
        moment = at if at is not None else self._clock()
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self._tz)
        return moment.astimezone(self._tz)

    def _price(
        self,
        location: str,
        band: ZoneBand,
        distance_km: float,
        local_time: datetime,
        source: str,
        coords: Optional[tuple[float, float]] = None,
    ) -> LogisticsQuote:
        surcharge = time_surcharge(local_time, self._config)
        adjustment = distance_adjustment(band, distance_km, self._config.adjustment_per_km)
        fee = max(0, band.base_fee + surcharge + adjustment)
        return LogisticsQuote(
            zone=band.zone,
            location=location,
            distance_km=distance_km,
            base_fee=band.base_fee,
            time_surcharge=surcharge,
            distance_adjustment=adjustment,
            fee=fee,
            eta=band.eta,
            latitude=coords[0] if coords else None,
            longitude=coords[1] if coords else None,
            source=source,
        )

    def _distance_from_reference(self, lat: float, lng: float) -> float:
        return haversine_km(self._config.reference_lat, self._config.reference_lng, lat, lng)

    async def resolve(self, location_text: str, at: Optional[datetime] = None) -> LogisticsQuote:
        """Quote the logistics fee for ``location_text`` at time ``at``."""
        local_time = self._local(at)
        display = location_text.strip()

        key = match_gazetteer(location_text)
        if key is not None:
            lat, lng, zone = GAZETTEER[key]
            distance = self._distance_from_reference(lat, lng)
            quote = self._price(
                key.title(), band_for_zone(zone), distance, local_time, "gazetteer", (lat, lng)
            )
            logger.debug("Gazetteer match %r -> zone %s (%.1f km)", key, zone, distance)
            return quote

        coords = await self._geocoder.geocode(display) if display else None
        if coords is not None:
            distance = self._distance_from_reference(*coords)
            band = band_for_distance(distance)
            logger.debug("Geocoded %r -> zone %s (%.1f km)", display, band.zone, distance)
            return self._price(display, band, distance, local_time, "geocoder", coords)

        logger.info("Location %r unresolved, using default zone %s", display,
                    self._config.default_zone)
        return self._price(
            display or "Unknown",
            band_for_zone(self._config.default_zone),
            self._config.default_distance_km,
            local_time,
            "default",
        )
