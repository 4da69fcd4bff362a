"""Tests for zone-based logistics pricing and geocoding."""

from dataclasses import replace
from datetime import datetime

import httpx
import pytest

from medipod.config import BusinessConfig
from medipod.tools.geo import (
    ZONE_BANDS,
    GeocodingClient,
    GeoPricingResolver,
    band_for_distance,
    band_for_zone,
    distance_adjustment,
    haversine_km,
    match_gazetteer,
    time_surcharge,
)
from tests.conftest import NAIROBI, WEDNESDAY_10AM_UTC, NoGeocoder, make_config

PRICING = make_config().pricing
BUSINESS = replace(BusinessConfig(), utc_offset_hours=3)


def resolver(geocoder=None) -> GeoPricingResolver:
    return GeoPricingResolver(
        geocoder or NoGeocoder(), PRICING, BUSINESS, clock=lambda: WEDNESDAY_10AM_UTC
    )


def geocoder_with(handler, api_key="test-key") -> GeocodingClient:
    config = replace(PRICING, geocode_api_key=api_key)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeocodingClient(config, client=client)


def geocode_ok(lat: float, lng: float) -> dict:
    return {"status": "OK", "results": [{"geometry": {"location": {"lat": lat, "lng": lng}}}]}


class TestZoneBands:
    @pytest.mark.parametrize("distance,zone", [
        (0.0, "A"), (2.99, "A"), (3.0, "B"), (6.9, "B"), (7.0, "C"),
        (12.0, "D"), (19.9, "D"), (20.0, "E"), (85.0, "E"),
    ])
    def test_band_for_distance(self, distance, zone):
        assert band_for_distance(distance).zone == zone

    def test_bands_are_contiguous(self):
        for lower, upper in zip(ZONE_BANDS, ZONE_BANDS[1:]):
            assert lower.upper_km == upper.lower_km

    def test_band_for_unknown_zone(self):
        with pytest.raises(KeyError):
            band_for_zone("Z")

    def test_base_fees(self):
        assert [b.base_fee for b in ZONE_BANDS] == [200, 300, 400, 500, 600]


class TestFeeComponents:
    @pytest.mark.parametrize("hour,expected", [
        (6, 0), (7, 50), (9, 50), (10, 0), (16, 0), (17, 50), (19, 50), (20, 0),
    ])
    def test_weekday_rush_hours(self, hour, expected):
        moment = datetime(2026, 10, 14, hour, 0, tzinfo=NAIROBI)
        assert time_surcharge(moment, PRICING) == expected

    @pytest.mark.parametrize("day", [17, 18])
    def test_weekend_surcharge_all_day(self, day):
        for hour in (3, 8, 12, 18):
            moment = datetime(2026, 10, day, hour, 0, tzinfo=NAIROBI)
            assert time_surcharge(moment, PRICING) == 100

    def test_no_adjustment_below_midpoint(self):
        assert distance_adjustment(band_for_zone("B"), 4.0, 10) == 0

    def test_adjustment_beyond_midpoint(self):
        assert distance_adjustment(band_for_zone("B"), 6.0, 10) == 10

    def test_adjustment_clamped_to_band_edge(self):
        assert distance_adjustment(band_for_zone("B"), 9.0, 10) == 20

    def test_open_band_has_no_adjustment(self):
        assert distance_adjustment(band_for_zone("E"), 60.0, 10) == 0

    def test_haversine_same_point(self):
        assert haversine_km(-1.2921, 36.8219, -1.2921, 36.8219) == 0.0


class TestGazetteer:
    @pytest.mark.parametrize("text,key", [
        ("Westlands", "westlands"),
        ("  WESTLANDS ", "westlands"),
        ("I live in South B near the mall", "south b"),
        ("athi river town", "athi river"),
        ("kile", "kileleshwa"),
    ])
    def test_matches(self, text, key):
        assert match_gazetteer(text) == key

    @pytest.mark.parametrize("text", ["", "ki", "Mombasa"])
    def test_no_match(self, text):
        assert match_gazetteer(text) is None


class TestResolver:
    @pytest.mark.asyncio
    async def test_westlands_weekday_quote(self):
        quote = await resolver().resolve("Westlands")
        assert quote.zone == "A"
        assert quote.base_fee == 200
        assert quote.eta == "15–30 mins"
        assert quote.distance_km == 4.4
        assert quote.time_surcharge == 0
        assert quote.distance_adjustment == 15
        assert quote.fee == 215
        assert quote.location == "Westlands"
        assert quote.source == "gazetteer"

    @pytest.mark.asyncio
    async def test_resolution_is_deterministic(self):
        moment = datetime(2026, 10, 14, 12, 0, tzinfo=NAIROBI)
        first = await resolver().resolve("kilimani", at=moment)
        second = await resolver().resolve("Kilimani", at=moment)
        assert first == second

    @pytest.mark.asyncio
    async def test_rush_hour_adds_surcharge(self):
        quote = await resolver().resolve("Westlands", at=datetime(2026, 10, 14, 8, 0,
                                                                  tzinfo=NAIROBI))
        assert quote.time_surcharge == 50
        assert quote.fee == 265

    @pytest.mark.asyncio
    async def test_weekend_adds_surcharge(self):
        quote = await resolver().resolve("Westlands", at=datetime(2026, 10, 17, 12, 0,
                                                                  tzinfo=NAIROBI))
        assert quote.fee == 315

    @pytest.mark.asyncio
    async def test_naive_time_is_local(self):
        quote = await resolver().resolve("Westlands", at=datetime(2026, 10, 14, 8, 0))
        assert quote.time_surcharge == 50

    @pytest.mark.asyncio
    async def test_fee_is_sum_of_components(self):
        for place in ("cbd", "parklands", "ruaka", "juja", "machakos"):
            quote = await resolver().resolve(place)
            assert quote.fee == quote.base_fee + quote.time_surcharge + quote.distance_adjustment
            assert quote.fee > 0

    @pytest.mark.asyncio
    async def test_unknown_place_falls_back_to_default_zone(self):
        quote = await resolver().resolve("Some Unknown Estate")
        assert quote.zone == "C"
        assert quote.distance_km == 8.0
        assert quote.fee == 400
        assert quote.source == "default"
        assert quote.location == "Some Unknown Estate"

    @pytest.mark.asyncio
    async def test_geocoded_place_uses_distance_band(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=geocode_ok(-1.2, 36.9))

        quote = await resolver(geocoder_with(handler)).resolve("Garden Estate")
        assert quote.source == "geocoder"
        assert quote.zone == band_for_distance(quote.distance_km).zone
        assert quote.latitude == -1.2
        assert seen[0].url.params["address"] == "Garden Estate, Nairobi, Kenya"
        assert seen[0].url.params["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_geocoder_error_falls_back(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        quote = await resolver(geocoder_with(handler)).resolve("Garden Estate")
        assert quote.source == "default"


class TestGeocodingClient:
    @pytest.mark.asyncio
    async def test_returns_coordinates(self):
        client = geocoder_with(lambda request: httpx.Response(200, json=geocode_ok(-1.3, 36.7)))
        assert await client.geocode("Karen") == (-1.3, 36.7)

    @pytest.mark.asyncio
    async def test_no_results(self):
        client = geocoder_with(
            lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})
        )
        assert await client.geocode("Nowhere") is None

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = geocoder_with(lambda request: httpx.Response(200, content=b"<html>"))
        assert await client.geocode("Karen") is None

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        assert await geocoder_with(handler).geocode("Karen") is None

    @pytest.mark.asyncio
    async def test_missing_key_skips_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("should not be called")

        assert await geocoder_with(handler, api_key=None).geocode("Karen") is None
