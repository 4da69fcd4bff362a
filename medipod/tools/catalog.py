"""Service catalog, visit slots, payment methods, bundles and health tips."""

import logging
from typing import Optional, TypedDict

from medipod.schemas.profile_schema import HealthProfile

logger = logging.getLogger(__name__)


class ServiceInfo(TypedDict):
    key: str
    name: str
    price: int
    duration: int
    category: str


class TimeSlot(TypedDict):
    key: str
    label: str
    start: str
    end: str


class PaymentMethod(TypedDict):
    key: str
    code: str
    label: str
    reference_prefix: str


class Bundle(TypedDict):
    key: str
    name: str
    service_keys: list[str]
    discount_percent: int
    description: str


SERVICE_CATALOG: dict[str, ServiceInfo] = {
    "1": {"key": "1", "name": "Blood Pressure / Diabetes Check", "price": 500,
          "duration": 30, "category": "monitoring"},
    "2": {"key": "2", "name": "Women's Health", "price": 800,
          "duration": 45, "category": "specialized"},
    "3": {"key": "3", "name": "Child Check-Up", "price": 600,
          "duration": 30, "category": "pediatric"},
    "4": {"key": "4", "name": "Mental Health", "price": 1000,
          "duration": 60, "category": "specialized"},
    "5": {"key": "5", "name": "General Consultation", "price": 400,
          "duration": 25, "category": "general"},
    "6": {"key": "6", "name": "Other (we'll ask more)", "price": 500,
          "duration": 30, "category": "general"},
}

TIME_SLOTS: dict[str, TimeSlot] = {
    "1": {"key": "1", "label": "Morning (9-11 AM)", "start": "09:00", "end": "11:00"},
    "2": {"key": "2", "label": "Midday (11 AM-1 PM)", "start": "11:00", "end": "13:00"},
    "3": {"key": "3", "label": "Afternoon (2-4 PM)", "start": "14:00", "end": "16:00"},
}

PAYMENT_METHODS: dict[str, PaymentMethod] = {
    "1": {"key": "1", "code": "mpesa", "label": "M-Pesa (mobile money)",
          "reference_prefix": "MPESA"},
    "2": {"key": "2", "code": "nhif", "label": "NHIF (insurance)",
          "reference_prefix": "NHIF"},
    "3": {"key": "3", "code": "wallet", "label": "MediPod Wallet",
          "reference_prefix": "WALLET"},
}

PAYMENT_ALIASES: dict[str, str] = {
    "mpesa": "1", "m-pesa": "1", "mobile money": "1",
    "nhif": "2", "insurance": "2",
    "wallet": "3",
}

BUNDLES: dict[str, Bundle] = {
    "diabetes_care": {
        "key": "diabetes_care",
        "name": "Complete Diabetes Care Package",
        "service_keys": ["1", "5"],
        "discount_percent": 20,
        "description": "Comprehensive diabetes monitoring and consultation",
    },
    "women_health": {
        "key": "women_health",
        "name": "Women's Health Plus",
        "service_keys": ["2", "5"],
        "discount_percent": 15,
        "description": "Complete women's health screening and consultation",
    },
    "family_care": {
        "key": "family_care",
        "name": "Family Health Package",
        "service_keys": ["3", "5"],
        "discount_percent": 25,
        "description": "Family health check-up package",
    },
}

HEALTH_TIPS: dict[str, list[str]] = {
    "UTI": [
        "Drink 8-10 glasses of water daily",
        "Avoid caffeine and alcohol",
        "Maintain good hygiene practices",
        "Eat cranberries or take supplements",
    ],
    "diabetes": [
        "Monitor blood sugar regularly",
        "Follow a balanced diet plan",
        "Exercise for 30 minutes daily",
        "Take medications as prescribed",
    ],
    "hypertension": [
        "Reduce salt intake",
        "Exercise regularly",
        "Get 7-8 hours of sleep",
        "Practice stress management",
    ],
    "mental_health": [
        "Practice mindfulness daily",
        "Stay connected with loved ones",
        "Get regular sunlight exposure",
        "Reach out for professional help",
    ],
}

TIP_ALIASES: dict[str, str] = {
    "uti": "UTI",
    "diabetes": "diabetes",
    "hypertension": "hypertension",
    "blood pressure": "hypertension",
    "mental": "mental_health",
    "stress": "mental_health",
}


def get_service(key: str) -> Optional[ServiceInfo]:
    return SERVICE_CATALOG.get(key.strip())


def get_time_slot(key: str) -> Optional[TimeSlot]:
    return TIME_SLOTS.get(key.strip())


def get_payment_method(value: str) -> Optional[PaymentMethod]:
    """Look up a payment method by menu key or keyword alias."""
    token = value.strip().lower()
    key = token if token in PAYMENT_METHODS else PAYMENT_ALIASES.get(token)
    if key is None:
        return None
    return PAYMENT_METHODS[key]


def payment_method_by_code(code: str) -> Optional[PaymentMethod]:
    for method in PAYMENT_METHODS.values():
        if method["code"] == code:
            return method
    return None


def get_health_tips(topic: str) -> Optional[tuple[str, list[str]]]:
    key = TIP_ALIASES.get(topic.strip().lower())
    if key is None:
        return None
    return key, HEALTH_TIPS[key]


def bundle_pricing(bundle: Bundle) -> tuple[int, int]:
    """Return (original, discounted) price for a bundle."""
    original = sum(SERVICE_CATALOG[k]["price"] for k in bundle["service_keys"])
    discounted = round(original * (100 - bundle["discount_percent"]) / 100)
    return original, discounted


def recommend_bundles(profile: Optional[HealthProfile]) -> list[Bundle]:
    """Pick bundles matching a profile's conditions, preferences and visit history."""
    picks: list[str] = []
    if profile is not None:
        if "diabetes" in profile.conditions or "monitoring" in profile.preferred_services:
            picks.append("diabetes_care")
        if "specialized" in profile.preferred_services:
            picks.append("women_health")
        if profile.visit_count >= 2:
            picks.append("family_care")
    if not picks:
        picks = ["diabetes_care", "family_care"]
    logger.debug("Bundle recommendations: %s", picks)
    return [BUNDLES[key] for key in picks]
