from medipod.booking.effects import EffectExecutor, EffectOutcome
from medipod.booking.orchestrator import BookingOrchestrator

__all__ = [
    "BookingOrchestrator",
    "EffectExecutor",
    "EffectOutcome",
]
