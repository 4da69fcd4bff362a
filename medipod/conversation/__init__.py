from medipod.conversation.menu import Intent, MenuTable
from medipod.conversation.prediagnosis import PrediagnosisClassifier
from medipod.conversation.state_machine import (
    ConversationStateMachine,
    Effect,
    EffectKind,
    TransitionResult,
    TransitionTrigger,
)
from medipod.schemas.session_schema import ConversationState

__all__ = [
    "ConversationStateMachine",
    "ConversationState",
    "TransitionTrigger",
    "TransitionResult",
    "Effect",
    "EffectKind",
    "Intent",
    "MenuTable",
    "PrediagnosisClassifier",
]
