"""Health profile data models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

NOTIFICATION_FLAGS: tuple[str, ...] = ("medication", "followup", "health_tips", "loyalty")


class NotificationPreferences(BaseModel):
    """Which outbound notices the user wants."""
    medication: bool = True
    followup: bool = True
    health_tips: bool = True
    loyalty: bool = True

    def toggle(self, flag: str) -> bool:
        if flag not in NOTIFICATION_FLAGS:
            raise KeyError(flag)
        value = not getattr(self, flag)
        setattr(self, flag, value)
        return value


class HealthProfile(BaseModel):
    """Accumulated knowledge about a user. Never deleted."""
    model_config = ConfigDict(from_attributes=True)

    identity: str
    display_name: Optional[str] = None
    visit_count: int = 0
    last_visit: Optional[datetime] = None
    conditions: list[str] = Field(default_factory=list)
    preferred_services: list[str] = Field(default_factory=list)
    payment_methods: list[str] = Field(default_factory=list)
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)

    def add_condition(self, condition: str) -> None:
        if condition not in self.conditions:
            self.conditions.append(condition)

    def add_preferred_service(self, category: str) -> None:
        if category not in self.preferred_services:
            self.preferred_services.append(category)

    def add_payment_method(self, method: str) -> None:
        if method not in self.payment_methods:
            self.payment_methods.append(method)

    def summary(self) -> str:
        """One-line context for the advisory collaborator."""
        parts = [f"visits: {self.visit_count}"]
        if self.display_name:
            parts.insert(0, f"name: {self.display_name}")
        if self.conditions:
            parts.append("conditions: " + ", ".join(self.conditions))
        if self.preferred_services:
            parts.append("prefers: " + ", ".join(self.preferred_services))
        return "; ".join(parts)
