from app.db.base import Base
from app.db.models import (
    Admin,
    AvailabilityTemplate,
    Booking,
    Tool,
    User,
    WebhookDelivery,
    WebhookSubscription,
)

__all__ = [
    "Base",
    "Admin",
    "AvailabilityTemplate",
    "Booking",
    "Tool",
    "User",
    "WebhookDelivery",
    "WebhookSubscription",
]
