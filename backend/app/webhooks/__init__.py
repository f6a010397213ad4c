from app.webhooks.delivery import (
    WebhookDeliveryResult,
    build_webhook_payload,
    generate_webhook_signature,
    send_webhook,
    send_webhook_with_retry,
    verify_webhook_signature,
)
from app.webhooks.events import BOOKING_STATUS_EVENTS, WEBHOOK_EVENTS, emit_webhook_event
from app.webhooks.subscriptions import (
    CreateWebhookArgs,
    UpdateWebhookArgs,
    create_subscription,
    delete_subscription,
    find_subscription,
    list_subscriptions,
    serialize_subscription,
    update_subscription,
)

__all__ = [
    "WebhookDeliveryResult",
    "build_webhook_payload",
    "generate_webhook_signature",
    "send_webhook",
    "send_webhook_with_retry",
    "verify_webhook_signature",
    "BOOKING_STATUS_EVENTS",
    "WEBHOOK_EVENTS",
    "emit_webhook_event",
    "CreateWebhookArgs",
    "UpdateWebhookArgs",
    "create_subscription",
    "delete_subscription",
    "find_subscription",
    "list_subscriptions",
    "serialize_subscription",
    "update_subscription",
]
