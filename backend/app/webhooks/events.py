from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.db.models import WebhookSubscription
from app.webhooks.delivery import build_webhook_payload, send_webhook_with_retry

logger = logging.getLogger("mchattools.webhooks.events")

WILDCARD_EVENT = "*"

WEBHOOK_EVENTS = {
    "USER_CREATED": "user.created",
    "USER_UPDATED": "user.updated",
    "USER_DELETED": "user.deleted",
    "BOOKING_CREATED": "booking.created",
    "BOOKING_UPDATED": "booking.updated",
    "BOOKING_CANCELLED": "booking.cancelled",
    "BOOKING_COMPLETED": "booking.completed",
    "QR_CREATED": "qr.created",
    "QR_SCANNED": "qr.scanned",
    "QR_VALIDATED": "qr.validated",
    "TAG_ADDED": "tag.added",
    "TAG_REMOVED": "tag.removed",
    "CUSTOM_FIELD_UPDATED": "customfield.updated",
    "WEBHOOK_TEST": "webhook.test",
}

BOOKING_STATUS_EVENTS = {
    "cancelled": WEBHOOK_EVENTS["BOOKING_CANCELLED"],
    "completed": WEBHOOK_EVENTS["BOOKING_COMPLETED"],
}


def is_subscribed(subscription: WebhookSubscription, event: str) -> bool:
    events = subscription.events or []
    return event in events or WILDCARD_EVENT in events


def emit_webhook_event(
    admin_id: str,
    event: str,
    data: dict[str, Any],
    metadata: dict[str, Any] | None = None,
    db: Session | None = None,
) -> int:
    """Deliver ``event`` to every active subscription of ``admin_id``.

    Runs after the originating transaction has committed; failures are
    logged and never propagate to the caller. Returns the number of
    successful deliveries.
    """
    managed_session = db is None
    session = db
    if session is None:
        from app.db.session import SessionLocal

        session = SessionLocal()

    try:
        subscriptions = [
            s
            for s in session.query(WebhookSubscription).all()
            if s.admin_id == admin_id and s.active and is_subscribed(s, event)
        ]
        if not subscriptions:
            logger.info("No webhooks subscribed to event: %s", event)
            return 0

        payload = build_webhook_payload(event=event, data=data, metadata=metadata)
        successful = 0
        for subscription in subscriptions:
            try:
                result = send_webhook_with_retry(session, subscription, payload)
            except Exception:
                session.rollback()
                logger.exception(
                    "Webhook delivery crashed for subscription_id=%s event=%s",
                    subscription.id,
                    event,
                )
                continue
            if result.success:
                successful += 1

        logger.info(
            'Webhook event "%s" delivered to %s/%s subscriptions',
            event,
            successful,
            len(subscriptions),
        )
        return successful
    except Exception:
        logger.exception("Error emitting webhook event %s for admin_id=%s", event, admin_id)
        return 0
    finally:
        if managed_session:
            session.close()
