from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from app.db.models import WebhookDelivery, WebhookSubscription
from app.webhooks.events import WEBHOOK_EVENTS, WILDCARD_EVENT

URL_PATTERN = r"^https?://\S+$"


def _validate_event_names(events: list[str]) -> list[str]:
    known = set(WEBHOOK_EVENTS.values()) | {WILDCARD_EVENT}
    unknown = [event for event in events if event not in known]
    if unknown:
        raise ValueError(f"Unknown webhook events: {', '.join(unknown)}")
    return list(dict.fromkeys(events))


class CreateWebhookArgs(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    url: str = Field(pattern=URL_PATTERN)
    events: list[str] = Field(min_length=1)
    description: str | None = None
    retry_attempts: int = Field(default=3, ge=0, le=10)
    retry_delay: int = Field(default=60, ge=1, le=3600)
    timeout_ms: int = Field(default=10000, ge=1000, le=60000)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str]) -> list[str]:
        return _validate_event_names(value)


class UpdateWebhookArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    url: str | None = Field(default=None, pattern=URL_PATTERN)
    events: list[str] | None = Field(default=None, min_length=1)
    description: str | None = None
    retry_attempts: int | None = Field(default=None, ge=0, le=10)
    retry_delay: int | None = Field(default=None, ge=1, le=3600)
    timeout_ms: int | None = Field(default=None, ge=1000, le=60000)
    active: bool | None = None

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return _validate_event_names(value)


def create_subscription(db: Session, admin_id: str, args: CreateWebhookArgs) -> WebhookSubscription:
    subscription = WebhookSubscription(
        id=str(uuid4()),
        admin_id=admin_id,
        name=args.name or f"Webhook {datetime.now(timezone.utc).isoformat()}",
        url=args.url,
        events=args.events,
        secret=secrets.token_hex(32),
        description=args.description,
        retry_attempts=args.retry_attempts,
        retry_delay=args.retry_delay,
        timeout_ms=args.timeout_ms,
        active=True,
        success_count=0,
        failed_count=0,
    )
    db.add(subscription)
    db.commit()
    return subscription


def list_subscriptions(db: Session, admin_id: str) -> list[WebhookSubscription]:
    return [s for s in db.query(WebhookSubscription).all() if s.admin_id == admin_id]


def find_subscription(db: Session, admin_id: str, webhook_id: str) -> WebhookSubscription | None:
    for subscription in db.query(WebhookSubscription).all():
        if subscription.id == webhook_id and subscription.admin_id == admin_id:
            return subscription
    return None


def update_subscription(
    db: Session,
    admin_id: str,
    webhook_id: str,
    args: UpdateWebhookArgs,
) -> WebhookSubscription | None:
    subscription = find_subscription(db, admin_id=admin_id, webhook_id=webhook_id)
    if subscription is None:
        return None

    for field, value in args.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        setattr(subscription, field, value)
    db.commit()
    return subscription


def delete_subscription(db: Session, admin_id: str, webhook_id: str) -> bool:
    subscription = find_subscription(db, admin_id=admin_id, webhook_id=webhook_id)
    if subscription is None:
        return False
    for delivery in db.query(WebhookDelivery).all():
        if delivery.subscription_id == subscription.id:
            db.delete(delivery)
    db.delete(subscription)
    db.commit()
    return True


def serialize_subscription(subscription: WebhookSubscription, include_secret: bool = False) -> dict[str, Any]:
    payload = {
        "id": subscription.id,
        "name": subscription.name,
        "url": subscription.url,
        "events": list(subscription.events or []),
        "description": subscription.description,
        "retry_attempts": subscription.retry_attempts,
        "retry_delay": subscription.retry_delay,
        "timeout_ms": subscription.timeout_ms,
        "active": subscription.active,
        "success_count": subscription.success_count or 0,
        "failed_count": subscription.failed_count or 0,
        "last_delivery_at": (
            subscription.last_delivery_at.isoformat() if subscription.last_delivery_at else None
        ),
        "last_delivery_status": subscription.last_delivery_status,
    }
    if include_secret:
        payload["secret"] = subscription.secret
    return payload
