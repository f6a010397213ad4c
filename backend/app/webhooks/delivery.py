from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib import error, request
from uuid import uuid4

from sqlalchemy.orm import Session

from app.config import webhook_user_agent
from app.db.models import WebhookDelivery, WebhookSubscription

logger = logging.getLogger("mchattools.webhooks.delivery")

RESPONSE_BODY_LIMIT = 1000
ERROR_BODY_LIMIT = 200


@dataclass
class WebhookDeliveryResult:
    success: bool
    status_code: int | None = None
    duration_ms: int | None = None
    error: str | None = None
    delivery_id: str | None = None


def generate_webhook_signature(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: str, signature: str, secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = generate_webhook_signature(payload, secret)
    return hmac.compare_digest(expected, signature)


def build_webhook_payload(
    event: str,
    data: dict[str, Any],
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    timestamp = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return {
        "event": event,
        "timestamp": timestamp.isoformat(),
        "data": data,
        "metadata": metadata,
    }


def send_webhook(
    db: Session,
    subscription: WebhookSubscription,
    payload: dict[str, Any],
    attempt: int = 1,
) -> WebhookDeliveryResult:
    if not subscription.active:
        return WebhookDeliveryResult(success=False, error="Webhook subscription is inactive")

    payload_text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    payload_bytes = payload_text.encode("utf-8")
    signature = generate_webhook_signature(payload_text, subscription.secret)

    delivery = WebhookDelivery(
        id=str(uuid4()),
        subscription_id=subscription.id,
        event=payload["event"],
        payload=payload_text,
        payload_size_bytes=len(payload_bytes),
        status="pending",
        attempt=attempt,
    )
    db.add(delivery)
    db.commit()

    req = request.Request(
        subscription.url,
        data=payload_bytes,
        headers={
            "Content-Type": "application/json",
            "X-Webhook-Signature": signature,
            "X-Webhook-Event": payload["event"],
            "X-Webhook-Timestamp": payload["timestamp"],
            "X-Webhook-ID": delivery.id,
            "X-Webhook-Attempt": str(attempt),
            "User-Agent": webhook_user_agent(),
        },
        method="POST",
    )

    started = time.perf_counter()
    status_code: int | None = None
    response_body = ""
    failure: str | None = None
    try:
        with request.urlopen(req, timeout=subscription.timeout_ms / 1000) as resp:
            status_code = resp.status
            response_body = resp.read().decode("utf-8", errors="replace")
    except error.HTTPError as exc:
        status_code = exc.code
        response_body = _read_error_body(exc)
    except TimeoutError:
        failure = f"Timeout after {subscription.timeout_ms}ms"
    except error.URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            failure = f"Timeout after {subscription.timeout_ms}ms"
        else:
            failure = str(exc.reason) or "Network error"
    except OSError as exc:
        failure = str(exc) or "Network error"
    duration_ms = int(round((time.perf_counter() - started) * 1000))

    success = status_code is not None and 200 <= status_code < 300
    error_message = failure
    if status_code is not None and not success:
        failure = f"HTTP {status_code}"
        error_message = f"HTTP {status_code}: {response_body[:ERROR_BODY_LIMIT]}"

    delivery.status = "success" if success else "failed"
    delivery.status_code = status_code
    delivery.response_body = response_body[:RESPONSE_BODY_LIMIT] if status_code is not None else None
    delivery.duration_ms = duration_ms
    delivery.error_message = error_message

    subscription.last_delivery_at = datetime.now(timezone.utc)
    subscription.last_delivery_status = delivery.status
    if success:
        subscription.success_count = (subscription.success_count or 0) + 1
    else:
        subscription.failed_count = (subscription.failed_count or 0) + 1
    db.commit()

    logger.info(
        json.dumps(
            {
                "event": "webhook_delivery",
                "subscription_id": subscription.id,
                "delivery_id": delivery.id,
                "webhook_event": payload["event"],
                "attempt": attempt,
                "status": delivery.status,
                "status_code": status_code,
                "duration_ms": duration_ms,
            }
        )
    )
    return WebhookDeliveryResult(
        success=success,
        status_code=status_code,
        duration_ms=duration_ms,
        error=None if success else failure,
        delivery_id=delivery.id,
    )


def send_webhook_with_retry(
    db: Session,
    subscription: WebhookSubscription,
    payload: dict[str, Any],
) -> WebhookDeliveryResult:
    max_attempts = (subscription.retry_attempts or 0) + 1
    result = WebhookDeliveryResult(success=False)
    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            time.sleep(subscription.retry_delay)

        result = send_webhook(db, subscription, payload, attempt=attempt)
        if result.success or not subscription.active:
            break

        logger.warning(
            "Webhook delivery failed (attempt %s/%s) subscription_id=%s error=%s",
            attempt,
            max_attempts,
            subscription.id,
            result.error,
        )
    return result


def _read_error_body(exc: error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")
    except Exception:
        return ""
