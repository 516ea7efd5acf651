"""
Celery worker: notification outbox delivery (SELECT FOR UPDATE SKIP LOCKED)
and the periodic quality alert scan.
"""
from celery import Celery
from sqlalchemy import text
from datetime import datetime, timedelta, timezone
import requests
import logging
from .config import settings
from .database import SessionLocal
from .models import NotificationOutbox, User

logger = logging.getLogger(__name__)

celery_app = Celery(
    "siteqa",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def send_webhook(payload: dict) -> tuple[bool, str | None]:
    """POST a notification payload to the delivery webhook."""
    if not settings.NOTIFICATION_WEBHOOK_URL:
        return False, "WEBHOOK_NOT_CONFIGURED"

    try:
        response = requests.post(
            settings.NOTIFICATION_WEBHOOK_URL,
            json=payload,
            timeout=settings.NOTIFICATION_WEBHOOK_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        return False, f"EXCEPTION: {e}"

    if 200 <= response.status_code < 300:
        return True, None
    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After", "60")
        try:
            seconds = int(retry_after)
        except ValueError:
            seconds = 60
        return False, f"RATE_LIMIT:{seconds}"
    if 400 <= response.status_code < 500:
        # Client errors will not succeed on retry.
        return False, f"REJECTED:HTTP_{response.status_code}: {response.text[:200]}"
    return False, f"HTTP_{response.status_code}: {response.text[:200]}"


def _payload_for(db, notification: NotificationOutbox) -> dict | None:
    email = notification.recipient_email
    if email is None and notification.recipient_user_id is not None:
        user = db.query(User).filter(User.id == notification.recipient_user_id).first()
        email = user.email if user and user.is_active else None
    if not email:
        return None
    return {
        "id": str(notification.id),
        "type": notification.type,
        "to": email,
        "subject": notification.subject,
        "message": notification.message,
        "meta": notification.meta_data or {},
        "idempotencyKey": notification.idempotency_key,
    }


@celery_app.task(name="process_notification_outbox")
def process_notification_outbox(batch_size: int = 100):
    """
    Deliver pending outbox rows.

    Rows are locked with SKIP LOCKED so concurrent workers never send the
    same row twice.
    """
    db = SessionLocal()
    processed_count = 0
    notification_ids = []

    try:
        query = text("""
            SELECT id
            FROM notification_outbox
            WHERE status = 'pending'
              AND (next_retry_at IS NULL OR next_retry_at <= NOW())
            ORDER BY created_at
            LIMIT :batch_size
            FOR UPDATE SKIP LOCKED
        """)

        result = db.execute(query, {"batch_size": batch_size})
        notification_ids = [row[0] for row in result.fetchall()]

        logger.info("Locked %s outbox rows for delivery", len(notification_ids))

        for notif_id in notification_ids:
            notification = db.query(NotificationOutbox).filter(
                NotificationOutbox.id == notif_id
            ).first()
            if not notification:
                continue

            payload = _payload_for(db, notification)
            if payload is None:
                notification.status = 'skipped'
                notification.last_error = "No deliverable recipient address"
                continue

            success, error = send_webhook(payload)

            if success:
                notification.status = 'sent'
                notification.sent_at = _utc_now()
                notification.last_error = None
                processed_count += 1
                logger.info("Delivered outbox row %s", notif_id)
                continue

            notification.attempts = (notification.attempts or 0) + 1
            notification.last_error = error

            if error and error.startswith("RATE_LIMIT:"):
                retry_after = int(error.split(":")[1])
                notification.next_retry_at = _utc_now() + timedelta(seconds=retry_after)
                logger.warning("Webhook rate limited for %ss: %s", retry_after, notif_id)

            elif error and (error.startswith("REJECTED:") or error == "WEBHOOK_NOT_CONFIGURED"):
                notification.status = 'failed'
                notification.failed_at = _utc_now()
                logger.error("Outbox row %s not deliverable: %s", notif_id, error)

            elif notification.attempts >= settings.NOTIFICATION_MAX_ATTEMPTS:
                notification.status = 'failed'
                notification.failed_at = _utc_now()
                logger.error("Failed after %s attempts: %s, error: %s", notification.attempts, notif_id, error)

            else:
                backoff_seconds = 2 ** notification.attempts * 60  # 2min, 4min, 8min
                notification.next_retry_at = _utc_now() + timedelta(seconds=backoff_seconds)
                logger.warning(
                    "Retry %s/%s in %ss: %s",
                    notification.attempts, settings.NOTIFICATION_MAX_ATTEMPTS, backoff_seconds, notif_id,
                )

        db.commit()
        logger.info("Delivered %s/%s outbox rows", processed_count, len(notification_ids))

    except Exception:
        db.rollback()
        logger.exception("Error processing notification outbox")
        raise

    finally:
        db.close()

    return {"processed": processed_count, "total_locked": len(notification_ids)}


@celery_app.task(name="scan_quality_alerts")
def scan_quality_alerts():
    """Beat-driven stale hold point / overdue verification scan."""
    from .use_cases.alert_scan import scan_quality_alerts_use_case

    db = SessionLocal()
    try:
        result = scan_quality_alerts_use_case(db=db)
    except Exception:
        db.rollback()
        logger.exception("Error running quality alert scan")
        raise
    finally:
        db.close()

    return {
        "stale_hold_points": result.stale_hold_points,
        "pending_verifications": result.pending_verifications,
        "notifications_created": result.notifications_created,
    }


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'process-outbox': {
        'task': 'process_notification_outbox',
        'schedule': settings.OUTBOX_INTERVAL_SECONDS,
    },
    'scan-quality-alerts': {
        'task': 'scan_quality_alerts',
        'schedule': settings.ALERT_SCAN_INTERVAL_SECONDS,
    },
}
