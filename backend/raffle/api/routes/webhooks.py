"""
Payment provider webhook.

Always answers 200: any other status makes the provider redeliver, and a
notification we cannot process would be redelivered forever. What actually
happened is visible in logs and in raffle_webhook_notifications_total.
"""

import json

from fastapi import APIRouter, Depends, Request

from raffle.api.deps import get_reconciler
from raffle.core.config import get_settings
from raffle.core.logging import get_logger
from raffle.core.metrics import record_webhook_outcome
from raffle.schemas.notification import parse_notification
from raffle.services.reconciliation_service import WebhookReconciler
from raffle.services.webhook_signature import verify_signature

logger = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

ACK = {"status": "ok"}


@router.post("/mercadopago")
async def mercadopago_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("webhook_unreadable_body", size=len(raw))
        body = {}
    if not isinstance(body, dict):
        body = {}

    query = dict(request.query_params)
    logger.info("webhook_received", body=body, query=query)

    secret = get_settings().MP_WEBHOOK_SECRET
    if secret:
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        data_id = data.get("id") or query.get("data.id")
        if not verify_signature(request.headers, str(data_id) if data_id else None, secret):
            logger.warning("webhook_signature_invalid")
            record_webhook_outcome("bad_signature")
            return ACK

    notification = parse_notification(body, query)
    outcome = await reconciler.handle(notification)
    logger.info("webhook_processed", outcome=outcome.value)
    return ACK
