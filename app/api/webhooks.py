"""
Inbound webhook endpoints for external providers (telephony, billing, ...).

Every route here runs behind verify_webhook_request: endpoints with a
webhook security setting must carry a valid signature, come from an
allowed IP and stay under the per-minute rate limit. Endpoints without a
setting are accepted unchecked.

Processing of the payload is owned by the consuming services; this router
only authenticates and acknowledges.
"""

import logging
from fastapi import APIRouter, Depends

from app.models.webhook import WebhookResponse
from app.modules.webhooks.guard import WebhookVerdict, verify_webhook_request

logger = logging.getLogger(__name__)

# Create router
router = APIRouter()


@router.get("/health")
async def webhook_health():
    """
    Health check for webhook endpoint.

    Usage:
        curl http://localhost:8000/webhooks/health
    """
    return {"status": "healthy", "service": "webhooks"}


@router.post("/{path:path}", response_model=WebhookResponse)
async def receive_webhook(
    path: str,
    verdict: WebhookVerdict = Depends(verify_webhook_request),
):
    """
    Receive an inbound provider webhook.

    Returns 200 as soon as the request is authenticated. Rejections are
    returned by the guard as {"error": ...} with 401 / 403 / 429 / 500.

    Usage:
        curl -X POST http://localhost:8000/webhooks/twilio/voice \\
          -H "X-Provider: twilio" \\
          -H "X-Twilio-Signature: <base64 signature>" \\
          -d '{"CallSid": "CA123"}'
    """
    logger.info(
        f"Webhook received: provider={verdict.provider}, endpoint={verdict.endpoint}",
        extra={
            "provider": verdict.provider,
            "endpoint": verdict.endpoint,
            "signature_checked": verdict.checked,
        },
    )

    return WebhookResponse(status="received", provider=verdict.provider)
