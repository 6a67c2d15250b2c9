from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from config import settings
from dependencies import Services, get_services
from errors import InvalidSignature, TransactionNotFound
from models import AuditEntry, PURCHASE_TYPES, ProviderWebhook, TransactionStatus, TransactionType
from utils import signature_valid
import logging

router = APIRouter()

SIGNATURE_HEADER = "X-NaijaDataSub-Signature"
WEBHOOK_SECRET_KEY = "naijadatasub_webhook_secret"

DEPOSIT_SIGNATURE_HEADER = "X-Deposit-Signature"
DEPOSIT_SECRET_KEY = "deposit_webhook_secret"

EVENT_OUTCOMES = {
    "transaction.completed": TransactionStatus.SUCCESS,
    "transaction.failed": TransactionStatus.FAILED,
}

DEPOSIT_EVENT_OUTCOMES = {
    "deposit.paid": TransactionStatus.SUCCESS,
    "deposit.failed": TransactionStatus.FAILED,
}


async def _settle_webhook(request: Request, services: Services, source: str, secret: str, header: str,
                          outcomes: dict, record_types):
    raw = await request.body()
    if not secret:
        logging.error(f"{source} webhook secret is not configured; rejecting delivery")
        raise InvalidSignature()
    if not signature_valid(raw, request.headers.get(header, ""), secret):
        logging.error(f"Invalid {source} webhook signature")
        raise InvalidSignature()

    try:
        webhook = ProviderWebhook.model_validate_json(raw)
    except ValidationError as e:
        logging.error(f"Malformed {source} webhook payload: {e}")
        return JSONResponse(status_code=400, content={"success": False, "error": "Malformed payload"})

    payload = webhook.model_dump()
    logging.info(f"{source} webhook received: {webhook.event} for {webhook.data.reference}")

    outcome = outcomes.get(webhook.event)
    if outcome is None:
        logging.info(f"Unhandled {source} webhook event type: {webhook.event}")
        services.audit_log.add(AuditEntry(
            action="provider_webhook",
            details={"source": source, "event": webhook.event, "status": "unhandled", "payload": payload},
        ))
        return {"success": True, "message": "Unhandled event type"}

    try:
        result = services.engine.handle_async_settlement(webhook.data.reference, outcome, payload,
                                                         record_types=record_types)
    except TransactionNotFound:
        logging.error(f"{source} webhook for unknown transaction {webhook.data.reference}")
        return JSONResponse(status_code=404, content={"success": False, "error": "Transaction not found"})

    if not result.applied:
        return {"success": True, "message": "Transaction already settled"}
    return {
        "success": True,
        "message": "Webhook processed successfully",
        "refund_reference": result.refund.reference if result.refund else None,
    }


@router.post("/naijadatasub/")
async def naijadatasub_webhook(request: Request, services: Services = Depends(get_services)):
    """
    Body: {"event": "transaction.completed" | "transaction.failed", "data": {"reference": "...", "reason": "..."}}

    Signed with the hex HMAC-SHA256 of the raw body. Only an unknown reference or
    a bad payload answers with an error, since those make the provider redeliver.
    """
    secret = services.api_settings.get(WEBHOOK_SECRET_KEY) or settings.NAIJADATASUB_WEBHOOK_SECRET
    return await _settle_webhook(request, services, "naijadatasub", secret, SIGNATURE_HEADER,
                                 EVENT_OUTCOMES, PURCHASE_TYPES)


@router.post("/deposit/")
async def deposit_webhook(request: Request, services: Services = Depends(get_services)):
    """Payment gateway confirmation for deposits started at /banking/deposit/."""
    secret = services.api_settings.get(DEPOSIT_SECRET_KEY) or settings.DEPOSIT_WEBHOOK_SECRET
    return await _settle_webhook(request, services, "deposit", secret, DEPOSIT_SIGNATURE_HEADER,
                                 DEPOSIT_EVENT_OUTCOMES, (TransactionType.WALLET_FUNDING,))
