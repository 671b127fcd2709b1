"""Stripe invoice webhooks: verify, then settle paid platform invoices into XDK."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.billing import InvoiceStatus, Notification, PlatformInvoice, XdkExchangeRate
from app.models.deal_room import DealRoom, ValueLedgerEntry
from app.models.profile import Profile
from app.services.errors import NotFoundError, ValidationFailedError
from app.services.xdk_ledger import (
    ensure_deal_room_treasury,
    ensure_user_account,
    format_ledger_timestamp,
    record_mint,
)

logger = logging.getLogger(__name__)


class WebhookSignatureError(ValidationFailedError):
    pass


def verify_webhook_signature(
    payload: str,
    header: Optional[str],
    secret: str,
    tolerance_seconds: int = 300,
) -> None:
    """Raise ``WebhookSignatureError`` unless ``header`` signs ``payload`` with ``secret``."""
    if not header:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    try:
        stripe.WebhookSignature.verify_header(payload, header, secret, tolerance=tolerance_seconds or None)
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError(str(exc)) from exc


def parse_webhook_event(payload: str, header: Optional[str]) -> Dict[str, Any]:
    settings = get_settings()
    if settings.stripe_webhook_secret:
        try:
            verify_webhook_signature(
                payload,
                header,
                settings.stripe_webhook_secret,
                settings.stripe_webhook_tolerance_seconds,
            )
        except WebhookSignatureError as exc:
            logger.warning("[InvoiceWebhook] Signature verification failed: %s", exc)
            raise WebhookSignatureError("Webhook signature verification failed") from exc
    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise ValidationFailedError("Invalid webhook payload") from exc
    if not isinstance(event, dict):
        raise ValidationFailedError("Invalid webhook payload")
    return event


def latest_usd_rate(db: Session) -> float:
    rate = (
        db.query(XdkExchangeRate)
        .filter(XdkExchangeRate.base_currency == "USD")
        .order_by(XdkExchangeRate.effective_from.desc(), XdkExchangeRate.id.desc())
        .first()
    )
    return float(rate.xdk_rate) if rate and rate.xdk_rate else 1.0


def contribution_credits(amount: float) -> int:
    return int(round(amount / 10))


def _is_platform_invoice(invoice: Dict[str, Any]) -> bool:
    metadata = invoice.get("metadata") or {}
    return metadata.get("platform") == get_settings().invoice_platform_tag


def _find_invoice(db: Session, stripe_invoice_id: Optional[str]) -> Optional[PlatformInvoice]:
    if not stripe_invoice_id:
        return None
    return db.query(PlatformInvoice).filter(PlatformInvoice.stripe_invoice_id == stripe_invoice_id).first()


def _handle_paid(db: Session, invoice: Dict[str, Any]) -> Dict[str, Any]:
    stripe_invoice_id = invoice.get("id")
    logger.info("[InvoiceWebhook] Processing paid invoice %s amount=%s", stripe_invoice_id, invoice.get("amount_paid"))

    platform_invoice = _find_invoice(db, stripe_invoice_id)
    if not platform_invoice:
        raise NotFoundError("Platform invoice not found")
    if platform_invoice.status == InvoiceStatus.paid and platform_invoice.xdk_credited:
        logger.info("[InvoiceWebhook] Invoice %s already processed", platform_invoice.id)
        return {"received": True, "already_processed": True}

    metadata = invoice.get("metadata") or {}
    amount = float(invoice.get("amount_paid") or 0) / 100
    creator_id = metadata.get("creator_id") or platform_invoice.creator_id
    rate = latest_usd_rate(db)
    xdk_amount = amount * rate

    recipient = metadata.get("xdk_recipient_wallet") or platform_invoice.xdk_recipient_wallet
    if not recipient:
        recipient = ensure_user_account(db, creator_id).address

    mint_data = {
        "platform_invoice_id": platform_invoice.id,
        "stripe_invoice_id": stripe_invoice_id,
        "usd_amount": amount,
        "exchange_rate": rate,
        "client_id": platform_invoice.client_id,
    }
    tx = record_mint(db, recipient, xdk_amount, "mint_invoice_payment", mint_data)
    logger.info("[InvoiceWebhook] Minted %s XDK to %s (%s)", xdk_amount, recipient, tx.tx_hash)

    treasury_tx = None
    if platform_invoice.route_to_treasury and platform_invoice.deal_room_id:
        treasury = ensure_deal_room_treasury(db, platform_invoice.deal_room_id)
        treasury_tx = record_mint(
            db,
            treasury.xdk_address,
            xdk_amount,
            "mint_treasury_routing",
            dict(mint_data, routed_from_invoice=True),
        )
        logger.info("[InvoiceWebhook] Routed %s XDK to deal room %s treasury", xdk_amount, treasury.deal_room_id)

    now = datetime.utcnow()
    platform_invoice.status = InvoiceStatus.paid
    platform_invoice.paid_at = now
    platform_invoice.amount = amount
    platform_invoice.xdk_credited = True
    platform_invoice.xdk_amount = xdk_amount
    platform_invoice.xdk_tx_hash = tx.tx_hash
    platform_invoice.treasury_credited = treasury_tx is not None
    platform_invoice.treasury_xdk_amount = xdk_amount if treasury_tx is not None else None

    db.add(
        Notification(
            user_id=creator_id,
            notification_type="payment_received",
            title="Invoice Paid",
            message=f"Payment of ${amount:.2f} received. {xdk_amount:.2f} XDK credited to your wallet.",
            metadata_json={
                "invoice_id": platform_invoice.id,
                "amount": amount,
                "xdk_amount": xdk_amount,
                "tx_hash": tx.tx_hash,
            },
        )
    )

    deal_room = None
    if platform_invoice.deal_room_id:
        deal_room = db.query(DealRoom).filter(DealRoom.id == platform_invoice.deal_room_id).first()
    profile = db.query(Profile).filter(Profile.id == creator_id).first()
    client_name = platform_invoice.client_name or "Client"
    creator_company = profile.company if profile else None
    creator_name = creator_company or (profile.full_name if profile else None) or "Creator"
    invoice_meta = platform_invoice.metadata_json or {}

    db.add(
        ValueLedgerEntry(
            deal_room_id=deal_room.id if deal_room else None,
            source_user_id=None,
            source_entity_type="company",
            source_entity_name=client_name,
            destination_user_id=creator_id,
            destination_entity_type="company" if creator_company else "individual",
            destination_entity_name=creator_name,
            entry_type="invoice_payment",
            amount=amount,
            currency="USD",
            xdk_amount=xdk_amount,
            purpose=platform_invoice.description or "Invoice payment",
            reference_type="platform_invoice",
            reference_id=str(platform_invoice.id),
            contribution_credits=contribution_credits(amount),
            credit_category="funding",
            verification_source="stripe",
            verification_id=stripe_invoice_id,
            verified_at=now,
            xdk_tx_hash=tx.tx_hash,
            narrative=(
                f"{client_name} paid ${amount:.2f} invoice to {creator_name} on "
                f"{format_ledger_timestamp(now)}. {xdk_amount:.2f} XDK credited."
            ),
            metadata_json={
                "invoice_number": invoice_meta.get("invoice_number"),
                "client_id": platform_invoice.client_id,
                "deal_room_name": deal_room.name if deal_room else None,
            },
        )
    )
    db.commit()
    logger.info("[InvoiceWebhook] Invoice %s processed, %s XDK", platform_invoice.id, xdk_amount)
    return {"received": True, "processed": True, "xdk_amount": xdk_amount, "tx_hash": tx.tx_hash}


def _set_status(db: Session, invoice: Dict[str, Any], status: InvoiceStatus) -> None:
    platform_invoice = _find_invoice(db, invoice.get("id"))
    if platform_invoice is None:
        logger.info("[InvoiceWebhook] No platform invoice for %s", invoice.get("id"))
        return
    platform_invoice.status = status
    db.commit()
    logger.info("[InvoiceWebhook] Invoice %s set to %s", platform_invoice.id, status.value)


def handle_invoice_event(db: Session, event: Dict[str, Any]) -> Dict[str, Any]:
    event_type = event.get("type")
    invoice = ((event.get("data") or {}).get("object")) or {}
    logger.info("[InvoiceWebhook] Received event %s (%s)", event.get("id"), event_type)

    if event_type not in ("invoice.paid", "invoice.payment_failed", "invoice.voided"):
        return {"received": True}
    if not _is_platform_invoice(invoice):
        logger.info("[InvoiceWebhook] Not a platform invoice, skipping")
        return {"received": True}

    if event_type == "invoice.paid":
        return _handle_paid(db, invoice)
    if event_type == "invoice.payment_failed":
        # kept open for retry
        _set_status(db, invoice, InvoiceStatus.open)
    else:
        _set_status(db, invoice, InvoiceStatus.void)
    return {"received": True}
