import hashlib
import hmac
import json
import time

import pytest

from app.models.billing import InvoiceStatus, Notification, PlatformInvoice, XdkExchangeRate
from app.models.deal_room import DealRoomTreasury, ValueLedgerEntry
from app.models.ledger import TREASURY_ADDRESS, XdkAccount, XdkTransaction
from app.models.profile import Profile
from app.services.deal_room_approvals import create_deal_room
from app.services.errors import NotFoundError
from app.services.invoice_payments import (
    WebhookSignatureError,
    contribution_credits,
    handle_invoice_event,
    parse_webhook_event,
    verify_webhook_signature,
)
from app.services.xdk_ledger import ensure_user_account


SECRET = "whsec_test"


def _event(event_type, invoice_id="in_123", amount_paid=25000, platform="biz_dev_app", **metadata):
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {
            "object": {
                "id": invoice_id,
                "amount_paid": amount_paid,
                "metadata": dict(metadata, platform=platform),
            }
        },
    }


def _signed_header(payload, secret=SECRET, timestamp=None):
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_verify_webhook_signature_accepts_valid_header():
    payload = '{"id": "evt_1"}'
    verify_webhook_signature(payload, _signed_header(payload), SECRET, 300)


def test_verify_webhook_signature_rejects_tampering_and_stale_timestamps():
    payload = '{"id": "evt_1"}'
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(payload + " ", _signed_header(payload), SECRET, 300)
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(payload, _signed_header(payload, timestamp=int(time.time()) - 1000), SECRET, 300)
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(payload, _signed_header(payload, secret="whsec_other"), SECRET, 300)
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(payload, "garbage", SECRET, 300)
    with pytest.raises(WebhookSignatureError):
        verify_webhook_signature(payload, None, SECRET, 300)


def test_parse_webhook_event_with_secret_accepts_signed_payload(monkeypatch):
    from app.config import get_settings

    monkeypatch.setattr(get_settings(), "stripe_webhook_secret", SECRET)
    payload = json.dumps({"type": "invoice.voided"})
    assert parse_webhook_event(payload, _signed_header(payload))["type"] == "invoice.voided"


def test_parse_webhook_event_without_secret_is_unverified():
    event = parse_webhook_event(json.dumps({"type": "invoice.paid"}), None)
    assert event["type"] == "invoice.paid"


def test_parse_webhook_event_with_secret_requires_signature(monkeypatch):
    from app.config import get_settings

    monkeypatch.setattr(get_settings(), "stripe_webhook_secret", SECRET)
    with pytest.raises(WebhookSignatureError):
        parse_webhook_event(json.dumps({"type": "invoice.paid"}), None)


def test_contribution_credits_rounds_tenths():
    assert contribution_credits(250.0) == 25
    assert contribution_credits(4.0) == 0
    assert contribution_credits(126.0) == 13


def _invoice(db, company=None, **overrides):
    values = dict(stripe_invoice_id="in_123", creator_id="creator-1", client_name="Globex", status=InvoiceStatus.open)
    values.update(overrides)
    invoice = PlatformInvoice(**values)
    db.add(invoice)
    db.add(Profile(id="creator-1", full_name="Casey Creator", company=company))
    db.commit()
    return invoice


def test_non_platform_invoice_is_ignored(db_session):
    result = handle_invoice_event(db_session, _event("invoice.paid", platform="other_app"))
    assert result == {"received": True}
    assert db_session.query(XdkTransaction).count() == 0


def test_unknown_platform_invoice_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        handle_invoice_event(db_session, _event("invoice.paid", invoice_id="in_missing"))


def test_paid_invoice_mints_to_creator_wallet(db_session):
    invoice = _invoice(db_session)
    db_session.add(XdkExchangeRate(base_currency="USD", xdk_rate=2.0))
    db_session.commit()

    result = handle_invoice_event(db_session, _event("invoice.paid"))

    assert result["processed"] is True
    assert result["xdk_amount"] == 500.0
    wallet = ensure_user_account(db_session, "creator-1")
    assert wallet.balance == 500.0

    tx = db_session.query(XdkTransaction).one()
    assert tx.from_address == TREASURY_ADDRESS
    assert tx.tx_type == "mint_invoice_payment"
    assert tx.data["usd_amount"] == 250.0
    assert tx.data["exchange_rate"] == 2.0

    db_session.refresh(invoice)
    assert invoice.status == InvoiceStatus.paid
    assert invoice.xdk_credited is True
    assert invoice.xdk_tx_hash == tx.tx_hash
    assert invoice.treasury_credited is False

    notification = db_session.query(Notification).one()
    assert notification.message == "Payment of $250.00 received. 500.00 XDK credited to your wallet."

    entry = db_session.query(ValueLedgerEntry).one()
    assert entry.entry_type == "invoice_payment"
    assert entry.credit_category == "funding"
    assert entry.contribution_credits == 25
    assert entry.verification_source == "stripe"
    assert entry.narrative.startswith("Globex paid $250.00 invoice to Casey Creator on ")
    assert entry.narrative.endswith("500.00 XDK credited.")
    assert entry.destination_entity_type == "individual"
    assert entry.purpose == "Invoice payment"


def test_paid_invoice_is_idempotent(db_session):
    _invoice(db_session)
    handle_invoice_event(db_session, _event("invoice.paid"))
    again = handle_invoice_event(db_session, _event("invoice.paid"))
    assert again == {"received": True, "already_processed": True}
    assert db_session.query(XdkTransaction).count() == 1


def test_paid_invoice_uses_explicit_recipient_and_routes_to_treasury(db_session):
    deal_room = create_deal_room(db_session, "creator-1", "Acme JV")
    _invoice(db_session, deal_room_id=deal_room.id, route_to_treasury=True, xdk_recipient_wallet="xdk1explicit")

    handle_invoice_event(db_session, _event("invoice.paid", amount_paid=10000))

    explicit = db_session.query(XdkAccount).filter(XdkAccount.address == "xdk1explicit").one()
    assert explicit.balance == 100.0
    treasury = db_session.query(DealRoomTreasury).one()
    assert treasury.balance == 100.0
    mirror = db_session.query(XdkAccount).filter(XdkAccount.address == treasury.xdk_address).one()
    assert mirror.balance == 100.0
    tx_types = sorted(t.tx_type for t in db_session.query(XdkTransaction).all())
    assert tx_types == ["mint_invoice_payment", "mint_treasury_routing"]
    invoice = db_session.query(PlatformInvoice).one()
    assert invoice.treasury_credited is True
    assert invoice.treasury_xdk_amount == 100.0


def test_failed_and_voided_events_update_status(db_session):
    invoice = _invoice(db_session, status=InvoiceStatus.draft)
    handle_invoice_event(db_session, _event("invoice.payment_failed"))
    db_session.refresh(invoice)
    assert invoice.status == InvoiceStatus.open

    handle_invoice_event(db_session, _event("invoice.voided"))
    db_session.refresh(invoice)
    assert invoice.status == InvoiceStatus.void


def test_paid_invoice_ledger_entry_names_creator_company(db_session):
    _invoice(db_session, company="Casey Studio LLC", description="Brand refresh, phase 1")
    handle_invoice_event(db_session, _event("invoice.paid", amount_paid=5000))

    entry = db_session.query(ValueLedgerEntry).one()
    assert entry.destination_entity_type == "company"
    assert entry.destination_entity_name == "Casey Studio LLC"
    assert entry.purpose == "Brand refresh, phase 1"
    assert entry.narrative.startswith("Globex paid $50.00 invoice to Casey Studio LLC on ")
