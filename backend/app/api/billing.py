"""Billing API routes - Stripe invoice webhooks."""
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, Dict, Any

from app.api.deps import run_service
from app.models.base import get_db
from app.services.errors import ServiceError
from app.services.invoice_payments import handle_invoice_event, parse_webhook_event

router = APIRouter()


@router.post("/webhooks/invoices")
async def invoice_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Receive Stripe invoice events and settle paid platform invoices into XDK."""
    payload = (await request.body()).decode("utf-8")
    try:
        event = parse_webhook_event(payload, stripe_signature)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return await run_service(db, handle_invoice_event, event)
