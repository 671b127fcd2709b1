"""Billing models - platform invoices settled into XDK credit."""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, ForeignKey, Enum, Float, Boolean
from datetime import datetime
import enum

from app.models.base import Base


class InvoiceStatus(enum.Enum):
    draft = "draft"
    open = "open"
    paid = "paid"
    void = "void"


class PlatformInvoice(Base):
    __tablename__ = "platform_invoices"

    id = Column(Integer, primary_key=True, index=True)
    stripe_invoice_id = Column(String(128), nullable=False, unique=True, index=True)
    creator_id = Column(String(64), nullable=False)
    client_id = Column(String(64), nullable=True)
    client_name = Column(String(255), nullable=True)
    deal_room_id = Column(Integer, ForeignKey("deal_rooms.id"), nullable=True)

    description = Column(Text, nullable=True)
    amount = Column(Float, default=0.0)  # USD
    status = Column(Enum(InvoiceStatus), default=InvoiceStatus.open)
    paid_at = Column(DateTime, nullable=True)

    xdk_recipient_wallet = Column(String(64), nullable=True)
    xdk_credited = Column(Boolean, default=False)
    xdk_amount = Column(Float, nullable=True)
    xdk_tx_hash = Column(String(80), nullable=True)

    route_to_treasury = Column(Boolean, default=False)
    treasury_credited = Column(Boolean, default=False)
    treasury_xdk_amount = Column(Float, nullable=True)

    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)


class XdkExchangeRate(Base):
    __tablename__ = "xdk_exchange_rates"

    id = Column(Integer, primary_key=True, index=True)
    base_currency = Column(String(8), nullable=False, default="USD")
    xdk_rate = Column(Float, nullable=False)
    effective_from = Column(DateTime, default=datetime.utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    notification_type = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(String(1000), nullable=False)
    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
