# negotiation_service/crud/crud_purchase_order.py
import logging
import uuid
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy.orm import Session

from negotiation_service.models.purchase_order import PurchaseOrder

logger = logging.getLogger(__name__)


def generate_po_number() -> str:
    """PO-YYYYMMDD-XXXXXX; the random suffix keeps numbers unique without a sequence."""
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"PO-{today}-{uuid.uuid4().hex[:6].upper()}"


def get(db: Session, purchase_order_id: str) -> Optional[PurchaseOrder]:
    return db.query(PurchaseOrder).filter(PurchaseOrder.id == purchase_order_id).first()


def get_by_negotiation(db: Session, negotiation_id: str) -> Optional[PurchaseOrder]:
    return (
        db.query(PurchaseOrder)
        .filter(PurchaseOrder.negotiation_id == negotiation_id)
        .first()
    )


def create(db: Session, **fields) -> PurchaseOrder:
    """Insert a purchase order. Flushes only; the caller commits."""
    db_obj = PurchaseOrder(po_number=generate_po_number(), status="draft", **fields)
    db.add(db_obj)
    db.flush()
    return db_obj
