# negotiation_service/models/purchase_order.py
import uuid
from sqlalchemy import Column, String, Integer, Text, Numeric, DateTime, ForeignKey, text
from sqlalchemy.sql import func
from negotiation_service.db.base_class import Base


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(
        String, primary_key=True, default=lambda: f"po_{uuid.uuid4().hex[:12]}"
    )
    po_number = Column(String, nullable=False, unique=True)
    # Store-side guard: at most one PO per negotiation
    negotiation_id = Column(
        String,
        ForeignKey("negotiations.id"),
        nullable=False,
        unique=True,
        index=True,
    )
    bid_id = Column(String, nullable=False)
    rfq_id = Column(String, nullable=False)
    buyer_id = Column(String, nullable=False, index=True)
    supplier_id = Column(String, nullable=False, index=True)
    created_by_id = Column(String, nullable=False)

    total_amount = Column(Numeric(14, 2), nullable=True)
    currency = Column(String(3), nullable=False, server_default=text("'USD'"))
    delivery_terms = Column(Text, nullable=True)
    delivery_days = Column(Integer, nullable=True)
    delivery_address = Column(Text, nullable=False)
    payment_terms = Column(String, nullable=False)
    notes = Column(Text, nullable=True)

    status = Column(String, nullable=False, server_default=text("'draft'"))

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    def __repr__(self):
        return f"<PurchaseOrder {self.po_number} for {self.negotiation_id}>"
